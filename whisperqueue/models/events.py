"""Event models streamed by the engine, model manager and remote API client."""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from .transcription import Segment


# Inference engine events

@dataclass
class NewSegment:
    """A freshly decoded segment."""
    segment: Segment


@dataclass
class EngineProgress:
    """Overall inference progress in [0, 1]."""
    value: float


@dataclass
class EngineError:
    """Inference failed."""
    error: Exception


@dataclass
class EngineCanceled:
    """Inference stopped after a cancellation request."""


@dataclass
class EngineFinished:
    """Inference completed; carries every segment produced by this run."""
    segments: List[Segment] = field(default_factory=list)


EngineEvent = Union[NewSegment, EngineProgress, EngineError, EngineCanceled, EngineFinished]


# Model management events

@dataclass
class ModelLoadProgress:
    value: float


@dataclass
class ModelLoaded:
    """Model is ready; ``engine`` is the inference engine bound to it."""
    model_name: str
    engine: Any


@dataclass
class ModelLoadFailed:
    error: Exception


ModelLoadEvent = Union[ModelLoadProgress, ModelLoaded, ModelLoadFailed]


# Remote API events

@dataclass
class UploadProgress:
    """Fraction of the file's bytes acknowledged by the server."""
    progress: float


@dataclass
class UploadDone:
    job_id: str


UploadState = Union[UploadProgress, UploadDone]


@dataclass
class ResultResponse:
    """One poll of the remote result endpoint."""
    is_done: bool
    segments: Optional[List[Segment]] = None
    language: Optional[str] = None
    error_message: Optional[str] = None
