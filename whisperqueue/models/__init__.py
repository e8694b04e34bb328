"""Data models for the whisperqueue application."""

from .parameters import TranscriptionParameters
from .task import TranscriptionTask
from .transcription import StatusKind, TranscriptionStatus, Segment, Transcription
from .recording import RecordingInfo
from .events import (
    NewSegment,
    EngineProgress,
    EngineError,
    EngineCanceled,
    EngineFinished,
    EngineEvent,
    ModelLoadProgress,
    ModelLoaded,
    ModelLoadFailed,
    ModelLoadEvent,
    UploadProgress,
    UploadDone,
    UploadState,
    ResultResponse,
)

__all__ = [
    "TranscriptionParameters",
    "TranscriptionTask",
    "StatusKind",
    "TranscriptionStatus",
    "Segment",
    "Transcription",
    "RecordingInfo",
    # Collaborator event streams
    "NewSegment",
    "EngineProgress",
    "EngineError",
    "EngineCanceled",
    "EngineFinished",
    "EngineEvent",
    "ModelLoadProgress",
    "ModelLoaded",
    "ModelLoadFailed",
    "ModelLoadEvent",
    "UploadProgress",
    "UploadDone",
    "UploadState",
    "ResultResponse",
]
