"""Transcription executors and their collaborators."""

from .base import AbstractTranscriptionExecutor, Interruption, TranscriptionTaskEnvelope
from .local_executor import LocalTranscriptionExecutor, InsufficientMemoryError
from .remote_executor import RemoteTranscriptionExecutor
from .combined_executor import CombinedTranscriptionExecutor
from .api_client import RemoteApiClient, RemoteApiError
from .whisper_engine import FasterWhisperEngine, WhisperModelManager, ModelLoadError
from .publisher import WorkerPublisher

__all__ = [
    "AbstractTranscriptionExecutor",
    "Interruption",
    "TranscriptionTaskEnvelope",
    "LocalTranscriptionExecutor",
    "InsufficientMemoryError",
    "RemoteTranscriptionExecutor",
    "CombinedTranscriptionExecutor",
    "RemoteApiClient",
    "RemoteApiError",
    "FasterWhisperEngine",
    "WhisperModelManager",
    "ModelLoadError",
    "WorkerPublisher",
]
