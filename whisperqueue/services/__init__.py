"""Services layer: the transcription worker and background coordination."""

from .background import AbstractBackgroundCoordinator, GrantHandle, TimerBackgroundCoordinator
from .worker import TranscriptionWorker

__all__ = [
    "AbstractBackgroundCoordinator",
    "GrantHandle",
    "TimerBackgroundCoordinator",
    "TranscriptionWorker",
]
