"""Executor choosing local or remote execution per task."""

import logging
import threading
from typing import Optional

from ..models.transcription import TranscriptionStatus
from .base import AbstractTranscriptionExecutor, TranscriptionTaskEnvelope

logger = logging.getLogger(__name__)


class CombinedTranscriptionExecutor(AbstractTranscriptionExecutor):
    """Routes each task to the executor selected when it was enqueued."""

    def __init__(self, local: AbstractTranscriptionExecutor,
                 remote: Optional[AbstractTranscriptionExecutor] = None):
        """Initialize combined executor.

        Args:
            local: Executor for tasks enqueued without ``is_remote``
            remote: Executor for remote tasks; None when no service is configured
        """
        self.local = local
        self.remote = remote
        self._active: Optional[AbstractTranscriptionExecutor] = None
        self._lock = threading.Lock()

    @property
    def current_task_id(self) -> Optional[str]:
        with self._lock:
            active = self._active
        return active.current_task_id if active else None

    async def process(self, envelope: TranscriptionTaskEnvelope) -> None:
        executor = self.remote if envelope.is_remote else self.local
        if executor is None:
            logger.error(f"Task {envelope.id} requires remote transcription, which is not configured")
            envelope.prepare_transcription(keep_segments=True)
            envelope.set_status(TranscriptionStatus.error("Remote transcription is not configured"))
            return
        logger.debug(f"Dispatching task {envelope.id} to {executor.__class__.__name__}")
        with self._lock:
            self._active = executor
        try:
            await executor.process(envelope)
        finally:
            with self._lock:
                self._active = None

    def cancel_task(self, task_id: str) -> None:
        with self._lock:
            active = self._active
        if active is not None:
            active.cancel_task(task_id)

    def pause_task(self, task_id: str) -> None:
        with self._lock:
            active = self._active
        if active is not None:
            active.pause_task(task_id)
