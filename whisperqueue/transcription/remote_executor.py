"""Executor delegating transcription to the remote service."""

import asyncio
import logging
import threading
from typing import Any, Optional

import aiohttp

from ..models.events import UploadDone, UploadProgress
from ..models.transcription import TranscriptionStatus
from .api_client import RemoteApiError
from .base import AbstractTranscriptionExecutor, Interruption, TranscriptionTaskEnvelope

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0


class RemoteTranscriptionExecutor(AbstractTranscriptionExecutor):
    """Uploads the recording, then polls until the service delivers segments."""

    def __init__(self, api_client: Any, poll_interval: float = DEFAULT_POLL_INTERVAL):
        """Initialize remote executor.

        Args:
            api_client: Object with ``upload_file(path)`` and ``get_result(job_id)``
            poll_interval: Seconds between result polls
        """
        self.api_client = api_client
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._current_task_id: Optional[str] = None
        self._runner: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._interruption: Optional[Interruption] = None

    @property
    def current_task_id(self) -> Optional[str]:
        with self._lock:
            return self._current_task_id

    async def process(self, envelope: TranscriptionTaskEnvelope) -> None:
        with self._lock:
            self._current_task_id = envelope.id
            self._runner = asyncio.current_task()
            self._loop = asyncio.get_running_loop()
            self._interruption = None
        try:
            envelope.prepare_transcription(keep_segments=True)
            if self._interruption is None:
                await self._run(envelope)
            else:
                self._finish_interrupted(envelope)
        except asyncio.CancelledError:
            if self._interruption is None:
                raise
            self._finish_interrupted(envelope)
        except (RemoteApiError, aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.error(f"Remote transcription of {envelope.id} failed: {e}")
            envelope.set_status(TranscriptionStatus.error(str(e) or e.__class__.__name__))
        finally:
            with self._lock:
                self._current_task_id = None
                self._runner = None
                self._loop = None
                self._interruption = None

    async def _run(self, envelope: TranscriptionTaskEnvelope) -> None:
        job_id = envelope.task.remote_job_id
        if job_id is None:
            job_id = await self._upload(envelope)
            if job_id is None:
                return
        else:
            logger.info(f"Task {envelope.id} already uploaded as job {job_id}, skipping upload")

        envelope.set_status(TranscriptionStatus.in_progress(0.0, 0))
        while not envelope.is_finalized:
            result = await self.api_client.get_result(job_id)
            if result.error_message:
                envelope.set_status(TranscriptionStatus.error(result.error_message))
                return
            if result.is_done:
                envelope.replace_segments(result.segments or [])
                envelope.set_status(TranscriptionStatus.done())
                logger.info(f"Job {job_id} finished with {len(result.segments or [])} segments")
                return
            logger.debug(f"Job {job_id} not ready, polling again in {self.poll_interval}s")
            await asyncio.sleep(self.poll_interval)

    async def _upload(self, envelope: TranscriptionTaskEnvelope) -> Optional[str]:
        envelope.set_status(TranscriptionStatus.uploading(0.0))
        async for state in self.api_client.upload_file(envelope.audio_path):
            if envelope.is_finalized:
                break
            if isinstance(state, UploadProgress):
                envelope.set_status(TranscriptionStatus.uploading(state.progress))
            elif isinstance(state, UploadDone):
                envelope.update_task(remote_job_id=state.job_id)
                return state.job_id
        if envelope.is_finalized:
            return None
        raise RemoteApiError(f"Upload of {envelope.audio_path.name} ended without a job id")

    def _finish_interrupted(self, envelope: TranscriptionTaskEnvelope) -> None:
        if self._interruption is Interruption.PAUSE:
            envelope.mark_paused()
        else:
            envelope.mark_canceled()

    def _interrupt(self, task_id: str, reason: Interruption) -> None:
        with self._lock:
            if task_id != self._current_task_id:
                return
            self._interruption = reason
            runner, loop = self._runner, self._loop
        logger.info(f"Interrupting task {task_id}: {reason.value}")
        if runner is not None and loop is not None:
            loop.call_soon_threadsafe(runner.cancel)

    def cancel_task(self, task_id: str) -> None:
        self._interrupt(task_id, Interruption.CANCEL)

    def pause_task(self, task_id: str) -> None:
        self._interrupt(task_id, Interruption.PAUSE)
