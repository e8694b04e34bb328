"""Abstract executor interface and the task envelope handed to executors."""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from ..models.parameters import TranscriptionParameters
from ..models.recording import RecordingInfo
from ..models.task import TranscriptionTask
from ..models.transcription import Segment, Transcription, TranscriptionStatus

logger = logging.getLogger(__name__)


class Interruption(Enum):
    """Why an executor was asked to stop early."""
    CANCEL = "cancel"
    PAUSE = "pause"


class TranscriptionTaskEnvelope:
    """A task bound to its recording plus the hooks that persist changes.

    Executors never write the catalog or the queue directly; every change
    goes through this envelope. Once a terminal or paused status has been
    recorded, further mutations are ignored.
    """

    def __init__(self,
                 task: TranscriptionTask,
                 recording: RecordingInfo,
                 audio_path: Path,
                 on_recording_changed: Callable[[RecordingInfo], None],
                 on_task_changed: Callable[[TranscriptionTask], None]):
        """Initialize envelope.

        Args:
            task: Task being executed
            recording: Snapshot of the task's recording
            audio_path: Location of the recording's audio file
            on_recording_changed: Called with a copy of the recording after every mutation
            on_task_changed: Called with the new task after ``update_task``
        """
        self._task = task
        self._recording = copy.deepcopy(recording)
        self.audio_path = Path(audio_path)
        self._on_recording_changed = on_recording_changed
        self._on_task_changed = on_task_changed
        self._lock = threading.RLock()
        self._finalized = False

    @property
    def id(self) -> str:
        return self._task.id

    @property
    def task(self) -> TranscriptionTask:
        return self._task

    @property
    def recording(self) -> RecordingInfo:
        with self._lock:
            return copy.deepcopy(self._recording)

    @property
    def transcription(self) -> Optional[Transcription]:
        with self._lock:
            return copy.deepcopy(self._recording.transcription)

    @property
    def status(self) -> Optional[TranscriptionStatus]:
        with self._lock:
            transcription = self._recording.transcription
            return transcription.status if transcription else None

    @property
    def parameters(self) -> TranscriptionParameters:
        return self._task.parameters

    @property
    def model_name(self) -> str:
        return self._task.model_name

    @property
    def is_remote(self) -> bool:
        return self._task.is_remote

    @property
    def is_finalized(self) -> bool:
        with self._lock:
            return self._finalized

    @property
    def offset(self) -> int:
        """Milliseconds already transcribed for this task."""
        with self._lock:
            transcription = self._recording.transcription
            if transcription is None or transcription.id != self._task.id:
                return self._task.offset
            return max(self._task.offset, self._recording.offset)

    @property
    def progress(self) -> float:
        with self._lock:
            duration_ms = self._recording.duration * 1000
            if duration_ms <= 0:
                return 0.0
            return max(0.0, min(1.0, self.offset / duration_ms))

    def update(self, mutate: Callable[[Transcription], None]) -> bool:
        """Apply ``mutate`` to the transcription and persist the recording.

        Returns:
            False if the envelope is finalized or has no transcription
        """
        with self._lock:
            if self._finalized or self._recording.transcription is None:
                return False
            mutate(self._recording.transcription)
            status = self._recording.transcription.status
            if status.is_terminal or status.is_paused:
                self._finalized = True
            snapshot = copy.deepcopy(self._recording)
            self._on_recording_changed(snapshot)
            return True

    def set_status(self, status: TranscriptionStatus) -> bool:
        def apply(transcription: Transcription) -> None:
            transcription.status = status

        changed = self.update(apply)
        if changed:
            logger.debug(f"Task {self.id} status: {status.describe()}")
        return changed

    def append_segment(self, segment: Segment) -> bool:
        def apply(transcription: Transcription) -> None:
            if transcription.segments and segment.start_time < transcription.segments[-1].end_time:
                logger.warning(f"Task {self.id} received out-of-order segment at {segment.start_time}ms")
            transcription.segments.append(segment)

        return self.update(apply)

    def replace_segments(self, segments: List[Segment]) -> bool:
        def apply(transcription: Transcription) -> None:
            transcription.segments = list(segments)

        return self.update(apply)

    def prepare_transcription(self, keep_segments: bool = False) -> Transcription:
        """Make sure the recording carries a transcription for this task.

        A transcription from an earlier attempt (different id) is replaced.
        Its segments are carried over only when ``keep_segments`` is set.

        Returns:
            A copy of the current transcription
        """
        with self._lock:
            existing = self._recording.transcription
            if existing is not None and existing.id == self._task.id:
                return copy.deepcopy(existing)
            if self._finalized:
                return copy.deepcopy(existing)
            segments = list(existing.segments) if existing is not None and keep_segments else []
            self._recording.transcription = Transcription(
                id=self._task.id,
                file_name=self._recording.file_name,
                parameters=self._task.parameters,
                model=self._task.model_name,
                segments=segments,
            )
            logger.info(f"Started new transcription {self._task.id} for {self._recording.file_name}")
            self._on_recording_changed(copy.deepcopy(self._recording))
            return copy.deepcopy(self._recording.transcription)

    def update_task(self, **changes) -> TranscriptionTask:
        """Persist new values on the task, e.g. ``remote_job_id``."""
        with self._lock:
            self._task = replace(self._task, **changes)
            task = self._task
        self._on_task_changed(task)
        return task

    def mark_canceled(self) -> bool:
        return self.set_status(TranscriptionStatus.canceled())

    def mark_paused(self) -> bool:
        """Record a paused status carrying a resumable checkpoint."""
        with self._lock:
            if self._finalized:
                return False
            checkpoint = replace(self._task, offset=self.offset)
            status = self.status
            progress = status.last_progress if status else 0.0
            return self.set_status(TranscriptionStatus.paused(checkpoint, progress))


class AbstractTranscriptionExecutor(ABC):
    """Abstract base class for transcription executors."""

    @abstractmethod
    async def process(self, envelope: TranscriptionTaskEnvelope) -> None:
        """Run the task to a terminal or paused status.

        Args:
            envelope: Task envelope; all progress is reported through it
        """
        pass

    @abstractmethod
    def cancel_task(self, task_id: str) -> None:
        """Request cooperative cancellation of the running task.

        Safe to call from any thread; unknown ids are ignored.
        """
        pass

    @abstractmethod
    def pause_task(self, task_id: str) -> None:
        """Stop the running task so it can be resumed later."""
        pass

    @property
    @abstractmethod
    def current_task_id(self) -> Optional[str]:
        pass
