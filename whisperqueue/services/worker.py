"""Transcription worker: single-flight scheduler draining the task queue."""

import asyncio
import logging
import threading
from typing import List, Optional

from ..models.parameters import TranscriptionParameters
from ..models.recording import RecordingInfo
from ..models.task import TranscriptionTask
from ..models.transcription import StatusKind, Transcription, TranscriptionStatus
from ..storage.recording_catalog import RecordingCatalog
from ..storage.task_queue import TaskQueue
from ..transcription.base import AbstractTranscriptionExecutor, TranscriptionTaskEnvelope
from ..transcription.publisher import (
    ProcessingStream,
    QueueStream,
    TranscriptionStream,
    WorkerPublisher,
)
from .background import AbstractBackgroundCoordinator, GrantHandle

logger = logging.getLogger(__name__)

DEFAULT_CONTINUATION_DELAY = 60.0
STOPPED_UNEXPECTEDLY = "Transcription stopped unexpectedly"


class TranscriptionWorker:
    """Owns the task queue and runs at most one transcription at a time.

    Tasks are executed on a dedicated thread with its own asyncio loop. The
    thread exists only while there is eligible work; when the queue is
    drained (or draining is halted by an expired background grant) it exits
    and the worker is idle again.
    """

    def __init__(self,
                 task_queue: TaskQueue,
                 catalog: RecordingCatalog,
                 executor: AbstractTranscriptionExecutor,
                 coordinator: AbstractBackgroundCoordinator,
                 publisher: Optional[WorkerPublisher] = None,
                 continuation_delay: float = DEFAULT_CONTINUATION_DELAY,
                 auto_resume_paused: bool = False,
                 auto_process: bool = True):
        """Initialize transcription worker.

        Args:
            task_queue: Durable queue of pending tasks
            catalog: Recording catalog holding the transcriptions
            executor: Executor running each task
            coordinator: Host background-execution mechanism
            publisher: Publisher for the observable streams
            continuation_delay: Seconds before a scheduled continuation fires
            auto_resume_paused: Resume paused tasks when returning to foreground
            auto_process: Start processing as soon as a task is enqueued
        """
        self.task_queue = task_queue
        self.catalog = catalog
        self.executor = executor
        self.coordinator = coordinator
        self.publisher = publisher or WorkerPublisher()
        self.continuation_delay = continuation_delay
        self.auto_resume_paused = auto_resume_paused
        self.auto_process = auto_process

        self._lock = threading.RLock()
        self._worker_thread: Optional[threading.Thread] = None
        self._current_envelope: Optional[TranscriptionTaskEnvelope] = None
        self._grant: Optional[GrantHandle] = None
        self._halted = False
        self._idle_event = threading.Event()
        self._idle_event.set()

        logger.info(f"TranscriptionWorker initialized with {len(task_queue)} queued tasks")

    # Observability

    @property
    def current_task_id(self) -> Optional[str]:
        with self._lock:
            return self._current_envelope.id if self._current_envelope else None

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return self._worker_thread is not None

    def queue_snapshot(self) -> List[TranscriptionTask]:
        return self.task_queue.snapshot()

    def processing_stream(self) -> ProcessingStream:
        return ProcessingStream(self.publisher.processing_topic)

    def queue_stream(self) -> QueueStream:
        return QueueStream(self.publisher.queue_topic)

    def transcription_stream(self) -> TranscriptionStream:
        return TranscriptionStream(self.publisher.transcription_topic)

    def paused_tasks(self) -> List[TranscriptionTask]:
        """Queued tasks waiting for ``resume_task``, carrying their checkpoints."""
        paused = []
        for task in self.task_queue.snapshot():
            recording = self.catalog.get_recording(task.recording_id)
            if recording is not None and self._is_paused(task, recording):
                paused.append(recording.transcription.status.task or task)
        return paused

    # Queue operations

    def enqueue_task_for_recording_id(self,
                                      recording_id: str,
                                      parameters: Optional[TranscriptionParameters] = None,
                                      model_name: str = "tiny",
                                      is_remote: bool = False) -> Optional[TranscriptionTask]:
        """Queue a transcription of a recording.

        Args:
            recording_id: Recording to transcribe
            parameters: Decoding options, captured now
            model_name: Model used by local execution
            is_remote: Run through the remote service instead of locally

        Returns:
            The new task, or None if the recording already has one queued

        Raises:
            ValueError: If the recording does not exist
        """
        if not self.catalog.has_recording(recording_id):
            raise ValueError(f"Recording not found: {recording_id}")

        task = TranscriptionTask(
            recording_id=recording_id,
            parameters=parameters or TranscriptionParameters(),
            model_name=model_name,
            is_remote=is_remote,
        )
        if not self.task_queue.enqueue(task):
            return None

        def apply(recording: RecordingInfo) -> None:
            if recording.transcription is None:
                recording.transcription = Transcription(
                    id=task.id,
                    file_name=recording.file_name,
                    parameters=task.parameters,
                    model=task.model_name,
                )
            else:
                recording.transcription.status = TranscriptionStatus.not_started()

        updated = self.catalog.update_recording(recording_id, apply)
        logger.info(f"Enqueued task {task.id} for {recording_id} ({'remote' if is_remote else model_name})")
        self.publisher.publish_transcription(recording_id, updated.transcription)
        self._publish_queue()

        if self.auto_process:
            self.process_tasks()
        return task

    def cancel_task_for_recording_id(self, recording_id: str) -> bool:
        """Cancel the active or pending task of a recording.

        Returns:
            False if the recording had no task
        """
        with self._lock:
            envelope = self._current_envelope
            if envelope is not None and envelope.task.recording_id != recording_id:
                envelope = None
            task = self.task_queue.cancel(recording_id, envelope.id if envelope else None)

        if envelope is not None:
            logger.info(f"Canceling active task {envelope.id} for {recording_id}")
            envelope.mark_canceled()
            self.executor.cancel_task(envelope.id)
            return True
        if task is None:
            return False

        self._mark_pending_canceled(task)
        self._publish_queue()
        return True

    def cancel_all_tasks(self) -> None:
        with self._lock:
            envelope = self._current_envelope
            removed = self.task_queue.clear(keep_task_id=envelope.id if envelope else None)

        logger.info(f"Canceling all tasks ({len(removed)} pending)")
        for task in removed:
            self._mark_pending_canceled(task)
        if envelope is not None:
            envelope.mark_canceled()
            self.executor.cancel_task(envelope.id)
        self._publish_queue()

    def resume_task(self, task: TranscriptionTask) -> bool:
        """Put a paused task back at the head of the queue and process it.

        Returns:
            False if the task's recording is already being transcribed
        """
        if not self.catalog.has_recording(task.recording_id):
            raise ValueError(f"Recording not found: {task.recording_id}")
        with self._lock:
            envelope = self._current_envelope
            if envelope is not None and envelope.task.recording_id == task.recording_id:
                logger.info(f"Task for {task.recording_id} is already running")
                return False
            self.task_queue.resume(task)

        def apply(transcription: Transcription) -> None:
            if transcription.status.is_paused:
                transcription.status = TranscriptionStatus.not_started()

        transcription = self.catalog.update_transcription(task.recording_id, apply)
        self.publisher.publish_transcription(task.recording_id, transcription)
        self._publish_queue()
        self.process_tasks()
        return True

    # Processing

    def process_tasks(self) -> bool:
        """Start draining the queue unless already processing.

        Returns:
            True if a worker thread was started
        """
        with self._lock:
            self._halted = False
            if self._worker_thread is not None:
                logger.debug("Already processing, ignoring process_tasks")
                return False
            if not any(self._is_eligible(task) for task in self.task_queue.snapshot()):
                return False
            self._idle_event.clear()
            thread = threading.Thread(target=self._drain, daemon=True)
            thread.name = "TranscriptionWorkerThread"
            self._worker_thread = thread
            thread.start()
            return True

    def _drain(self) -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            while True:
                with self._lock:
                    envelope = None if self._halted else self._next_envelope()
                    if envelope is None:
                        self._current_envelope = None
                        self._worker_thread = None
                        self.publisher.publish_processing(False, None)
                        self._idle_event.set()
                        return
                    self._current_envelope = envelope
                    self.publisher.publish_processing(True, envelope.id)
                self._run(loop, envelope)
        finally:
            loop.close()
            logger.debug("Worker thread exiting and closing its event loop")

    def _run(self, loop: asyncio.AbstractEventLoop, envelope: TranscriptionTaskEnvelope) -> None:
        logger.info(f"Processing task {envelope.id} for {envelope.task.recording_id}")
        grant = self.coordinator.begin_grant(lambda: self._on_grant_expired(envelope.id))
        with self._lock:
            self._grant = grant
        self.coordinator.schedule_continuation(self.continuation_delay, self.handle_continuation)
        try:
            loop.run_until_complete(self.executor.process(envelope))
        except Exception as e:
            logger.error(f"Unhandled exception while processing task {envelope.id}: {e}", exc_info=True)
        finally:
            with self._lock:
                grant, self._grant = self._grant, None
                halted = self._halted
            if grant is not None:
                self.coordinator.end_grant(grant)
            if not halted:
                self.coordinator.cancel_scheduled_continuation()
            self._finish(envelope)

    def _finish(self, envelope: TranscriptionTaskEnvelope) -> None:
        if envelope.transcription is None:
            envelope.prepare_transcription()
        status = envelope.status
        if not (status.is_terminal or status.is_paused):
            logger.warning(f"Task {envelope.id} returned with status {status.kind.value}")
            envelope.set_status(TranscriptionStatus.error(STOPPED_UNEXPECTEDLY))
            status = envelope.status

        if status.is_paused:
            self.task_queue.update(status.task or envelope.task)
            logger.info(f"Task {envelope.id} paused at {status.progress:.0%}, kept in queue")
        else:
            self.task_queue.remove(envelope.id)
            logger.info(f"Task {envelope.id} finished: {status.describe()}")

        with self._lock:
            self._current_envelope = None
        self._publish_queue()

    def _next_envelope(self) -> Optional[TranscriptionTaskEnvelope]:
        for task in self.task_queue.snapshot():
            recording = self.catalog.get_recording(task.recording_id)
            if recording is None:
                logger.warning(f"Dropping task {task.id}: recording {task.recording_id} no longer exists")
                self.task_queue.remove(task.id)
                continue
            if self._is_paused(task, recording):
                continue
            return TranscriptionTaskEnvelope(
                task=task,
                recording=recording,
                audio_path=self.catalog.audio_path(recording),
                on_recording_changed=self._on_recording_changed,
                on_task_changed=self._on_task_changed,
            )
        return None

    def _is_eligible(self, task: TranscriptionTask) -> bool:
        recording = self.catalog.get_recording(task.recording_id)
        return recording is not None and not self._is_paused(task, recording)

    @staticmethod
    def _is_paused(task: TranscriptionTask, recording: RecordingInfo) -> bool:
        transcription = recording.transcription
        return (transcription is not None
                and transcription.id == task.id
                and transcription.status.is_paused)

    def _on_recording_changed(self, recording: RecordingInfo) -> None:
        def apply(stored: RecordingInfo) -> None:
            stored.transcription = recording.transcription

        try:
            self.catalog.update_recording(recording.id, apply)
        except KeyError:
            logger.warning(f"Recording {recording.id} was removed while being transcribed")
            return
        self.publisher.publish_transcription(recording.id, recording.transcription)

    def _on_task_changed(self, task: TranscriptionTask) -> None:
        self.task_queue.update(task)
        self._publish_queue()

    def _mark_pending_canceled(self, task: TranscriptionTask) -> None:
        def apply(transcription: Transcription) -> None:
            if transcription.status.kind in (StatusKind.NOT_STARTED, StatusKind.PAUSED):
                transcription.status = TranscriptionStatus.canceled()

        try:
            transcription = self.catalog.update_transcription(task.recording_id, apply)
        except KeyError:
            return
        logger.info(f"Canceled pending task {task.id} for {task.recording_id}")
        self.publisher.publish_transcription(task.recording_id, transcription)

    def _publish_queue(self) -> None:
        self.publisher.publish_queue(self.task_queue.snapshot())

    # Background execution

    def _on_grant_expired(self, task_id: str) -> None:
        with self._lock:
            envelope = self._current_envelope
            if envelope is None or envelope.id != task_id:
                return
            self._halted = True
        logger.warning(f"Background time expired, pausing task {task_id}")
        envelope.mark_paused()
        self.executor.pause_task(task_id)

    def did_enter_background(self) -> None:
        with self._lock:
            envelope = self._current_envelope
            needs_grant = envelope is not None and self._grant is None
        if needs_grant:
            grant = self.coordinator.begin_grant(lambda: self._on_grant_expired(envelope.id))
            with self._lock:
                self._grant = grant
        if envelope is not None or len(self.task_queue) > 0:
            self.coordinator.schedule_continuation(self.continuation_delay, self.handle_continuation)

    def will_enter_foreground(self) -> None:
        self.coordinator.cancel_scheduled_continuation()
        if self.auto_resume_paused:
            # Resume in reverse so the oldest paused task ends up first
            for task in reversed(self.paused_tasks()):
                self.resume_task(task)
        self.process_tasks()

    def handle_continuation(self) -> None:
        logger.info("Continuation fired, resuming queue processing")
        self.process_tasks()

    # Lifecycle

    def start(self) -> bool:
        """Reconcile persisted state left by a previous process and start draining."""
        dropped = self.task_queue.reconcile(self.catalog.has_recording)
        for recording in self.catalog.list_recordings():
            transcription = recording.transcription
            if transcription is not None and transcription.status.is_active:
                def apply(stored: Transcription) -> None:
                    stored.status = TranscriptionStatus.not_started()

                self.catalog.update_transcription(recording.id, apply)
                logger.info(f"Reset interrupted transcription of {recording.id} "
                            f"({len(transcription.segments)} segments kept)")
        logger.info(f"Worker started: {len(self.task_queue)} tasks queued, {len(dropped)} dropped")
        self._publish_queue()
        return self.process_tasks()

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        return self._idle_event.wait(timeout)

    def shutdown(self, timeout: float = 10.0) -> bool:
        """Pause the active task and wait for the worker thread to exit.

        Returns:
            True if the worker thread exited within ``timeout``
        """
        logger.info("Shutting down transcription worker...")
        with self._lock:
            self._halted = True
            envelope = self._current_envelope
            thread = self._worker_thread
        if envelope is not None:
            envelope.mark_paused()
            self.executor.pause_task(envelope.id)
        if thread is not None:
            thread.join(timeout=timeout)
        self.coordinator.cancel_scheduled_continuation()
        stopped = thread is None or not thread.is_alive()
        logger.info(f"Transcription worker shutdown complete: stopped={stopped}")
        return stopped
