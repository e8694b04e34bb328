"""Pytest configuration and fixtures for whisperqueue tests."""

import asyncio
import logging
import tempfile
import threading
import time
import uuid
import wave
from types import SimpleNamespace
from pathlib import Path

import numpy as np
import pytest

from whisperqueue.models import (
    EngineCanceled,
    EngineFinished,
    EngineProgress,
    ModelLoaded,
    ModelLoadFailed,
    ModelLoadProgress,
    NewSegment,
    RecordingInfo,
    ResultResponse,
    Segment,
    TranscriptionStatus,
    TranscriptionTask,
    UploadDone,
    UploadProgress,
)
from whisperqueue.services.background import AbstractBackgroundCoordinator, GrantHandle
from whisperqueue.services.worker import TranscriptionWorker
from whisperqueue.storage import JsonRecordingCatalog, TaskQueue
from whisperqueue.transcription.base import (
    AbstractTranscriptionExecutor,
    Interruption,
    TranscriptionTaskEnvelope,
)
from whisperqueue.transcription.publisher import WorkerPublisher


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MIB = 1024 * 1024


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without threads or network")
    config.addinivalue_line("markers", "integration: end-to-end tests through the worker")


def write_wave_file(path: Path, duration_seconds: float = 2.0, sample_rate: int = 16000,
                    channels: int = 1) -> Path:
    """Write a 16-bit sine wave."""
    samples = int(duration_seconds * sample_rate)
    t = np.linspace(0, duration_seconds, samples, False)
    audio_data = (np.sin(2 * np.pi * 440 * t) * 32767 * 0.5).astype(np.int16)
    audio_data = np.repeat(audio_data, channels)
    with wave.open(str(path), 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(audio_data.tobytes())
    return path


class FakeEngine:
    """Inference engine replaying a script of events.

    With ``hold_after`` set, the engine blocks after yielding that many
    segments until ``release`` is set or the engine is canceled.
    """

    def __init__(self, segments=None, script=None, hold_after=None):
        self.segments = segments or [
            Segment(0, 1000, "hello"),
            Segment(1000, 2000, "world"),
        ]
        self.script = script
        self.hold_after = hold_after
        self.release = threading.Event()
        self.holding = threading.Event()
        self.cancel_event = threading.Event()
        self.offsets = []

    def cancel(self):
        self.cancel_event.set()

    def transcribe(self, samples, parameters, offset_ms=0):
        self.cancel_event.clear()
        self.offsets.append(offset_ms)
        if self.script is not None:
            yield from self.script
            return

        total = self.segments[-1].end_time
        produced = []
        for segment in [s for s in self.segments if s.start_time >= offset_ms]:
            if self.cancel_event.is_set():
                yield EngineCanceled()
                return
            produced.append(segment)
            yield NewSegment(segment)
            yield EngineProgress(segment.end_time / total)
            if self.hold_after is not None and len(produced) >= self.hold_after:
                self.holding.set()
                while not self.release.is_set() and not self.cancel_event.is_set():
                    time.sleep(0.01)
        if self.cancel_event.is_set():
            yield EngineCanceled()
            return
        yield EngineFinished(produced)


class FakeModelManager:
    def __init__(self, engine=None, required=125 * MIB, fail_with=None, known=None):
        self.engine = engine or FakeEngine()
        self.known = known
        self.required = required
        self.fail_with = fail_with
        self.loaded = []

    def has_model(self, model_name):
        return self.known is None or model_name in self.known

    def memory_required(self, model_name):
        return self.required

    def load_model(self, model_name):
        self.loaded.append(model_name)
        yield ModelLoadProgress(0.0)
        if self.fail_with is not None:
            yield ModelLoadFailed(self.fail_with)
            return
        yield ModelLoadProgress(1.0)
        yield ModelLoaded(model_name, self.engine)


class FakeApiClient:
    """Remote API returning ``pending_polls`` not-done results before the final one."""

    def __init__(self, job_id="job-1", pending_polls=0, segments=None, error_message=None,
                 poll_error=None):
        self.job_id = job_id
        self.pending_polls = pending_polls
        self.segments = segments if segments is not None else [Segment(0, 1500, "remote text")]
        self.error_message = error_message
        self.poll_error = poll_error
        self.uploads = []
        self.polls = []

    async def upload_file(self, path):
        self.uploads.append(Path(path))
        yield UploadProgress(1.0)
        yield UploadDone(self.job_id)

    async def get_result(self, job_id):
        self.polls.append(job_id)
        if self.poll_error is not None:
            raise self.poll_error
        if self.error_message:
            return ResultResponse(is_done=False, error_message=self.error_message)
        if len(self.polls) <= self.pending_polls:
            return ResultResponse(is_done=False)
        return ResultResponse(is_done=True, segments=list(self.segments), language="en")


class FakeCoordinator(AbstractBackgroundCoordinator):
    """Background coordinator whose grants expire only when told to."""

    def __init__(self):
        self._lock = threading.Lock()
        self._next_id = 0
        self.grants = {}
        self.ended = []
        self.continuation = None
        self.scheduled = 0
        self.canceled_continuations = 0

    def begin_grant(self, on_expire):
        with self._lock:
            self._next_id += 1
            handle = GrantHandle(self._next_id)
            self.grants[handle.id] = on_expire
        return handle

    def end_grant(self, handle):
        with self._lock:
            self.grants.pop(handle.id, None)
            self.ended.append(handle.id)

    def schedule_continuation(self, delay, callback):
        with self._lock:
            self.continuation = (delay, callback)
            self.scheduled += 1

    def cancel_scheduled_continuation(self):
        with self._lock:
            self.continuation = None
            self.canceled_continuations += 1

    def expire_active(self):
        with self._lock:
            expiring = list(self.grants.values())
            self.grants.clear()
        for on_expire in expiring:
            on_expire()

    def fire_continuation(self):
        with self._lock:
            continuation, self.continuation = self.continuation, None
        if continuation is not None:
            continuation[1]()


class HeldExecutor(AbstractTranscriptionExecutor):
    """Executor that reports progress 0.5 and waits for ``release`` before finishing."""

    def __init__(self, hold=True):
        self.release = threading.Event()
        if not hold:
            self.release.set()
        self.started = threading.Event()
        self.order = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()
        self._current = None
        self._interruption = None

    @property
    def current_task_id(self):
        return self._current

    async def process(self, envelope):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self._current = envelope.id
            self._interruption = None
        self.order.append(envelope.task.recording_id)
        try:
            envelope.prepare_transcription()
            envelope.set_status(TranscriptionStatus.in_progress(0.5, 0))
            self.started.set()
            while not self.release.is_set() and self._interruption is None:
                await asyncio.sleep(0.01)
            if self._interruption is Interruption.PAUSE:
                envelope.mark_paused()
            elif self._interruption is Interruption.CANCEL:
                envelope.mark_canceled()
            else:
                envelope.set_status(TranscriptionStatus.done())
        finally:
            with self._lock:
                self.active -= 1
                self._current = None

    def _interrupt(self, task_id, reason):
        with self._lock:
            if task_id == self._current:
                self._interruption = reason

    def cancel_task(self, task_id):
        self._interrupt(task_id, Interruption.CANCEL)

    def pause_task(self, task_id):
        self._interrupt(task_id, Interruption.PAUSE)


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture
def catalog(temp_data_dir):
    data_dir = Path(temp_data_dir)
    return JsonRecordingCatalog(data_dir / "recordings.json", data_dir / "recordings")


@pytest.fixture
def task_queue(temp_data_dir):
    return TaskQueue(Path(temp_data_dir) / "tasks.json")


@pytest.fixture
def add_recording(catalog):
    """Factory writing a WAV file and registering it in the catalog."""
    def add(name="meeting.wav", duration_seconds=2.0):
        write_wave_file(catalog.recordings_dir / name, duration_seconds)
        return catalog.add_recording(RecordingInfo(file_name=name, duration=duration_seconds, title=name))
    return add


@pytest.fixture
def publisher():
    """Publisher on a topic tree unique to the test."""
    return WorkerPublisher(f"test_{uuid.uuid4().hex}")


@pytest.fixture
def coordinator():
    return FakeCoordinator()


@pytest.fixture
def make_worker(task_queue, catalog, coordinator, publisher):
    workers = []

    def make(executor, **kwargs):
        worker = TranscriptionWorker(
            task_queue=task_queue,
            catalog=catalog,
            executor=executor,
            coordinator=coordinator,
            publisher=publisher,
            continuation_delay=kwargs.pop("continuation_delay", 30.0),
            **kwargs,
        )
        workers.append((worker, executor))
        return worker

    yield make

    for worker, executor in workers:
        release = getattr(executor, "release", None)
        if release is not None:
            release.set()
        worker.shutdown(timeout=5.0)


@pytest.fixture
def make_envelope(catalog):
    """Factory building an envelope whose changes are recorded and persisted."""
    def make(recording, task=None):
        task = task or TranscriptionTask(recording_id=recording.id)
        updates = []
        task_updates = []

        def on_recording_changed(updated):
            updates.append(updated)

            def apply(stored):
                stored.transcription = updated.transcription

            catalog.update_recording(updated.id, apply)

        envelope = TranscriptionTaskEnvelope(
            task=task,
            recording=recording,
            audio_path=catalog.audio_path(recording),
            on_recording_changed=on_recording_changed,
            on_task_changed=task_updates.append,
        )
        envelope.updates = updates
        envelope.task_updates = task_updates
        return envelope
    return make


def status_trail(updates):
    """Collapse recorded transcriptions into distinct consecutive (kind, progress) pairs."""
    trail = []
    for item in updates:
        transcription = getattr(item, "transcription", item)
        if transcription is None:
            continue
        status = transcription.status
        entry = (status.kind.value, round(status.last_progress, 3))
        if not trail or trail[-1] != entry:
            trail.append(entry)
    return trail


@pytest.fixture
def trail():
    return status_trail


@pytest.fixture
def fakes():
    """Fake collaborators for executors and the worker."""
    return SimpleNamespace(
        Engine=FakeEngine,
        ModelManager=FakeModelManager,
        ApiClient=FakeApiClient,
        HeldExecutor=HeldExecutor,
    )


@pytest.fixture
def wait_for():
    """Poll ``condition`` until it holds or ``timeout`` elapses."""
    def wait(condition, timeout=5.0):
        deadline = time.time() + timeout
        while time.time() < deadline:
            if condition():
                return True
            time.sleep(0.01)
        return condition()
    return wait


@pytest.fixture
def wave_file():
    return write_wave_file
