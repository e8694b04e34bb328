"""Executor running inference in-process."""

import asyncio
import logging
import threading
import wave
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

import numpy as np
import psutil

from ..models.events import (
    EngineCanceled,
    EngineError,
    EngineFinished,
    EngineProgress,
    ModelLoaded,
    ModelLoadFailed,
    ModelLoadProgress,
    NewSegment,
)
from ..models.transcription import TranscriptionStatus
from .base import AbstractTranscriptionExecutor, Interruption, TranscriptionTaskEnvelope
from .whisper_engine import SAMPLE_RATE, ModelLoadError

logger = logging.getLogger(__name__)


class InsufficientMemoryError(RuntimeError):
    """Raised when the device cannot hold the requested model."""


def bytes_to_readable(num_bytes: int) -> str:
    value = float(num_bytes)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def available_memory() -> int:
    """Bytes of memory that can be given to a new process without swapping."""
    return int(psutil.virtual_memory().available)


def _check_wave_format(wf: wave.Wave_read, path: Path) -> None:
    if wf.getnchannels() != 1 or wf.getsampwidth() != 2 or wf.getframerate() != SAMPLE_RATE:
        raise ValueError(
            f"{path.name} must be 16-bit mono PCM at {SAMPLE_RATE} Hz, got "
            f"{wf.getnchannels()} channel(s), {wf.getsampwidth() * 8}-bit at {wf.getframerate()} Hz"
        )


def wave_duration(path: Path) -> float:
    """Duration in seconds of a WAV file the local engine can decode.

    Raises:
        ValueError: If the file is not 16-bit mono PCM at 16 kHz
    """
    with wave.open(str(path), 'rb') as wf:
        _check_wave_format(wf, Path(path))
        return wf.getnframes() / float(wf.getframerate())


def decode_wave_file(path: Path) -> np.ndarray:
    """Read a 16-bit mono 16 kHz WAV file into float32 samples in [-1, 1]."""
    with wave.open(str(path), 'rb') as wf:
        _check_wave_format(wf, Path(path))
        frames = wf.readframes(wf.getnframes())
    pcm = np.frombuffer(frames, dtype=np.int16)
    return pcm.astype(np.float32) / 32768.0


class LocalTranscriptionExecutor(AbstractTranscriptionExecutor):
    """Runs a local speech model, reusing it while the model name is unchanged."""

    def __init__(self,
                 model_manager: Any,
                 memory_source: Callable[[], int] = available_memory,
                 audio_loader: Callable[[Path], np.ndarray] = decode_wave_file,
                 default_model: str = "tiny"):
        """Initialize local executor.

        Args:
            model_manager: Object with ``has_model(name)``, ``load_model(name)`` and
                ``memory_required(name)``
            memory_source: Returns currently available memory in bytes
            audio_loader: Decodes an audio file into 16 kHz float32 samples
            default_model: Model used when a task names one that is not available
        """
        self.model_manager = model_manager
        self.memory_source = memory_source
        self.audio_loader = audio_loader
        self.default_model = default_model
        self._loaded: Optional[Tuple[str, Any]] = None
        self._lock = threading.Lock()
        self._current_task_id: Optional[str] = None
        self._interruption: Optional[Interruption] = None

    @property
    def current_task_id(self) -> Optional[str]:
        with self._lock:
            return self._current_task_id

    @property
    def loaded_model_name(self) -> Optional[str]:
        return self._loaded[0] if self._loaded else None

    async def process(self, envelope: TranscriptionTaskEnvelope) -> None:
        with self._lock:
            self._current_task_id = envelope.id
            self._interruption = None
        try:
            envelope.prepare_transcription(keep_segments=False)
            if self._stop_if_interrupted(envelope):
                return
            await self._run(envelope)
        except (InsufficientMemoryError, ModelLoadError, OSError, ValueError, wave.Error) as e:
            logger.error(f"Local transcription of {envelope.id} failed: {e}")
            envelope.set_status(TranscriptionStatus.error(str(e)))
        finally:
            with self._lock:
                self._current_task_id = None
                self._interruption = None

    async def _run(self, envelope: TranscriptionTaskEnvelope) -> None:
        envelope.set_status(TranscriptionStatus.loading())
        self._resolve_model(envelope)
        engine = await self._load_engine(envelope.model_name)
        if self._stop_if_interrupted(envelope):
            return

        samples = await asyncio.to_thread(self.audio_loader, envelope.audio_path)
        offset = envelope.offset
        envelope.set_status(TranscriptionStatus.in_progress(envelope.progress, offset))
        logger.info(f"Transcribing {envelope.audio_path.name} from {offset}ms with {envelope.model_name}")

        stream = engine.transcribe(samples, envelope.parameters, offset)
        while True:
            event = await asyncio.to_thread(next, stream, None)
            if event is None:
                break
            if self._interruption is not None or envelope.is_finalized:
                engine.cancel()
            if isinstance(event, NewSegment):
                if self._interruption is None:
                    envelope.append_segment(event.segment)
            elif isinstance(event, EngineProgress):
                envelope.set_status(TranscriptionStatus.in_progress(event.value, envelope.offset))
            elif isinstance(event, EngineError):
                envelope.set_status(TranscriptionStatus.error(str(event.error)))
                return
            elif isinstance(event, EngineCanceled) or self._interruption is not None:
                self._finish_interrupted(envelope)
                return
            elif isinstance(event, EngineFinished):
                envelope.set_status(TranscriptionStatus.done())
                logger.info(f"Finished {envelope.id} with {len(event.segments)} new segments")
                return

    def _resolve_model(self, envelope: TranscriptionTaskEnvelope) -> None:
        """Switch the task to the default model when its own model is not available."""
        model_name = envelope.model_name
        if model_name == self.default_model or self.model_manager.has_model(model_name):
            return
        logger.warning(f"Model {model_name} is not available, using {self.default_model} for {envelope.id}")
        envelope.update_task(model_name=self.default_model)

        def apply(transcription) -> None:
            transcription.model = self.default_model

        envelope.update(apply)

    async def _load_engine(self, model_name: str) -> Any:
        if self._loaded and self._loaded[0] == model_name:
            return self._loaded[1]

        required = self.model_manager.memory_required(model_name)
        available = self.memory_source()
        if available <= required:
            raise InsufficientMemoryError(
                "Not enough memory to transcribe file. "
                f"Available: {bytes_to_readable(available)}, required: {bytes_to_readable(required)}"
            )

        # Drop the previous model before loading another one
        self._loaded = None
        events = self.model_manager.load_model(model_name)
        while True:
            event = await asyncio.to_thread(next, events, None)
            if event is None:
                raise ModelLoadError(f"Model {model_name} did not finish loading")
            if isinstance(event, ModelLoadProgress):
                logger.debug(f"Loading {model_name}: {event.value:.0%}")
            elif isinstance(event, ModelLoadFailed):
                raise ModelLoadError(str(event.error))
            elif isinstance(event, ModelLoaded):
                self._loaded = (model_name, event.engine)
                return event.engine

    def _stop_if_interrupted(self, envelope: TranscriptionTaskEnvelope) -> bool:
        if self._interruption is None:
            return False
        self._finish_interrupted(envelope)
        return True

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
            loaded = self._loaded
        logger.info(f"Interrupting task {task_id}: {reason.value}")
        if loaded:
            loaded[1].cancel()

    def cancel_task(self, task_id: str) -> None:
        self._interrupt(task_id, Interruption.CANCEL)

    def pause_task(self, task_id: str) -> None:
        self._interrupt(task_id, Interruption.PAUSE)
