"""faster-whisper inference engine and model manager."""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import numpy as np

from ..models.events import (
    EngineCanceled,
    EngineError,
    EngineEvent,
    EngineFinished,
    EngineProgress,
    ModelLoaded,
    ModelLoadEvent,
    ModelLoadFailed,
    ModelLoadProgress,
    NewSegment,
)
from ..models.parameters import TranscriptionParameters
from ..models.transcription import Segment

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
MIB = 1024 * 1024

# Approximate resident size of each model family once loaded
MODEL_MEMORY_REQUIREMENTS: Dict[str, int] = {
    "tiny": 125 * MIB,
    "base": 210 * MIB,
    "small": 600 * MIB,
    "medium": 1700 * MIB,
    "large": 3300 * MIB,
}


class ModelLoadError(RuntimeError):
    """Raised when a speech model cannot be loaded."""


def _import_faster_whisper():
    try:
        from faster_whisper import WhisperModel
    except ImportError as e:
        raise ModelLoadError(
            "Local transcription requires faster-whisper. "
            "Install it with: pip install 'whisperqueue[local]'"
        ) from e
    return WhisperModel


def _known_model_names() -> List[str]:
    try:
        from faster_whisper import available_models
    except ImportError as e:
        raise ModelLoadError(
            "Local transcription requires faster-whisper. "
            "Install it with: pip install 'whisperqueue[local]'"
        ) from e
    return list(available_models())


class FasterWhisperEngine:
    """Runs a loaded faster-whisper model over 16 kHz float32 samples."""

    def __init__(self, model: Any, beam_size: int = 5):
        self.model = model
        self.beam_size = beam_size
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        self._cancel_event.set()

    def transcribe(self, samples: np.ndarray, parameters: TranscriptionParameters,
                   offset_ms: int = 0) -> Iterator[EngineEvent]:
        """Transcribe ``samples`` starting ``offset_ms`` into the audio.

        Segment times are reported relative to the start of the full audio.
        The cancellation flag is checked before each decoding step.

        Args:
            samples: Mono float32 samples at 16 kHz
            parameters: Decoding options
            offset_ms: Milliseconds to skip

        Yields:
            Engine events, ending with Finished, Canceled or Error
        """
        self._cancel_event.clear()
        total_seconds = len(samples) / SAMPLE_RATE
        start_sample = int(offset_ms * SAMPLE_RATE / 1000)
        produced: List[Segment] = []

        try:
            segments_iter, info = self.model.transcribe(
                samples[start_sample:],
                language=parameters.language,
                task="translate" if parameters.should_translate else "transcribe",
                initial_prompt=parameters.initial_prompt,
                beam_size=self.beam_size,
            )
            logger.debug(f"Detected language {info.language} ({info.language_probability:.2f})")

            while True:
                if self._cancel_event.is_set():
                    logger.info("Inference canceled")
                    yield EngineCanceled()
                    return
                raw = next(segments_iter, None)
                if raw is None:
                    break
                segment = Segment(
                    start_time=offset_ms + int(raw.start * 1000),
                    end_time=offset_ms + int(raw.end * 1000),
                    text=raw.text.strip(),
                )
                produced.append(segment)
                yield NewSegment(segment)
                if total_seconds > 0:
                    yield EngineProgress(min(1.0, segment.end_time / 1000 / total_seconds))
        except Exception as e:
            logger.error(f"Inference failed: {e}")
            yield EngineError(e)
            return

        yield EngineFinished(produced)


class WhisperModelManager:
    """Loads faster-whisper models by name."""

    def __init__(self, download_root: Optional[str] = None, device: str = "cpu",
                 compute_type: str = "int8", beam_size: int = 5):
        """Initialize model manager.

        Args:
            download_root: Directory where model weights are cached
            device: Inference device passed to faster-whisper
            compute_type: Quantization passed to faster-whisper
            beam_size: Beam size used by the engines this manager creates
        """
        self.download_root = download_root
        self.device = device
        self.compute_type = compute_type
        self.beam_size = beam_size

    def memory_required(self, model_name: str) -> int:
        """Bytes needed to load ``model_name``; unknown names assume the largest model."""
        family = model_name.split(".")[0].split("-")[0]
        return MODEL_MEMORY_REQUIREMENTS.get(family, MODEL_MEMORY_REQUIREMENTS["large"])

    def has_model(self, model_name: str) -> bool:
        """Whether ``model_name`` names a local model directory, a hub repository or a stock model."""
        if Path(model_name).is_dir() or "/" in model_name:
            return True
        return model_name in _known_model_names()

    def load_model(self, model_name: str) -> Iterator[ModelLoadEvent]:
        yield ModelLoadProgress(0.0)
        try:
            WhisperModel = _import_faster_whisper()
            if self.download_root:
                Path(self.download_root).mkdir(parents=True, exist_ok=True)
            logger.info(f"Loading whisper model '{model_name}' on {self.device} ({self.compute_type})")
            model = WhisperModel(
                model_name,
                device=self.device,
                compute_type=self.compute_type,
                download_root=self.download_root,
            )
        except Exception as e:
            logger.error(f"Failed to load model {model_name}: {e}")
            yield ModelLoadFailed(e if isinstance(e, ModelLoadError) else ModelLoadError(str(e)))
            return
        yield ModelLoadProgress(1.0)
        yield ModelLoaded(model_name, FasterWhisperEngine(model, beam_size=self.beam_size))
