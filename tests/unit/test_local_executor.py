"""Unit tests for LocalTranscriptionExecutor."""

import asyncio
import threading
from dataclasses import replace
from pathlib import Path

import numpy as np
import pytest

from whisperqueue.models import (
    EngineError,
    EngineFinished,
    EngineProgress,
    NewSegment,
    Segment,
    StatusKind,
    Transcription,
    TranscriptionTask,
)
from whisperqueue.transcription.local_executor import (
    LocalTranscriptionExecutor,
    available_memory,
    bytes_to_readable,
    decode_wave_file,
    wave_duration,
)
from whisperqueue.transcription.whisper_engine import ModelLoadError

GIB = 1024 * 1024 * 1024


def silent_audio(path):
    return np.zeros(32000, dtype=np.float32)


def make_executor(model_manager, memory=8 * GIB):
    return LocalTranscriptionExecutor(model_manager, memory_source=lambda: memory, audio_loader=silent_audio)


@pytest.mark.unit
class TestLocalTranscriptionExecutor:
    """Test cases for the in-process executor."""

    def test_status_sequence(self, fakes, add_recording, make_envelope, trail):
        segment = Segment(0, 1000, "hello")
        engine = fakes.Engine(script=[NewSegment(segment), EngineProgress(0.5), EngineFinished([segment])])
        executor = make_executor(fakes.ModelManager(engine))
        envelope = make_envelope(add_recording("a.wav"))

        asyncio.run(executor.process(envelope))

        assert trail(envelope.updates) == [
            ("not_started", 0.0),
            ("loading", 0.0),
            ("progress", 0.0),
            ("progress", 0.5),
            ("done", 0.0),
        ]
        assert envelope.transcription.segments == [segment]
        assert executor.current_task_id is None

    def test_model_reused_for_same_name(self, fakes, add_recording, make_envelope):
        manager = fakes.ModelManager()
        executor = make_executor(manager)

        asyncio.run(executor.process(make_envelope(add_recording("a.wav"))))
        asyncio.run(executor.process(make_envelope(add_recording("b.wav"))))
        asyncio.run(executor.process(make_envelope(add_recording("c.wav"), TranscriptionTask("c.wav", model_name="base"))))

        assert manager.loaded == ["tiny", "base"]
        assert executor.loaded_model_name == "base"

    def test_insufficient_memory(self, fakes, add_recording, make_envelope):
        manager = fakes.ModelManager(required=600 * 1024 * 1024)
        executor = make_executor(manager, memory=100 * 1024 * 1024)
        envelope = make_envelope(add_recording("a.wav"))

        asyncio.run(executor.process(envelope))

        status = envelope.status
        assert status.kind is StatusKind.ERROR
        assert status.message == ("Not enough memory to transcribe file. "
                                  "Available: 100.0 MB, required: 600.0 MB")
        assert manager.loaded == []

    def test_missing_model_falls_back_to_default(self, fakes, add_recording, make_envelope):
        manager = fakes.ModelManager(known={"tiny"})
        envelope = make_envelope(add_recording("a.wav"), TranscriptionTask("a.wav", model_name="huge"))

        asyncio.run(make_executor(manager).process(envelope))

        assert manager.loaded == ["tiny"]
        assert envelope.task_updates[-1].model_name == "tiny"
        assert envelope.transcription.model == "tiny"
        assert envelope.status.kind is StatusKind.DONE

    def test_unsupported_audio_is_an_error(self, fakes, add_recording, make_envelope, wave_file, catalog):
        recording = add_recording("a.wav")
        wave_file(catalog.audio_path(recording), 0.5, sample_rate=44100, channels=2)
        executor = LocalTranscriptionExecutor(fakes.ModelManager(), memory_source=lambda: 8 * GIB)
        envelope = make_envelope(recording)

        asyncio.run(executor.process(envelope))

        assert envelope.status.kind is StatusKind.ERROR
        assert "16-bit mono PCM at 16000 Hz" in envelope.status.error_message

    def test_model_load_failure(self, fakes, add_recording, make_envelope):
        manager = fakes.ModelManager(fail_with=ModelLoadError("weights missing"))
        envelope = make_envelope(add_recording("a.wav"))

        asyncio.run(make_executor(manager).process(envelope))

        assert envelope.status.error_message == "weights missing"

    def test_engine_error(self, fakes, add_recording, make_envelope):
        engine = fakes.Engine(script=[EngineError(RuntimeError("decoder crashed"))])
        envelope = make_envelope(add_recording("a.wav"))

        asyncio.run(make_executor(fakes.ModelManager(engine)).process(envelope))

        assert envelope.status.error_message == "decoder crashed"

    def test_new_attempt_clears_segments(self, fakes, catalog, add_recording, make_envelope):
        add_recording("a.wav")

        def previous_attempt(stored):
            stored.transcription = Transcription(
                id="old", file_name="a.wav", parameters=TranscriptionTask("a.wav").parameters,
                model="tiny", segments=[Segment(0, 300, "stale")],
            )

        recording = catalog.update_recording("a.wav", previous_attempt)
        envelope = make_envelope(recording)

        asyncio.run(make_executor(fakes.ModelManager()).process(envelope))

        assert [s.text for s in envelope.transcription.segments] == ["hello", "world"]

    def test_resume_starts_at_offset(self, fakes, catalog, add_recording, make_envelope):
        add_recording("a.wav")
        task = TranscriptionTask("a.wav", offset=1000)

        def paused_attempt(stored):
            stored.transcription = Transcription(
                id=task.id, file_name="a.wav", parameters=task.parameters, model="tiny",
                segments=[Segment(0, 1000, "hello")],
            )

        recording = catalog.update_recording("a.wav", paused_attempt)
        engine = fakes.Engine()
        envelope = make_envelope(recording, task)

        asyncio.run(make_executor(fakes.ModelManager(engine)).process(envelope))

        assert engine.offsets == [1000]
        assert [s.text for s in envelope.transcription.segments] == ["hello", "world"]
        assert envelope.status.kind is StatusKind.DONE

    def test_cancel_mid_run(self, fakes, add_recording, make_envelope):
        engine = fakes.Engine(hold_after=1)
        executor = make_executor(fakes.ModelManager(engine))
        envelope = make_envelope(add_recording("a.wav"))

        def cancel_when_holding():
            assert engine.holding.wait(5.0)
            executor.cancel_task(envelope.id)

        canceler = threading.Thread(target=cancel_when_holding)
        canceler.start()
        asyncio.run(executor.process(envelope))
        canceler.join()

        assert envelope.status.kind is StatusKind.CANCELED
        assert [s.text for s in envelope.transcription.segments] == ["hello"]

    def test_pause_mid_run(self, fakes, add_recording, make_envelope):
        engine = fakes.Engine(hold_after=1)
        executor = make_executor(fakes.ModelManager(engine))
        envelope = make_envelope(add_recording("a.wav"))

        def pause_when_holding():
            assert engine.holding.wait(5.0)
            executor.pause_task(envelope.id)

        pauser = threading.Thread(target=pause_when_holding)
        pauser.start()
        asyncio.run(executor.process(envelope))
        pauser.join()

        status = envelope.status
        assert status.kind is StatusKind.PAUSED
        assert status.progress == 0.5
        assert status.task == replace(envelope.task, offset=1000)

    def test_cancel_unknown_task_is_ignored(self, fakes):
        executor = make_executor(fakes.ModelManager())
        executor.cancel_task("nope")
        executor.pause_task("nope")
        assert executor.current_task_id is None


@pytest.mark.unit
class TestLocalHelpers:
    """Test cases for audio decoding and formatting helpers."""

    def test_decode_wave_file(self, temp_data_dir):
        import wave

        path = Path(temp_data_dir) / "tone.wav"
        pcm = np.array([0, 16384, -16384, 32767], dtype=np.int16)
        with wave.open(str(path), 'wb') as wf:
            wf.setnchannels(1)
            wf.setsampwidth(2)
            wf.setframerate(16000)
            wf.writeframes(pcm.tobytes())

        samples = decode_wave_file(path)

        assert samples.dtype == np.float32
        np.testing.assert_allclose(samples, [0.0, 0.5, -0.5, 32767 / 32768], rtol=1e-6)

    def test_rejects_unsupported_wave_format(self, temp_data_dir, wave_file):
        path = wave_file(Path(temp_data_dir) / "stereo.wav", 0.5, sample_rate=44100, channels=2)

        with pytest.raises(ValueError, match="must be 16-bit mono PCM"):
            decode_wave_file(path)
        with pytest.raises(ValueError, match=r"2 channel\(s\), 16-bit at 44100 Hz"):
            wave_duration(path)

    def test_wave_duration(self, temp_data_dir, wave_file):
        path = wave_file(Path(temp_data_dir) / "mono.wav", 1.5)

        assert wave_duration(path) == pytest.approx(1.5)

    def test_available_memory_is_positive(self):
        available = available_memory()

        assert isinstance(available, int)
        assert available > 0

    def test_bytes_to_readable(self):
        assert bytes_to_readable(512) == "512.0 B"
        assert bytes_to_readable(125 * 1024 * 1024) == "125.0 MB"
        assert bytes_to_readable(3 * 1024 * 1024 * 1024) == "3.0 GB"
