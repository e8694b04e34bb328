"""Recording catalog: where recordings and their transcriptions are stored."""

import copy
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..models.recording import RecordingInfo
from ..models.transcription import Transcription

logger = logging.getLogger(__name__)


class RecordingCatalog(ABC):
    """Abstract recording store consumed by the worker."""

    @abstractmethod
    def get_recording(self, recording_id: str) -> Optional[RecordingInfo]:
        """Return a copy of the recording, or None if it does not exist."""
        pass

    @abstractmethod
    def list_recordings(self) -> List[RecordingInfo]:
        pass

    @abstractmethod
    def update_recording(self, recording_id: str,
                         mutate: Callable[[RecordingInfo], None]) -> RecordingInfo:
        """Apply ``mutate`` to the stored recording and persist it.

        Args:
            recording_id: Recording to update
            mutate: Callback editing the recording in place

        Returns:
            A copy of the updated recording

        Raises:
            KeyError: If the recording does not exist
        """
        pass

    @abstractmethod
    def audio_path(self, recording: RecordingInfo) -> Path:
        pass

    def has_recording(self, recording_id: str) -> bool:
        return self.get_recording(recording_id) is not None

    def update_transcription(self, recording_id: str,
                             mutate: Callable[[Transcription], None]) -> Optional[Transcription]:
        """Mutate the recording's transcription, if it has one.

        Returns:
            A copy of the updated transcription, or None
        """
        def apply(recording: RecordingInfo) -> None:
            if recording.transcription is not None:
                mutate(recording.transcription)

        return self.update_recording(recording_id, apply).transcription


class JsonRecordingCatalog(RecordingCatalog):
    """Recording catalog persisted as a single JSON document.

    Audio files live in ``recordings_dir`` and are referenced by file name.
    """

    def __init__(self, catalog_file: Path, recordings_dir: Path):
        """Initialize catalog and load persisted recordings.

        Args:
            catalog_file: JSON file holding recording metadata
            recordings_dir: Directory holding the audio files
        """
        self.catalog_file = Path(catalog_file)
        self.recordings_dir = Path(recordings_dir)
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._recordings: Dict[str, RecordingInfo] = self._load()
        logger.info(f"JsonRecordingCatalog initialized with {len(self._recordings)} recordings")

    def _load(self) -> Dict[str, RecordingInfo]:
        if not self.catalog_file.exists():
            return {}
        try:
            with open(self.catalog_file, 'r', encoding='utf-8') as f:
                payload = json.load(f)
            if not isinstance(payload, dict):
                raise TypeError(f"expected a JSON object, got {type(payload).__name__}")
            recordings = [RecordingInfo.from_dict(item) for item in payload.get("recordings", [])]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid recording catalog {self.catalog_file}: {e}") from e
        return {recording.id: recording for recording in recordings}

    def _save(self) -> None:
        self.catalog_file.parent.mkdir(parents=True, exist_ok=True)
        payload = {"recordings": [r.to_dict() for r in self._recordings.values()]}
        fd, tmp_path = tempfile.mkstemp(dir=self.catalog_file.parent, prefix=".catalog-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.catalog_file)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved {len(self._recordings)} recordings to {self.catalog_file}")

    def add_recording(self, recording: RecordingInfo) -> RecordingInfo:
        with self._lock:
            self._recordings[recording.id] = copy.deepcopy(recording)
            self._save()
            logger.info(f"Added recording {recording.id}")
            return copy.deepcopy(recording)

    def remove_recording(self, recording_id: str) -> bool:
        with self._lock:
            if self._recordings.pop(recording_id, None) is None:
                return False
            self._save()
            logger.info(f"Removed recording {recording_id}")
            return True

    def get_recording(self, recording_id: str) -> Optional[RecordingInfo]:
        with self._lock:
            recording = self._recordings.get(recording_id)
            return copy.deepcopy(recording) if recording else None

    def list_recordings(self) -> List[RecordingInfo]:
        with self._lock:
            return sorted((copy.deepcopy(r) for r in self._recordings.values()),
                          key=lambda r: r.date)

    def update_recording(self, recording_id: str,
                         mutate: Callable[[RecordingInfo], None]) -> RecordingInfo:
        with self._lock:
            recording = self._recordings.get(recording_id)
            if recording is None:
                raise KeyError(f"Recording not found: {recording_id}")
            mutate(recording)
            self._save()
            return copy.deepcopy(recording)

    def audio_path(self, recording: RecordingInfo) -> Path:
        return self.recordings_dir / recording.file_name
