"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from .parameters import TranscriptionParameters
from .task import TranscriptionTask


class StatusKind(Enum):
    """Lifecycle stage of a transcription attempt."""
    NOT_STARTED = "not_started"
    LOADING = "loading"
    UPLOADING = "uploading"
    PROGRESS = "progress"
    DONE = "done"
    ERROR = "error"
    CANCELED = "canceled"
    PAUSED = "paused"


TERMINAL_KINDS = {StatusKind.DONE, StatusKind.ERROR, StatusKind.CANCELED}
ACTIVE_KINDS = {StatusKind.LOADING, StatusKind.UPLOADING, StatusKind.PROGRESS}


@dataclass(frozen=True)
class TranscriptionStatus:
    """State machine value of a Transcription.

    Only the fields relevant to ``kind`` are populated: ``progress`` for
    uploading/progress/paused, ``offset`` for progress, ``timestamp`` for
    done, ``message`` for error and ``task`` for paused.
    """
    kind: StatusKind
    progress: float = 0.0
    offset: int = 0
    message: Optional[str] = None
    timestamp: Optional[datetime] = None
    task: Optional[TranscriptionTask] = None

    @classmethod
    def not_started(cls) -> "TranscriptionStatus":
        return cls(StatusKind.NOT_STARTED)

    @classmethod
    def loading(cls) -> "TranscriptionStatus":
        return cls(StatusKind.LOADING)

    @classmethod
    def uploading(cls, progress: float) -> "TranscriptionStatus":
        return cls(StatusKind.UPLOADING, progress=progress)

    @classmethod
    def in_progress(cls, progress: float, offset: int = 0) -> "TranscriptionStatus":
        return cls(StatusKind.PROGRESS, progress=progress, offset=offset)

    @classmethod
    def done(cls, timestamp: Optional[datetime] = None) -> "TranscriptionStatus":
        return cls(StatusKind.DONE, timestamp=timestamp or datetime.now())

    @classmethod
    def error(cls, message: str) -> "TranscriptionStatus":
        return cls(StatusKind.ERROR, message=message)

    @classmethod
    def canceled(cls) -> "TranscriptionStatus":
        return cls(StatusKind.CANCELED)

    @classmethod
    def paused(cls, task: TranscriptionTask, progress: float) -> "TranscriptionStatus":
        return cls(StatusKind.PAUSED, progress=progress, task=task)

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_KINDS

    @property
    def is_active(self) -> bool:
        return self.kind in ACTIVE_KINDS

    @property
    def is_paused(self) -> bool:
        return self.kind is StatusKind.PAUSED

    @property
    def error_message(self) -> Optional[str]:
        return self.message if self.kind is StatusKind.ERROR else None

    @property
    def last_progress(self) -> float:
        """Last reported progress value, 0.0 for stages without one."""
        if self.kind in (StatusKind.UPLOADING, StatusKind.PROGRESS, StatusKind.PAUSED):
            return self.progress
        return 0.0

    def describe(self) -> str:
        if self.kind is StatusKind.UPLOADING:
            return f"uploading {self.progress:.0%}"
        if self.kind is StatusKind.PROGRESS:
            return f"transcribing {self.progress:.0%}"
        if self.kind is StatusKind.PAUSED:
            return f"paused at {self.progress:.0%}"
        if self.kind is StatusKind.ERROR:
            return f"error: {self.message}"
        if self.kind is StatusKind.DONE and self.timestamp:
            return f"done at {self.timestamp:%Y-%m-%d %H:%M:%S}"
        return self.kind.value.replace("_", " ")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind.value}
        if self.kind in (StatusKind.UPLOADING, StatusKind.PROGRESS, StatusKind.PAUSED):
            data["progress"] = self.progress
        if self.kind is StatusKind.PROGRESS:
            data["offset"] = self.offset
        if self.message is not None:
            data["message"] = self.message
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp.isoformat()
        if self.task is not None:
            data["task"] = self.task.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionStatus":
        timestamp = data.get("timestamp")
        task = data.get("task")
        return cls(
            kind=StatusKind(data["kind"]),
            progress=float(data.get("progress", 0.0)),
            offset=int(data.get("offset", 0)),
            message=data.get("message"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
            task=TranscriptionTask.from_dict(task) if task else None,
        )


@dataclass(frozen=True)
class Segment:
    """A time-stamped span of recognized text (times in milliseconds)."""
    start_time: int
    end_time: int
    text: str
    speaker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"start_time": self.start_time, "end_time": self.end_time, "text": self.text}
        if self.speaker is not None:
            data["speaker"] = self.speaker
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Segment":
        return cls(
            start_time=int(data["start_time"]),
            end_time=int(data["end_time"]),
            text=data["text"],
            speaker=data.get("speaker"),
        )


@dataclass
class Transcription:
    """Per-recording record of the latest transcription attempt."""
    id: str
    file_name: str
    parameters: TranscriptionParameters
    model: str
    start_date: datetime = field(default_factory=datetime.now)
    segments: List[Segment] = field(default_factory=list)
    status: TranscriptionStatus = field(default_factory=TranscriptionStatus.not_started)

    @property
    def text(self) -> str:
        return " ".join(segment.text for segment in self.segments).strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "parameters": self.parameters.to_dict(),
            "model": self.model,
            "start_date": self.start_date.isoformat(),
            "segments": [segment.to_dict() for segment in self.segments],
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transcription":
        return cls(
            id=data["id"],
            file_name=data["file_name"],
            parameters=TranscriptionParameters.from_dict(data.get("parameters")),
            model=data.get("model", ""),
            start_date=datetime.fromisoformat(data["start_date"]),
            segments=[Segment.from_dict(item) for item in data.get("segments", [])],
            status=TranscriptionStatus.from_dict(data.get("status", {"kind": "not_started"})),
        )
