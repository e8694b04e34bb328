"""Recording catalog entry model."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

from .transcription import Transcription, Segment


@dataclass
class RecordingInfo:
    """A recording and its embedded transcription."""
    file_name: str
    date: datetime = field(default_factory=datetime.now)
    duration: float = 0.0  # Seconds
    title: str = ""
    transcription: Optional[Transcription] = None

    @property
    def id(self) -> str:
        return self.file_name

    @property
    def segments(self) -> List[Segment]:
        return self.transcription.segments if self.transcription else []

    @property
    def offset(self) -> int:
        """End of the last transcribed segment in milliseconds."""
        segments = self.segments
        return segments[-1].end_time if segments else 0

    @property
    def progress(self) -> float:
        if self.duration <= 0:
            return 0.0
        return max(0.0, min(1.0, self.offset / (self.duration * 1000)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_name": self.file_name,
            "title": self.title,
            "date": self.date.isoformat(),
            "duration": self.duration,
            "transcription": self.transcription.to_dict() if self.transcription else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecordingInfo":
        transcription = data.get("transcription")
        return cls(
            file_name=data["file_name"],
            title=data.get("title", ""),
            date=datetime.fromisoformat(data["date"]),
            duration=float(data.get("duration", 0.0)),
            transcription=Transcription.from_dict(transcription) if transcription else None,
        )
