"""Transcription parameter models."""

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any


@dataclass(frozen=True)
class TranscriptionParameters:
    """Decoding options captured when a task is enqueued."""
    language: Optional[str] = None  # None means auto-detect
    initial_prompt: Optional[str] = None
    should_translate: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TranscriptionParameters":
        data = data or {}
        return cls(
            language=data.get("language"),
            initial_prompt=data.get("initial_prompt"),
            should_translate=bool(data.get("should_translate", False)),
        )
