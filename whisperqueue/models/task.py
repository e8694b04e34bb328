"""Durable transcription task descriptor."""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

from .parameters import TranscriptionParameters


def _new_task_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class TranscriptionTask:
    """A queued request to transcribe one recording."""
    recording_id: str
    parameters: TranscriptionParameters = field(default_factory=TranscriptionParameters)
    model_name: str = "tiny"
    is_remote: bool = False
    remote_job_id: Optional[str] = None  # Set once the server accepted the upload
    offset: int = 0  # Milliseconds already transcribed
    id: str = field(default_factory=_new_task_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recording_id": self.recording_id,
            "parameters": self.parameters.to_dict(),
            "model_name": self.model_name,
            "is_remote": self.is_remote,
            "remote_job_id": self.remote_job_id,
            "offset": self.offset,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionTask":
        return cls(
            id=data["id"],
            recording_id=data["recording_id"],
            parameters=TranscriptionParameters.from_dict(data.get("parameters")),
            model_name=data.get("model_name", "tiny"),
            is_remote=bool(data.get("is_remote", False)),
            remote_job_id=data.get("remote_job_id"),
            offset=int(data.get("offset", 0)),
        )
