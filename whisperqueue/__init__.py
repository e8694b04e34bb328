"""whisperqueue - durable, resumable transcription job queue."""

__version__ = "0.1.0"
