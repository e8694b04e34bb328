"""Persistent storage for queued tasks and recordings."""

from .task_queue import TaskQueue, TaskQueueError
from .recording_catalog import RecordingCatalog, JsonRecordingCatalog

__all__ = [
    "TaskQueue",
    "TaskQueueError",
    "RecordingCatalog",
    "JsonRecordingCatalog",
]
