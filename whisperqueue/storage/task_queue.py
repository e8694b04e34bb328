"""Durable FIFO queue of pending transcription tasks."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, List, Optional

from ..models.task import TranscriptionTask

logger = logging.getLogger(__name__)

QUEUE_FILE_VERSION = 1


class TaskQueueError(RuntimeError):
    """Raised when the persisted queue cannot be read or written."""


class TaskQueue:
    """Ordered, persisted list of TranscriptionTask descriptors.

    Every mutation is written through to a JSON file so the queue survives
    process termination. All operations are thread-safe.
    """

    def __init__(self, queue_file: Path):
        """Initialize the queue and load any persisted tasks.

        Args:
            queue_file: Path of the JSON file backing the queue
        """
        self.queue_file = Path(queue_file)
        self._lock = threading.RLock()
        self._tasks: List[TranscriptionTask] = self._load()
        logger.info(f"TaskQueue initialized with {len(self._tasks)} tasks from {self.queue_file}")

    def _load(self) -> List[TranscriptionTask]:
        if not self.queue_file.exists():
            return []
        try:
            with open(self.queue_file, 'r', encoding='utf-8') as f:
                payload = json.load(f)
            if not isinstance(payload, dict):
                raise TypeError(f"expected a JSON object, got {type(payload).__name__}")
            return [TranscriptionTask.from_dict(item) for item in payload.get("tasks", [])]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise TaskQueueError(f"Failed to load task queue from {self.queue_file}: {e}") from e

    def _save(self) -> None:
        self.queue_file.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": QUEUE_FILE_VERSION,
            "tasks": [task.to_dict() for task in self._tasks],
        }
        fd, tmp_path = tempfile.mkstemp(dir=self.queue_file.parent, prefix=".tasks-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.queue_file)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise TaskQueueError(f"Failed to save task queue to {self.queue_file}: {e}") from e

    def enqueue(self, task: TranscriptionTask) -> bool:
        """Append a task unless its recording already has one queued.

        Returns:
            True if a new entry was added
        """
        with self._lock:
            if any(t.recording_id == task.recording_id for t in self._tasks):
                logger.info(f"Recording {task.recording_id} already queued, skipping task {task.id}")
                return False
            self._tasks.append(task)
            self._save()
            logger.debug(f"Enqueued task {task.id} for recording {task.recording_id}")
            return True

    def cancel(self, recording_id: str, active_task_id: Optional[str] = None) -> Optional[TranscriptionTask]:
        """Remove the pending task for a recording.

        The task currently executing (``active_task_id``) is left in place;
        the scheduler removes it once its cancellation completes.

        Returns:
            The matched task, or None if the recording had no task
        """
        with self._lock:
            task = self.find_by_recording(recording_id)
            if task is None:
                return None
            if task.id != active_task_id:
                self._tasks = [t for t in self._tasks if t.id != task.id]
                self._save()
                logger.info(f"Removed pending task {task.id} for recording {recording_id}")
            return task

    def peek_head(self) -> Optional[TranscriptionTask]:
        with self._lock:
            return self._tasks[0] if self._tasks else None

    def remove_head(self) -> Optional[TranscriptionTask]:
        with self._lock:
            if not self._tasks:
                return None
            task = self._tasks.pop(0)
            self._save()
            return task

    def resume(self, task: TranscriptionTask) -> None:
        """Insert a previously paused task at the front of the queue."""
        with self._lock:
            self._tasks = [t for t in self._tasks
                           if t.id != task.id and t.recording_id != task.recording_id]
            self._tasks.insert(0, task)
            self._save()
            logger.info(f"Resumed task {task.id} at head of queue")

    def update(self, task: TranscriptionTask) -> bool:
        """Replace the stored copy of a task (matched by id)."""
        with self._lock:
            for index, existing in enumerate(self._tasks):
                if existing.id == task.id:
                    self._tasks[index] = task
                    self._save()
                    return True
            return False

    def remove(self, task_id: str) -> bool:
        with self._lock:
            remaining = [t for t in self._tasks if t.id != task_id]
            if len(remaining) == len(self._tasks):
                return False
            self._tasks = remaining
            self._save()
            return True

    def clear(self, keep_task_id: Optional[str] = None) -> List[TranscriptionTask]:
        """Remove every task except ``keep_task_id``.

        Returns:
            The removed tasks
        """
        with self._lock:
            removed = [t for t in self._tasks if t.id != keep_task_id]
            self._tasks = [t for t in self._tasks if t.id == keep_task_id]
            self._save()
            return removed

    def find_by_recording(self, recording_id: str) -> Optional[TranscriptionTask]:
        with self._lock:
            for task in self._tasks:
                if task.recording_id == recording_id:
                    return task
            return None

    def snapshot(self) -> List[TranscriptionTask]:
        with self._lock:
            return list(self._tasks)

    def reconcile(self, recording_exists: Callable[[str], bool]) -> List[TranscriptionTask]:
        """Drop tasks whose recording no longer exists.

        Returns:
            The dropped tasks
        """
        with self._lock:
            dropped = [t for t in self._tasks if not recording_exists(t.recording_id)]
            if dropped:
                dropped_ids = {t.id for t in dropped}
                self._tasks = [t for t in self._tasks if t.id not in dropped_ids]
                self._save()
                logger.warning(f"Dropped {len(dropped)} orphaned tasks: {sorted(dropped_ids)}")
            return dropped

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)
