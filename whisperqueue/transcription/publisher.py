"""Worker state publisher module for pub/sub event publishing."""

import logging
import queue
from abc import ABC, abstractmethod
from typing import Any, Iterator, List, Optional

from pubsub import pub

from ..models.task import TranscriptionTask
from ..models.transcription import Transcription

logger = logging.getLogger(__name__)


# Prototype listeners fixing each topic's message data specification
def _queue_message(tasks):
    pass


def _processing_message(is_processing, task_id=None):
    pass


def _transcription_message(recording_id, transcription=None):
    pass


class WorkerPublisher:
    """Publishes queue, processing and transcription changes using pubsub.pub."""

    def __init__(self, topic_prefix: str = "worker"):
        """Initialize worker publisher.

        Args:
            topic_prefix: Root of the published topics
        """
        self.topic_prefix = topic_prefix
        self.queue_topic = f"{topic_prefix}.queue"
        self.processing_topic = f"{topic_prefix}.processing"
        self.transcription_topic = f"{topic_prefix}.transcription"
        topic_manager = pub.getDefaultTopicMgr()
        topic_manager.getOrCreateTopic(self.queue_topic, _queue_message)
        topic_manager.getOrCreateTopic(self.processing_topic, _processing_message)
        topic_manager.getOrCreateTopic(self.transcription_topic, _transcription_message)
        logger.info(f"WorkerPublisher initialized with topic prefix: {topic_prefix}")

    def publish_queue(self, tasks: List[TranscriptionTask]) -> None:
        pub.sendMessage(self.queue_topic, tasks=list(tasks))
        logger.debug(f"Published queue snapshot with {len(tasks)} tasks")

    def publish_processing(self, is_processing: bool, task_id: Optional[str]) -> None:
        pub.sendMessage(self.processing_topic, is_processing=is_processing, task_id=task_id)
        logger.debug(f"Published processing state: {is_processing} ({task_id})")

    def publish_transcription(self, recording_id: str, transcription: Optional[Transcription]) -> None:
        pub.sendMessage(self.transcription_topic, recording_id=recording_id, transcription=transcription)


class TopicStream(ABC):
    """Blocking reader over a pub/sub topic.

    Subclasses define ``_on_message`` with the topic's exact keyword
    arguments.
    """

    def __init__(self, topic: str):
        self.topic = topic
        self._messages: "queue.Queue[Any]" = queue.Queue()
        self._subscribed = False
        pub.subscribe(self._on_message, topic)
        self._subscribed = True

    @abstractmethod
    def _on_message(self, *args, **kwargs) -> None:
        """Queue one published message."""
        pass

    def get(self, timeout: Optional[float] = None) -> Any:
        """Return the next message, raising queue.Empty after ``timeout``."""
        return self._messages.get(timeout=timeout)

    def drain(self) -> List[Any]:
        items = []
        while True:
            try:
                items.append(self._messages.get_nowait())
            except queue.Empty:
                return items

    def __iter__(self) -> Iterator[Any]:
        while self._subscribed:
            yield self._messages.get()

    def close(self) -> None:
        if self._subscribed:
            pub.unsubscribe(self._on_message, self.topic)
            self._subscribed = False

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class QueueStream(TopicStream):
    """Yields queue snapshots (lists of tasks)."""

    def _on_message(self, tasks: List[TranscriptionTask]) -> None:
        self._messages.put(tasks)


class ProcessingStream(TopicStream):
    """Yields ``(is_processing, task_id)`` tuples."""

    def _on_message(self, is_processing: bool, task_id: Optional[str] = None) -> None:
        self._messages.put((is_processing, task_id))


class TranscriptionStream(TopicStream):
    """Yields ``(recording_id, transcription)`` tuples."""

    def _on_message(self, recording_id: str, transcription: Optional[Transcription] = None) -> None:
        self._messages.put((recording_id, transcription))
