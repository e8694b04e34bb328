"""Background-execution coordination for long-running transcriptions."""

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GrantHandle:
    """Identifies one background-execution grant."""
    id: int


class AbstractBackgroundCoordinator(ABC):
    """Host mechanism granting limited time to keep working while backgrounded."""

    @abstractmethod
    def begin_grant(self, on_expire: Callable[[], None]) -> GrantHandle:
        """Request background time.

        Args:
            on_expire: Called (from any thread) when the grant runs out

        Returns:
            Handle to pass to ``end_grant``
        """
        pass

    @abstractmethod
    def end_grant(self, handle: GrantHandle) -> None:
        """Release a grant. Ending an unknown or expired grant is a no-op."""
        pass

    @abstractmethod
    def schedule_continuation(self, delay: float, callback: Callable[[], None]) -> None:
        """Ask the host to invoke ``callback`` after ``delay`` seconds, replacing any earlier request."""
        pass

    @abstractmethod
    def cancel_scheduled_continuation(self) -> None:
        pass


class TimerBackgroundCoordinator(AbstractBackgroundCoordinator):
    """Coordinator backed by threading.Timer.

    With ``grant_seconds`` unset, grants never expire; this is the right
    choice for a foreground process that is never suspended.
    """

    def __init__(self, grant_seconds: Optional[float] = None):
        self.grant_seconds = grant_seconds
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self._grants: Dict[int, Optional[threading.Timer]] = {}
        self._continuation: Optional[threading.Timer] = None

    def begin_grant(self, on_expire: Callable[[], None]) -> GrantHandle:
        handle = GrantHandle(next(self._ids))
        timer = None
        if self.grant_seconds is not None:
            timer = threading.Timer(self.grant_seconds, self._expire, args=(handle, on_expire))
            timer.daemon = True
        with self._lock:
            self._grants[handle.id] = timer
        if timer is not None:
            timer.start()
        logger.debug(f"Began background grant {handle.id} ({self.grant_seconds}s)")
        return handle

    def _expire(self, handle: GrantHandle, on_expire: Callable[[], None]) -> None:
        with self._lock:
            if handle.id not in self._grants:
                return
            del self._grants[handle.id]
        logger.warning(f"Background grant {handle.id} expired")
        on_expire()

    def end_grant(self, handle: GrantHandle) -> None:
        with self._lock:
            timer = self._grants.pop(handle.id, None)
        if timer is not None:
            timer.cancel()
        logger.debug(f"Ended background grant {handle.id}")

    def schedule_continuation(self, delay: float, callback: Callable[[], None]) -> None:
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        with self._lock:
            previous, self._continuation = self._continuation, timer
        if previous is not None:
            previous.cancel()
        timer.start()
        logger.debug(f"Scheduled continuation in {delay}s")

    def cancel_scheduled_continuation(self) -> None:
        with self._lock:
            timer, self._continuation = self._continuation, None
        if timer is not None:
            timer.cancel()
            logger.debug("Canceled scheduled continuation")

    @property
    def active_grants(self) -> int:
        with self._lock:
            return len(self._grants)
