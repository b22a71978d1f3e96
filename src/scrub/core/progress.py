"""Progress reporting sinks for the reset engine."""

from __future__ import annotations

import logging
import queue
from typing import Callable, Protocol

from scrub.models.progress import ProgressUpdate

log = logging.getLogger(__name__)

PROGRESS_QUEUE_SIZE = 100


class ProgressReporter(Protocol):
    """Receives progress updates from the engine. Must never block."""

    def report(self, update: ProgressUpdate) -> None: ...


class QueueReporter:
    """Delivers updates over a bounded queue, dropping them when it is full.

    Consumers read from :attr:`queue` and must tolerate gaps.
    """

    def __init__(self, maxsize: int = PROGRESS_QUEUE_SIZE) -> None:
        self.queue: queue.Queue[ProgressUpdate] = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def report(self, update: ProgressUpdate) -> None:
        try:
            self.queue.put_nowait(update)
        except queue.Full:
            self.dropped += 1


class CallbackReporter:
    """Forwards every update to a plain callable."""

    def __init__(self, callback: Callable[[ProgressUpdate], None]) -> None:
        self._callback = callback

    def report(self, update: ProgressUpdate) -> None:
        try:
            self._callback(update)
        except Exception:
            log.exception("Progress callback failed")
