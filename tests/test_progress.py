"""Tests for progress sinks."""

from __future__ import annotations

import logging

from scrub.core.progress import PROGRESS_QUEUE_SIZE, CallbackReporter, QueueReporter
from scrub.models.progress import ProgressUpdate


def _update(kind="phase", progress=10.0):
    return ProgressUpdate(kind=kind, message="m", progress=progress)


class TestQueueReporter:
    def test_default_capacity(self):
        assert QueueReporter().queue.maxsize == PROGRESS_QUEUE_SIZE

    def test_drops_when_full(self):
        reporter = QueueReporter(maxsize=1)
        reporter.report(_update(progress=1))
        reporter.report(_update(progress=2))
        assert reporter.dropped == 1
        assert reporter.queue.get_nowait().progress == 1


class TestCallbackReporter:
    def test_forwards(self):
        seen = []
        CallbackReporter(seen.append).report(_update("complete", 100))
        assert seen[0].done

    def test_callback_errors_are_logged(self, caplog):
        def broken(update):
            raise ValueError("nope")

        with caplog.at_level(logging.ERROR):
            CallbackReporter(broken).report(_update())
        assert "Progress callback failed" in caplog.text
