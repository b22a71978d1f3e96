"""Progress update dataclass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """Single progress event emitted by the reset engine.

    ``kind`` is one of ``start``, ``discover``, ``phase``, ``telemetry``,
    ``database``, ``cache``, ``complete`` or ``error``.  ``progress`` is a
    percentage in the 0-100 range.
    """

    kind: str
    message: str
    progress: float
    app_name: str = ""
    phase: str = ""

    @property
    def done(self) -> bool:
        return self.kind == "complete"
