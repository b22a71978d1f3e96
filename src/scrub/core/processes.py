"""Process-liveness probing."""

from __future__ import annotations

import logging
from typing import Protocol

import psutil

log = logging.getLogger(__name__)


class ProcessInspector(Protocol):
    """Answers whether a process with a given name is alive."""

    def is_running(self, name: str) -> bool: ...


class PsutilInspector:
    """Process inspector backed by psutil, usable on Linux, macOS and Windows.

    A process matches when *name* occurs in its name, case-insensitively,
    which mirrors ``pgrep -i`` and ``tasklist`` image-name filtering.
    """

    def is_running(self, name: str) -> bool:
        needle = name.lower()
        if not needle:
            return False
        for proc in psutil.process_iter(attrs=["name"]):
            try:
                proc_name = proc.info.get("name") or ""
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
            if needle in proc_name.lower():
                log.debug("Process '%s' matches '%s' (pid %d)", proc_name, name, proc.pid)
                return True
        return False
