"""Application data discovery."""

from __future__ import annotations

import logging
import os
from typing import Mapping

from scrub.core.processes import ProcessInspector
from scrub.models.profile import ApplicationProfile
from scrub.utils import current_os, dir_size, expand_path, format_size

log = logging.getLogger(__name__)


class Discovery:
    """Resolves where each application keeps its data on this machine."""

    def __init__(
        self,
        profiles: Mapping[str, ApplicationProfile],
        inspector: ProcessInspector,
        os_id: str | None = None,
    ) -> None:
        self.profiles = dict(profiles)
        self.inspector = inspector
        self.os_id = os_id or current_os()
        self._paths: dict[str, str] = {}

    def discover(self) -> dict[str, str]:
        """Resolve every profile, in name order, and return a fresh mapping.

        The first template that expands to an existing path wins; an empty
        string marks an application that was not found.
        """
        log.info("Discovering application data paths (os: %s)", self.os_id)
        paths: dict[str, str] = {}
        for name in sorted(self.profiles):
            paths[name] = self._resolve(self.profiles[name])
        self._paths = paths
        return dict(paths)

    def rediscover(self) -> dict[str, str]:
        """Forget the previous result and resolve every profile again."""
        self._paths = {}
        return self.discover()

    def _resolve(self, profile: ApplicationProfile) -> str:
        templates = profile.templates_for(self.os_id)
        if not templates:
            log.warning("No paths defined for %s on %s", profile.name, self.os_id)
            return ""

        for template in templates:
            expanded = expand_path(template)
            log.debug("Checking %s: %s -> %s", profile.name, template, expanded)
            if expanded and os.path.exists(expanded):
                log.info("Found %s data at %s", profile.name, expanded)
                return expanded

        log.warning("Application not found: %s", profile.name)
        return ""

    def resolved_paths(self) -> dict[str, str]:
        """Last discovery result, as a copy."""
        return dict(self._paths)

    def path_of(self, name: str) -> str:
        return self._paths.get(name, "")

    def is_running(self, name: str) -> bool:
        """Whether any process of the application is alive.

        Unknown applications are reported as not running.  A profile
        without process names is looked up by its own name.
        """
        profile = self.profiles.get(name)
        if profile is None:
            return False
        process_names = profile.process_names or (name,)
        return any(self.inspector.is_running(p) for p in process_names)

    @staticmethod
    def directory_size(path: str) -> int:
        return dir_size(path)

    @staticmethod
    def format_size(size_bytes: int) -> str:
        return format_size(size_bytes)
