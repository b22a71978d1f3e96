"""Application profile and discovery dataclasses."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ApplicationProfile:
    """Immutable description of an application whose state can be reset.

    ``data_paths`` maps an OS identifier (``windows``, ``darwin``, ``linux``)
    to path templates tried in order during discovery.
    """

    name: str
    display_name: str
    process_names: tuple[str, ...] = ()
    data_paths: dict[str, tuple[str, ...]] = field(default_factory=dict)

    def templates_for(self, os_id: str) -> tuple[str, ...]:
        """Return the path templates configured for *os_id*."""
        return self.data_paths.get(os_id, ())


@dataclass(slots=True)
class DiscoveredApplication:
    """Discovery result for one application, owned by the caller."""

    name: str
    display_name: str
    path: str = ""
    running: bool = False
    size: str = ""

    @property
    def found(self) -> bool:
        return self.path != ""
