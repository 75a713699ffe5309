"""Merge deployment units into a single priority-resolved layout."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from modstage.installer.conflicts import (
    ConflictEntry,
    ConflictKind,
    normalize_relpath,
    severity_for,
    walk_files,
)

_logging = logging.getLogger(__name__)

# Script extender runtime files. Root-level binaries belong next to the game
# executable and anything extender-related must be a real copy.
LOADER_PREFIX = "skse"
LOADER_SUFFIXES = (".exe", ".dll")
DATA_COMPONENT = "data"


@dataclass(frozen=True)
class DeploymentUnit:
    """An installed package ready to deploy: relative path to absolute source."""

    name: str
    priority: int
    files: tuple[tuple[str, str], ...] = ()

    @classmethod
    def from_directory(cls, name: str, root: Path, priority: int) -> "DeploymentUnit":
        root = Path(root).resolve()
        files = tuple((rel, str(root / rel)) for rel in walk_files(root))
        return cls(name=name, priority=priority, files=files)

    @property
    def manifest(self) -> dict[str, str]:
        return dict(self.files)


@dataclass(frozen=True)
class DeployEntry:
    path: str
    source: str
    owner: str
    to_game_root: bool = False
    force_copy: bool = False


@dataclass
class DeploymentLayout:
    entries: list[DeployEntry] = field(default_factory=list)
    shadowed: list[ConflictEntry] = field(default_factory=list)

    @property
    def data_entries(self) -> list[DeployEntry]:
        return [e for e in self.entries if not e.to_game_root]

    @property
    def loader_entries(self) -> list[DeployEntry]:
        return [e for e in self.entries if e.to_game_root]


def strip_data_component(relpath: str) -> str:
    """Drop a leading ``Data/`` segment; a bare ``Data`` file is left alone."""
    parts = relpath.replace("\\", "/").split("/")
    if len(parts) > 1 and parts[0].lower() == DATA_COMPONENT:
        return "/".join(parts[1:])
    return relpath.replace("\\", "/")


def is_loader_binary(relpath: str) -> bool:
    if "/" in relpath:
        return False
    name = relpath.lower()
    return name.startswith(LOADER_PREFIX) and name.endswith(LOADER_SUFFIXES)


def requires_copy(relpath: str) -> bool:
    parts = relpath.lower().split("/")
    return parts[-1].startswith(LOADER_PREFIX) or LOADER_PREFIX in parts


def _canonical(relpath: str, case_map: dict[str, str]) -> str:
    """Reuse the first seen casing for every path prefix, file name included."""
    canonical = ""
    normalized = ""
    for part in relpath.split("/"):
        normalized = f"{normalized}/{part.casefold()}" if normalized else part.casefold()
        candidate = f"{canonical}/{part}" if canonical else part
        canonical = case_map.setdefault(normalized, candidate)
    return canonical


def resolve_deployment(units: list[DeploymentUnit]) -> DeploymentLayout:
    """Resolve which unit provides each deployed path.

    Units are applied in ascending (priority, declared order), so the highest
    priority, and on ties the later declared unit, wins every contested path.
    """
    ordered = sorted(enumerate(units), key=lambda item: (item[1].priority, item[0]))
    case_map: dict[str, str] = {}
    winners: dict[str, DeployEntry] = {}
    shadowed: list[ConflictEntry] = []

    for _, unit in ordered:
        for rel, source in sorted(unit.files):
            stripped = strip_data_component(rel)
            key = normalize_relpath(stripped)
            if not key:
                continue
            path = _canonical("/".join(p for p in stripped.split("/") if p), case_map)
            previous = winners.get(key)
            if previous is not None:
                shadowed.append(
                    ConflictEntry(
                        path=path,
                        existing_owner=previous.owner,
                        incoming_owner=unit.name,
                        kind=ConflictKind.SHADOWED,
                        severity=severity_for(path),
                    )
                )
                _logging.debug(f"Conflict: {unit.name} overwrites {previous.owner} for {path}")
            winners[key] = DeployEntry(
                path=path,
                source=source,
                owner=unit.name,
                to_game_root=is_loader_binary(path),
                force_copy=requires_copy(path),
            )

    return DeploymentLayout(
        entries=[winners[key] for key in sorted(winners)],
        shadowed=sorted(shadowed, key=lambda c: normalize_relpath(c.path)),
    )


__all__ = [
    "LOADER_PREFIX",
    "DeploymentUnit",
    "DeployEntry",
    "DeploymentLayout",
    "strip_data_component",
    "is_loader_binary",
    "requires_copy",
    "resolve_deployment",
]
