"""Conflict preview for install plans.

Conflicts are advisory: nothing here writes to disk or blocks an install.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from .models import RuleKind

_logging = logging.getLogger(__name__)

PLUGIN_EXTENSIONS = (".esp", ".esm", ".esl")
CONFIG_EXTENSIONS = (".ini", ".xml")


class ConflictKind(Enum):
    OVERWRITE = "overwrite"
    SELF = "self"
    SHADOWED = "shadowed"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class ConflictEntry:
    path: str
    existing_owner: str
    incoming_owner: str
    kind: ConflictKind
    severity: Severity

    def describe(self) -> str:
        if self.kind is ConflictKind.SELF:
            return f"'{self.incoming_owner}' overrides '{self.existing_owner}' within this package"
        if self.kind is ConflictKind.SHADOWED:
            return f"'{self.existing_owner}' is shadowed by '{self.incoming_owner}'"
        return f"already installed by '{self.existing_owner}'"

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "existing_owner": self.existing_owner,
            "incoming_owner": self.incoming_owner,
            "kind": self.kind.value,
            "severity": self.severity.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConflictEntry":
        return cls(
            path=data["path"],
            existing_owner=data["existing_owner"],
            incoming_owner=data["incoming_owner"],
            kind=ConflictKind(data["kind"]),
            severity=Severity(data["severity"]),
        )


def normalize_relpath(path: str) -> str:
    """Comparison key for a relative path: slash separated and case-folded."""
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    return "/".join(parts).casefold()


def severity_for(path: str) -> Severity:
    lowered = path.lower()
    if lowered.endswith(PLUGIN_EXTENSIONS):
        return Severity.HIGH
    if lowered.endswith(CONFIG_EXTENSIONS):
        return Severity.MEDIUM
    return Severity.LOW


def walk_files(root: Path) -> list[str]:
    """Relative slash-separated paths of every file under ``root``, sorted."""
    found = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        base = Path(dirpath).relative_to(root)
        for name in sorted(filenames):
            found.append((base / name).as_posix())
    return found


def operation_outputs(source_root: Path, kind: RuleKind, source: str, destination: str) -> list[str]:
    """File-level destinations one operation writes."""
    if kind is RuleKind.FILE:
        return [destination]
    outputs = []
    for rel in walk_files(source_root / source if source else source_root):
        outputs.append(f"{destination}/{rel}" if destination else rel)
    return outputs


def plan_outputs(plan) -> list[tuple[str, str]]:
    """(destination, origin) for every file a plan writes, in execution order."""
    source_root = Path(plan.source_root)
    outputs = []
    for op in plan.operations:
        for path in operation_outputs(source_root, op.kind, op.source, op.destination):
            outputs.append((path, op.origin))
    return outputs


def preview_conflicts(plan, owners: Mapping[str, str]) -> list[ConflictEntry]:
    """Report plan outputs that already belong to someone in ``owners``.

    Args:
        plan: The install plan to check
        owners: Snapshot mapping relative path to owning package

    Returns:
        One entry per conflicting output, sorted by normalised path
    """
    owned = {normalize_relpath(path): owner for path, owner in owners.items()}
    entries: dict[str, ConflictEntry] = {}
    for path, _ in plan_outputs(plan):
        key = normalize_relpath(path)
        existing = owned.get(key)
        if existing is None:
            continue
        entries[key] = ConflictEntry(
            path=path,
            existing_owner=existing,
            incoming_owner=plan.package,
            kind=ConflictKind.OVERWRITE,
            severity=severity_for(path),
        )
    result = [entries[key] for key in sorted(entries)]
    if result:
        _logging.info(f"{len(result)} output(s) of '{plan.package}' are already owned")
    return result


def snapshot_owners(root: Path, owner: str) -> dict[str, str]:
    """Owner snapshot attributing every file under ``root`` to ``owner``."""
    if not root.is_dir():
        return {}
    return {path: owner for path in walk_files(root)}


__all__ = [
    "ConflictKind",
    "Severity",
    "ConflictEntry",
    "normalize_relpath",
    "severity_for",
    "walk_files",
    "operation_outputs",
    "plan_outputs",
    "preview_conflicts",
    "snapshot_owners",
]
