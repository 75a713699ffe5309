"""Plan records for replaying an installer selection."""

import hashlib
import json
import logging
import re
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from modstage.errors import DigestMismatch, RecordError

from .conditions import EvaluationContext
from .models import Installer, OptionRef
from .parser import installer_digest
from .planning import InstallPlan, OptionSelection, compile_plan
from .selection import SelectionState

_logging = logging.getLogger(__name__)


def record_key(package: str, profile: str | None = None) -> str:
    return f"{package}@{profile}" if profile else package


@dataclass(frozen=True)
class PlanRecord:
    package: str
    profile: str | None
    installer_digest: str
    selections: tuple[OptionSelection, ...]
    flags: tuple[tuple[str, str], ...]
    timestamp: str
    preset_flags: tuple[tuple[str, str], ...] = ()

    @property
    def key(self) -> str:
        return record_key(self.package, self.profile)

    def refs(self) -> list[OptionRef]:
        return [OptionRef(s.step, s.group, s.option) for s in self.selections]

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "package": self.package,
            "profile": self.profile,
            "installer_digest": self.installer_digest,
            "selections": [s.to_dict() for s in self.selections],
            "flags": dict(self.flags),
            "preset_flags": dict(self.preset_flags),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlanRecord":
        try:
            return cls(
                package=data["package"],
                profile=data.get("profile"),
                installer_digest=data["installer_digest"],
                selections=tuple(OptionSelection.from_dict(s) for s in data["selections"]),
                flags=tuple(sorted(data.get("flags", {}).items())),
                timestamp=data["timestamp"],
                preset_flags=tuple(sorted(data.get("preset_flags", {}).items())),
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise RecordError(f"invalid plan record: {e}")


def record_from_plan(plan: InstallPlan, timestamp: str | None = None) -> PlanRecord:
    if timestamp is None:
        timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    return PlanRecord(
        package=plan.package,
        profile=plan.profile,
        installer_digest=plan.installer_digest,
        selections=plan.selections,
        flags=plan.flags,
        timestamp=timestamp,
        preset_flags=plan.preset_flags,
    )


def restore_selection(
    installer: Installer,
    record: PlanRecord,
    default_flags: Mapping[str, str] | None = None,
    context: EvaluationContext | None = None,
) -> SelectionState:
    """Rebuild a selection state from a record.

    The record's preset flags are used unless ``default_flags`` is given.

    Raises:
        DigestMismatch: If the installer changed since the record was made
    """
    if record.installer_digest != installer.digest:
        raise DigestMismatch(record.installer_digest, installer.digest)
    if default_flags is None:
        default_flags = dict(record.preset_flags)
    return SelectionState.from_refs(installer, record.refs(), default_flags, context)


def plan_from_record(
    installer: Installer,
    record: PlanRecord,
    staging_root: Path,
    target_root: Path,
    owners: Mapping[str, str] | None = None,
    context: EvaluationContext | None = None,
) -> InstallPlan:
    """Recompile the plan a record describes without any user interaction."""
    state = restore_selection(installer, record, context=context)
    return compile_plan(
        state,
        staging_root,
        target_root,
        record.package,
        profile=record.profile,
        owners=owners,
    )


@runtime_checkable
class RecordStore(Protocol):
    def get(self, key: str) -> PlanRecord | None: ...
    def put(self, record: PlanRecord) -> None: ...
    def delete(self, key: str) -> bool: ...
    def keys(self) -> list[str]: ...


class JsonRecordStore:
    """A directory of JSON plan records, one file per key."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9._@-]", "_", key)[:80]
        suffix = hashlib.sha1(key.encode("utf-8")).hexdigest()[:8]
        return self.directory / f"{safe}-{suffix}.json"

    def _read(self, path: Path) -> PlanRecord:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RecordError(f"cannot read plan record {path}: {e}")
        return PlanRecord.from_dict(data)

    def get(self, key: str) -> PlanRecord | None:
        path = self._path(key)
        if not path.exists():
            return None
        return self._read(path)

    def put(self, record: PlanRecord) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(record.key)
        temp_path = path.with_suffix(f".tmp.{uuid.uuid4().hex[:8]}")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2, sort_keys=True)
                f.write("\n")
            temp_path.replace(path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise RecordError(f"cannot write plan record {path}: {e}")
        _logging.debug(f"Saved plan record '{record.key}' to {path}")

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def keys(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(self._read(path).key for path in self.directory.glob("*.json"))


__all__ = [
    "installer_digest",
    "record_key",
    "PlanRecord",
    "record_from_plan",
    "restore_selection",
    "plan_from_record",
    "RecordStore",
    "JsonRecordStore",
]
