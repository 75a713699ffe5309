"""Install plan compilation and rendering."""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path

from modstage.errors import PlanError, UnsafePathError

from .conditions import evaluate
from .conflicts import (
    ConflictEntry,
    ConflictKind,
    normalize_relpath,
    operation_outputs,
    preview_conflicts,
    severity_for,
)
from .models import InstallRule, RuleKind
from .parser import find_installer_root, find_numbered_root, is_numbered_component
from .selection import SelectionState

_logging = logging.getLogger(__name__)

# Top-level names that mark a directory as game data rather than a wrapper.
DATA_INDICATORS = {
    "meshes",
    "textures",
    "scripts",
    "interface",
    "sound",
    "skse",
    "calientetools",
    "shapedata",
    "tools",
    "strings",
    "seq",
    "music",
    "video",
    "shadersfx",
}
PLUGIN_SUFFIXES = (".esp", ".esm", ".esl")


@dataclass(frozen=True)
class FileOp:
    kind: RuleKind
    source: str
    destination: str
    priority: int
    origin: str

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "source": self.source,
            "destination": self.destination,
            "priority": self.priority,
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FileOp":
        return cls(
            kind=RuleKind(data["kind"]),
            source=data["source"],
            destination=data["destination"],
            priority=int(data["priority"]),
            origin=data["origin"],
        )


@dataclass(frozen=True)
class OptionSelection:
    step: int
    group: int
    option: int
    step_name: str
    group_name: str
    option_name: str

    @property
    def label(self) -> str:
        return f"{self.step_name}/{self.group_name}/{self.option_name}"

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "group": self.group,
            "option": self.option,
            "step_name": self.step_name,
            "group_name": self.group_name,
            "option_name": self.option_name,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OptionSelection":
        return cls(**{k: data[k] for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class InstallPlan:
    package: str
    profile: str | None
    installer_digest: str
    selections: tuple[OptionSelection, ...]
    flags: tuple[tuple[str, str], ...]
    operations: tuple[FileOp, ...]
    conflicts: tuple[ConflictEntry, ...]
    notes: tuple[str, ...]
    staging_root: str
    source_root: str
    target_root: str
    preset_flags: tuple[tuple[str, str], ...] = ()

    def flag_dict(self) -> dict[str, str]:
        return dict(self.flags)

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "profile": self.profile,
            "installer_digest": self.installer_digest,
            "selections": [s.to_dict() for s in self.selections],
            "flags": dict(self.flags),
            "preset_flags": dict(self.preset_flags),
            "operations": [op.to_dict() for op in self.operations],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "notes": list(self.notes),
            "staging_root": self.staging_root,
            "source_root": self.source_root,
            "target_root": self.target_root,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict) -> "InstallPlan":
        try:
            return cls(
                package=data["package"],
                profile=data.get("profile"),
                installer_digest=data["installer_digest"],
                selections=tuple(OptionSelection.from_dict(s) for s in data["selections"]),
                flags=tuple(sorted(data["flags"].items())),
                operations=tuple(FileOp.from_dict(op) for op in data["operations"]),
                conflicts=tuple(ConflictEntry.from_dict(c) for c in data.get("conflicts", [])),
                notes=tuple(data.get("notes", [])),
                staging_root=data["staging_root"],
                source_root=data["source_root"],
                target_root=data["target_root"],
                preset_flags=tuple(sorted(data.get("preset_flags", {}).items())),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PlanError(f"invalid plan data: {e}")


def normalize_install_path(path: str) -> str:
    """Normalise an installer path to a safe relative, slash-separated form.

    Raises:
        UnsafePathError: If the path escapes its root
    """
    cleaned = path.strip().replace("\\", "/")
    parts: list[str] = []
    for segment in cleaned.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if not parts:
                raise UnsafePathError(f"path '{path}' escapes its root")
            parts.pop()
            continue
        if ":" in segment:
            raise UnsafePathError(f"path '{path}' is not relative")
        parts.append(segment)
    return "/".join(parts)


def resolve_source(root: Path, relpath: str, kind: RuleKind) -> str | None:
    """Find ``relpath`` under ``root`` ignoring case; returns the on-disk path."""
    current = root
    resolved: list[str] = []
    for segment in relpath.split("/") if relpath else []:
        candidate = current / segment
        if not candidate.exists():
            wanted = segment.casefold()
            try:
                matches = sorted(p for p in current.iterdir() if p.name.casefold() == wanted)
            except OSError:
                return None
            if not matches:
                return None
            candidate = matches[0]
        resolved.append(candidate.name)
        current = candidate

    if kind is RuleKind.FILE and not current.is_file():
        return None
    if kind is RuleKind.FOLDER and not current.is_dir():
        return None
    return "/".join(resolved)


def _is_data_dir(directory: Path) -> bool:
    try:
        entries = list(directory.iterdir())
    except OSError:
        return False
    for entry in entries:
        name = entry.name.lower()
        if name in DATA_INDICATORS or name.endswith(PLUGIN_SUFFIXES):
            return True
    return False


def find_content_root(staging_root: Path) -> Path:
    """Effective source root for an extracted package.

    The directory holding the ``fomod`` folder wins, then the directory
    holding numbered component folders. Otherwise the staging root itself if
    it looks like game data, then single-directory wrappers are descended,
    then the first non-numbered child that looks like data.
    """
    installer_root = find_installer_root(staging_root)
    if installer_root is not None:
        return installer_root
    numbered_root = find_numbered_root(staging_root)
    if numbered_root is not None:
        return numbered_root

    current = staging_root
    while not _is_data_dir(current):
        entries = sorted(current.iterdir())
        if len(entries) != 1 or not entries[0].is_dir():
            break
        current = entries[0]
    if _is_data_dir(current):
        return current

    for entry in sorted(current.iterdir()):
        if entry.is_dir() and not is_numbered_component(entry.name) and _is_data_dir(entry):
            return entry
    return current


def _candidate_rules(state: SelectionState) -> list[tuple[InstallRule, str]]:
    installer = state.installer
    flags = state.flags
    candidates = [(rule, "required") for rule in installer.required_rules]

    for s, step in enumerate(installer.steps):
        for g, group in enumerate(step.groups):
            for o, option in enumerate(group.options):
                origin = f"{step.name}/{group.name}/{option.name}"
                if state.is_active(s, g, o):
                    candidates.extend((rule, origin) for rule in option.rules)
                    continue
                usable = state.option_visible(s, g, o)
                for rule in option.rules:
                    if rule.always_install or (rule.install_if_usable and usable):
                        candidates.append((rule, origin))

    candidates.extend((rule, "conditional") for rule in installer.conditional_rules)
    return [
        (rule, origin)
        for rule, origin in candidates
        if evaluate(rule.condition, flags, state.context)
    ]


def compile_plan(
    state: SelectionState,
    staging_root: Path,
    target_root: Path,
    package: str,
    profile: str | None = None,
    owners: Mapping[str, str] | None = None,
) -> InstallPlan:
    """Compile a commit-eligible selection into an explicit install plan.

    Raises:
        ConstraintViolation: If the selection is not commit-eligible
        UnsafePathError: If an installer path escapes its root
    """
    violations = state.violations()
    if violations:
        raise violations[0]

    source_root = find_content_root(staging_root)
    notes: list[str] = []

    # Stable sort: on equal priority the later declared rule stays last.
    ordered = sorted(_candidate_rules(state), key=lambda item: item[0].priority)

    ops: list[FileOp] = []
    for rule, origin in ordered:
        source = normalize_install_path(rule.source)
        destination = normalize_install_path(rule.destination)
        actual = resolve_source(source_root, source, rule.kind)
        if actual is None:
            message = f"missing {rule.kind.value} '{rule.source}' ({origin}) skipped"
            _logging.warning(message)
            notes.append(message)
            continue
        if not destination and rule.kind is RuleKind.FILE:
            destination = actual.rsplit("/", 1)[-1]
        ops.append(FileOp(rule.kind, actual, destination, rule.priority, origin))

    ops, self_conflicts = _resolve_overlaps(ops, source_root, notes)

    installer = state.installer
    selections = tuple(
        OptionSelection(
            step=ref.step,
            group=ref.group,
            option=ref.option,
            step_name=installer.steps[ref.step].name,
            group_name=installer.steps[ref.step].groups[ref.group].name,
            option_name=installer.option(*ref.as_tuple()).name,
        )
        for ref in state.selected_refs()
    )

    plan = InstallPlan(
        package=package,
        profile=profile,
        installer_digest=installer.digest,
        selections=selections,
        flags=tuple(sorted(state.flags.items())),
        operations=tuple(ops),
        conflicts=(),
        notes=tuple(notes),
        staging_root=str(staging_root),
        source_root=str(source_root),
        target_root=str(target_root),
        preset_flags=tuple(sorted(state.preset_flags.items())),
    )
    conflicts = self_conflicts + preview_conflicts(plan, owners or {})
    _logging.debug(
        f"Compiled plan for '{package}': {len(ops)} operation(s), {len(conflicts)} conflict(s)"
    )
    return replace(plan, conflicts=tuple(conflicts))


def _resolve_overlaps(
    ops: list[FileOp], source_root: Path, notes: list[str]
) -> tuple[list[FileOp], list[ConflictEntry]]:
    """Record intra-package overlaps and drop fully overridden file operations."""
    written: dict[str, tuple[int, str]] = {}
    conflicts: dict[str, ConflictEntry] = {}
    for index, op in enumerate(ops):
        for path in operation_outputs(source_root, op.kind, op.source, op.destination):
            key = normalize_relpath(path)
            previous = written.get(key)
            if previous is not None and previous[0] != index:
                conflicts[key] = ConflictEntry(
                    path=path,
                    existing_owner=previous[1],
                    incoming_owner=op.origin,
                    kind=ConflictKind.SELF,
                    severity=severity_for(path),
                )
            written[key] = (index, op.origin)

    last_writer: dict[tuple, int] = {}
    for index, op in enumerate(ops):
        last_writer[_op_key(op)] = index
    kept = []
    for index, op in enumerate(ops):
        winner = last_writer[_op_key(op)]
        if winner != index:
            message = f"'{op.destination}' from {op.origin} is overridden by {ops[winner].origin}"
            _logging.info(message)
            notes.append(message)
            continue
        kept.append(op)

    return kept, [conflicts[key] for key in sorted(conflicts)]


def _op_key(op: FileOp) -> tuple:
    if op.kind is RuleKind.FILE:
        return (op.kind, normalize_relpath(op.destination))
    return (op.kind, normalize_relpath(op.destination), op.source)


def render_plan(plan: InstallPlan) -> str:
    lines = [f"Installation Plan: {plan.package}", ""]
    if plan.profile:
        lines.insert(1, f"Profile: {plan.profile}")

    lines.append("Selected options:")
    if plan.selections:
        for selection in plan.selections:
            lines.append(f"  • {selection.label}")
    else:
        lines.append("  (none)")
    lines.append("")

    if plan.flags:
        lines.append("Flags:")
        for name, value in plan.flags:
            lines.append(f"  {name} = {value!r}")
        lines.append("")

    lines.append(f"Operations ({len(plan.operations)}):")
    for i, op in enumerate(plan.operations, 1):
        target = op.destination or "<root>"
        suffix = "/" if op.kind is RuleKind.FOLDER else ""
        lines.append(f"  {i}. {op.source}{suffix} -> {target}{suffix}  [{op.origin}]")

    if plan.conflicts:
        lines.append("")
        lines.append("Conflicts:")
        for conflict in plan.conflicts:
            lines.append(
                f"  [{conflict.severity.value}] {conflict.path}: {conflict.describe()}"
            )

    if plan.notes:
        lines.append("")
        lines.append("Notes:")
        for note in plan.notes:
            lines.append(f"  - {note}")

    return "\n".join(lines)


__all__ = [
    "FileOp",
    "OptionSelection",
    "InstallPlan",
    "normalize_install_path",
    "resolve_source",
    "find_content_root",
    "compile_plan",
    "render_plan",
]
