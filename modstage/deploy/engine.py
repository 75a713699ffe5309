"""Transactional deployment of resolved layouts into a game directory.

Only files listed in the ledger of the previous deployment belong to
modstage. Everything else found in the data directory is carried over
into the new tree untouched. Game files that a deployed unit replaces are
kept in an ``.<data_dir>.overridden`` directory beside it and put back once
no unit provides that path any more.
"""

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from modstage.errors import ExecError, LeaseError
from modstage.installer.conflicts import ConflictEntry, normalize_relpath
from modstage.installer.transaction import (
    LogSink,
    TransactionState,
    _fsync_dir,
    new_transaction_id,
)
from modstage.lease import ExclusiveLease

from .layout import DeployEntry, DeploymentUnit, resolve_deployment

_logging = logging.getLogger(__name__)

LEDGER_NAME = ".modstage-deploy.json"
STASH_DATA = "data"
STASH_ROOT = "root"


class DeployMethod(Enum):
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    COPY = "copy"


@dataclass
class DeploymentReport:
    transaction_id: str
    method: DeployMethod
    data_path: str
    units: list[str] = field(default_factory=list)
    files_deployed: int = 0
    loader_files: list[str] = field(default_factory=list)
    removed_loader_files: list[str] = field(default_factory=list)
    overridden_files: list[str] = field(default_factory=list)
    shadowed: list[ConflictEntry] = field(default_factory=list)

    @property
    def purged(self) -> bool:
        return not self.units


def _link_file(method: DeployMethod, source: Path, destination: Path, force_copy: bool) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    if force_copy or method is DeployMethod.COPY:
        shutil.copy2(source, destination)
    elif method is DeployMethod.HARDLINK:
        os.link(source, destination)
    else:
        os.symlink(source, destination)


def _preserve(source: Path, destination: Path) -> None:
    """Carry an existing file into a new tree without touching its content."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    if source.is_symlink():
        os.symlink(os.readlink(source), destination)
        return
    try:
        os.link(source, destination)
    except OSError:
        # No hardlinks on this filesystem
        shutil.copy2(source, destination)


def _scan(root: Path) -> tuple[list[str], list[str]]:
    """Files (symlinks included) and empty directories below ``root``."""
    files: list[str] = []
    empty: list[str] = []
    if not root.is_dir():
        return files, empty
    for dirpath, dirnames, filenames in os.walk(root):
        links = [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]
        dirnames[:] = sorted(d for d in dirnames if d not in links)
        names = sorted(filenames + links)
        base = Path(dirpath).relative_to(root)
        files.extend((base / name).as_posix() for name in names)
        if not names and not dirnames and base != Path("."):
            empty.append(base.as_posix())
    return files, empty


def _read_ledger(data_path: Path) -> dict:
    ledger = data_path / LEDGER_NAME
    if not ledger.is_file():
        return {}
    try:
        return json.loads(ledger.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        _logging.warning(f"Ignoring unreadable deployment ledger {ledger}: {e}")
        return {}


def _remove(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


@dataclass
class _Swap:
    """A live directory replaced by a freshly built one."""

    live: Path
    working: Path
    backup: Path
    had_live: bool = False
    done: bool = False

    def commit(self, keep_empty: bool) -> None:
        self.had_live = self.live.exists() or self.live.is_symlink()
        if self.had_live:
            os.rename(self.live, self.backup)
        if not keep_empty and not any(self.working.iterdir()):
            self.working.rmdir()
            self.done = True
            return
        try:
            os.rename(self.working, self.live)
        except OSError:
            if self.had_live:
                os.rename(self.backup, self.live)
                self.had_live = False
            raise
        self.done = True

    def undo(self) -> None:
        if not self.done:
            return
        if self.live.exists() or self.live.is_symlink():
            os.rename(self.live, self.working)
        if self.had_live:
            os.rename(self.backup, self.live)
        self.done = False


class _Deployment:
    """One deploy attempt; every step it takes can be undone by ``rollback``."""

    def __init__(self, game_root: Path, data_dir: str, method: DeployMethod):
        self.id = new_transaction_id()
        self.game_root = game_root
        self.method = method
        self.data_path = game_root / data_dir
        self.stash_path = game_root / f".{data_dir}.overridden"
        self.data = _Swap(
            live=self.data_path,
            working=game_root / f".{data_dir}.deploy-{self.id}",
            backup=game_root / f".{data_dir}.bak-{self.id}",
        )
        self.stash = _Swap(
            live=self.stash_path,
            working=game_root / f".{data_dir}.overridden-{self.id}",
            backup=game_root / f".{data_dir}.overridden.bak-{self.id}",
        )
        self.loader_backup = game_root / f".modstage-loaders.bak-{self.id}"
        self.state = TransactionState.PENDING
        self.recovery: str | None = None
        self.overridden: list[str] = []
        self.restored_loaders: list[str] = []
        self.backed_up_loaders: list[str] = []
        self.placed_loaders: list[str] = []

    def build_trees(
        self,
        entries: list[DeployEntry],
        loaders: list[DeployEntry],
        previous: dict,
        ledger: dict | None,
    ) -> None:
        """Build the new data tree and the new store of overridden game files."""
        managed = {normalize_relpath(p) for p in previous.get("data_files", [])}
        managed.add(normalize_relpath(LEDGER_NAME))
        incoming = {normalize_relpath(e.path) for e in entries}
        self.data.working.mkdir()
        self.stash.working.mkdir()
        stash_data = self.stash.working / STASH_DATA

        live_files, empty_dirs = _scan(self.data_path)
        for rel in live_files:
            key = normalize_relpath(rel)
            if key in managed:
                continue
            if key in incoming:
                self.overridden.append(rel)
                _preserve(self.data_path / rel, stash_data / rel)
            else:
                _preserve(self.data_path / rel, self.data.working / rel)
        for rel in empty_dirs:
            (self.data.working / rel).mkdir(parents=True, exist_ok=True)

        stashed, _ = _scan(self.stash_path / STASH_DATA)
        for rel in stashed:
            if normalize_relpath(rel) in incoming:
                self.overridden.append(rel)
                _preserve(self.stash_path / STASH_DATA / rel, stash_data / rel)
            else:
                _preserve(self.stash_path / STASH_DATA / rel, self.data.working / rel)

        self._stash_loaders(loaders, previous)

        for entry in entries:
            _link_file(self.method, Path(entry.source), self.data.working / entry.path, entry.force_copy)
        if ledger is not None:
            (self.data.working / LEDGER_NAME).write_text(
                json.dumps(ledger, indent=2, sort_keys=True) + "\n", encoding="utf-8"
            )

    def _stash_loaders(self, loaders: list[DeployEntry], previous: dict) -> None:
        previously_placed = {normalize_relpath(p) for p in previous.get("loader_files", [])}
        incoming = {normalize_relpath(e.path) for e in loaders}
        stash_root = self.stash.working / STASH_ROOT
        for entry in loaders:
            live = self.game_root / entry.path
            placed_by_us = normalize_relpath(entry.path) in previously_placed
            if (live.is_file() or live.is_symlink()) and not placed_by_us:
                _preserve(live, stash_root / entry.path)
        stashed, _ = _scan(self.stash_path / STASH_ROOT)
        for name in stashed:
            if normalize_relpath(name) in incoming:
                _preserve(self.stash_path / STASH_ROOT / name, stash_root / name)
            else:
                self.restored_loaders.append(name)

    def replace_loaders(self, stale: list[str], entries: list[DeployEntry]) -> None:
        self.loader_backup.mkdir()
        names = set(stale) | {e.path for e in entries} | set(self.restored_loaders)
        for name in sorted(names):
            live = self.game_root / name
            if live.exists() or live.is_symlink():
                os.rename(live, self.loader_backup / name)
                self.backed_up_loaders.append(name)
        for entry in entries:
            self.placed_loaders.append(entry.path)
            # Loader binaries are always real copies next to the executable.
            _link_file(self.method, Path(entry.source), self.game_root / entry.path, True)
        for name in self.restored_loaders:
            self.placed_loaders.append(name)
            _preserve(self.stash_path / STASH_ROOT / name, self.game_root / name)

    def rollback(self) -> list[str]:
        """Undo everything done so far; returns a note per failed restore."""
        problems = []
        for name in self.placed_loaders:
            try:
                _remove(self.game_root / name)
            except OSError as e:
                problems.append(f"cannot remove {name}: {e}")
        for name in self.backed_up_loaders:
            try:
                os.rename(self.loader_backup / name, self.game_root / name)
            except OSError as e:
                problems.append(f"cannot restore {name}: {e}")
        for swap in (self.stash, self.data):
            try:
                swap.undo()
            except OSError as e:
                problems.append(f"cannot restore {swap.live}: {e}")
        for leftover in (self.data.working, self.stash.working, self.loader_backup):
            try:
                _remove(leftover)
            except OSError as e:
                problems.append(f"cannot remove {leftover}: {e}")
        return problems

    def cleanup(self) -> None:
        for leftover in (self.data.backup, self.stash.backup, self.loader_backup):
            try:
                _remove(leftover)
            except OSError as e:
                _logging.warning(f"Could not remove {leftover}: {e}")


def _log_record(
    deployment: _Deployment, units: list[DeploymentUnit], files: int, shadowed: int, error: str | None
) -> dict:
    return {
        "event": "deploy_transaction",
        "transaction_id": deployment.id,
        "game_root": str(deployment.game_root),
        "data_path": str(deployment.data_path),
        "method": deployment.method.value,
        "units": [u.name for u in units],
        "files": files,
        "shadowed": shadowed,
        "overridden": sorted(deployment.overridden),
        "state": deployment.state.value,
        "recovery": deployment.recovery,
        "error": error,
    }


def deploy_units(
    units: list[DeploymentUnit],
    game_root: Path,
    data_dir: str = "Data",
    method: DeployMethod = DeployMethod.SYMLINK,
    log_sink: LogSink | None = None,
) -> DeploymentReport:
    """Deploy units into ``game_root`` replacing the previous deployment.

    The data directory is rebuilt in a working directory from the files the
    previous deployment did not place plus the new entries, then swapped into
    place. Loader binaries in the game root are replaced with per-file
    backups. Any failure restores the previous state. An empty unit list
    purges the deployment and leaves only the game's own files.

    Raises:
        ExecError: If deployment failed; the previous deployment is restored
    """
    game_root = Path(game_root)
    if not game_root.is_dir():
        raise ExecError("-", f"game directory {game_root} does not exist", "unchanged")

    layout = resolve_deployment(units)
    deployment = _Deployment(game_root, data_dir, method)
    loaders = layout.loader_entries
    data_entries = layout.data_entries
    files = len(data_entries) + len(loaders)

    error: str | None = None
    try:
        with ExclusiveLease(deployment.data_path, owner="deploy"):
            previous = _read_ledger(deployment.data_path)
            stale = previous.get("loader_files", [])
            ledger = None
            if units:
                ledger = {
                    "transaction_id": deployment.id,
                    "method": method.value,
                    "units": [u.name for u in units],
                    "data_files": sorted(e.path for e in data_entries),
                    "loader_files": sorted(e.path for e in loaders),
                }
            deployment.state = TransactionState.APPLYING
            try:
                deployment.build_trees(data_entries, loaders, previous, ledger)
                deployment.data.commit(keep_empty=True)
                deployment.replace_loaders(stale, loaders)
                deployment.stash.commit(keep_empty=False)
            except OSError as e:
                problems = deployment.rollback()
                if problems:
                    deployment.state = TransactionState.FAILED
                    deployment.recovery = "partially restored: " + "; ".join(problems)
                    _logging.error(f"Deployment {deployment.id} rollback incomplete: {problems}")
                else:
                    deployment.state = TransactionState.ROLLED_BACK
                    deployment.recovery = "unchanged"
                raise ExecError(deployment.id, f"deployment failed: {e}", deployment.recovery)

            _fsync_dir(game_root)
            deployment.state = TransactionState.COMMITTED
            deployment.cleanup()
    except LeaseError as e:
        error = str(e)
        raise ExecError(
            deployment.id,
            error,
            "unchanged",
            log=_log_record(deployment, units, files, len(layout.shadowed), error),
        )
    except ExecError as e:
        error = str(e)
        e.log = _log_record(deployment, units, files, len(layout.shadowed), error)
        raise
    finally:
        record = _log_record(deployment, units, files, len(layout.shadowed), error)
        if deployment.state is TransactionState.COMMITTED:
            _logging.info(json.dumps(record, sort_keys=True))
        else:
            _logging.error(json.dumps(record, sort_keys=True))
        if log_sink is not None:
            log_sink(record)

    report = DeploymentReport(
        transaction_id=deployment.id,
        method=method,
        data_path=str(deployment.data_path),
        units=[u.name for u in units],
        files_deployed=files,
        loader_files=sorted(e.path for e in loaders),
        removed_loader_files=sorted(set(stale) - {e.path for e in loaders}),
        overridden_files=sorted(deployment.overridden),
        shadowed=layout.shadowed,
    )
    if report.purged:
        _logging.info(f"No units to deploy, purged deployment in {deployment.data_path}")
    else:
        _logging.info(
            f"Deployed {report.files_deployed} files from {len(units)} units "
            f"({len(layout.shadowed)} conflicts resolved)"
        )
    return report


__all__ = [
    "LEDGER_NAME",
    "DeployMethod",
    "DeploymentReport",
    "deploy_units",
]
