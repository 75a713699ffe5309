"""Transactional plan execution.

A plan is materialised into a private working tree next to the target and
swapped into place with renames. The live target is either fully replaced
or left exactly as it was.
"""

import json
import logging
import os
import shutil
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from modstage.errors import ExecError, LeaseError
from modstage.lease import ExclusiveLease

from .conflicts import walk_files
from .models import RuleKind
from .planning import FileOp, InstallPlan

_logging = logging.getLogger(__name__)

LogSink = Callable[[dict], None]


class TransactionState(Enum):
    PENDING = "pending"
    APPLYING = "applying"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass
class OpOutcome:
    index: int
    kind: str
    destination: str
    status: str
    files: int = 0
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "kind": self.kind,
            "destination": self.destination,
            "status": self.status,
            "files": self.files,
            "error": self.error,
        }


@dataclass
class Transaction:
    plan: InstallPlan
    id: str
    working_root: Path
    backup_root: Path
    state: TransactionState = TransactionState.PENDING
    outcomes: list[OpOutcome] = field(default_factory=list)
    recovery: str = "not needed"

    @property
    def target_root(self) -> Path:
        return Path(self.plan.target_root)


@dataclass(frozen=True)
class InstalledManifest:
    package: str
    profile: str | None
    transaction_id: str
    target_root: str
    installer_digest: str
    files: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "profile": self.profile,
            "transaction_id": self.transaction_id,
            "target_root": self.target_root,
            "installer_digest": self.installer_digest,
            "files": list(self.files),
        }


def new_transaction_id() -> str:
    return f"{time.strftime('%Y%m%d%H%M%S', time.gmtime())}-{uuid.uuid4().hex[:8]}"


def _copy_file(source: Path, destination: Path) -> None:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError as e:
        _logging.debug(f"Cannot open {path} for fsync: {e}")
        return
    try:
        os.fsync(fd)
    except OSError as e:
        _logging.debug(f"fsync of {path} not supported: {e}")
    finally:
        os.close(fd)


def _execute_op(op: FileOp, source_root: Path, working_root: Path) -> int:
    source = source_root / op.source if op.source else source_root
    destination = working_root / op.destination if op.destination else working_root
    if op.kind is RuleKind.FILE:
        _copy_file(source, destination)
        return 1
    copied = 0
    for rel in walk_files(source):
        _copy_file(source / rel, destination / rel)
        copied += 1
    destination.mkdir(parents=True, exist_ok=True)
    return copied


def _discard(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def _log_record(txn: Transaction, error: str | None) -> dict:
    plan = txn.plan
    return {
        "event": "install_transaction",
        "transaction_id": txn.id,
        "package": plan.package,
        "profile": plan.profile,
        "target_root": plan.target_root,
        "selected_options": [s.label for s in plan.selections],
        "flags": dict(plan.flags),
        "operations": [o.to_dict() for o in txn.outcomes],
        "state": txn.state.value,
        "recovery": txn.recovery,
        "error": error,
    }


def _run(txn: Transaction) -> None:
    plan = txn.plan
    source_root = Path(plan.source_root)
    target = txn.target_root

    try:
        txn.working_root.mkdir()
    except OSError as e:
        txn.state = TransactionState.ROLLED_BACK
        raise ExecError(txn.id, f"cannot create working tree: {e}", "unchanged")

    txn.state = TransactionState.APPLYING
    for index, op in enumerate(plan.operations):
        try:
            copied = _execute_op(op, source_root, txn.working_root)
        except OSError as e:
            txn.outcomes.append(
                OpOutcome(index, op.kind.value, op.destination, "failed", error=str(e))
            )
            _discard(txn.working_root)
            txn.state = TransactionState.ROLLED_BACK
            txn.recovery = "working tree removed"
            raise ExecError(txn.id, f"operation {index} failed: {e}", "unchanged")
        txn.outcomes.append(OpOutcome(index, op.kind.value, op.destination, "ok", copied))

    had_target = target.exists() or target.is_symlink()
    try:
        if had_target:
            os.rename(target, txn.backup_root)
    except OSError as e:
        _discard(txn.working_root)
        txn.state = TransactionState.ROLLED_BACK
        txn.recovery = "working tree removed"
        raise ExecError(txn.id, f"cannot move target aside: {e}", "unchanged")

    try:
        os.rename(txn.working_root, target)
    except OSError as e:
        cause = f"cannot swap working tree into place: {e}"
        if had_target:
            try:
                os.rename(txn.backup_root, target)
            except OSError as restore_error:
                txn.state = TransactionState.FAILED
                txn.recovery = f"restore failed: {restore_error}"
                raise ExecError(
                    txn.id, cause, f"previous install preserved at {txn.backup_root}"
                )
        _discard(txn.working_root)
        txn.state = TransactionState.ROLLED_BACK
        txn.recovery = "backup restored" if had_target else "working tree removed"
        raise ExecError(txn.id, cause, "unchanged")

    _fsync_dir(target.parent)
    txn.state = TransactionState.COMMITTED
    if had_target:
        try:
            _discard(txn.backup_root)
        except OSError as e:
            _logging.warning(f"Could not remove backup {txn.backup_root}: {e}")


def apply_plan(plan: InstallPlan, log_sink: LogSink | None = None) -> InstalledManifest:
    """Apply an install plan to its target root atomically.

    Args:
        plan: Compiled install plan
        log_sink: Optional callable receiving the structured transaction record

    Returns:
        Manifest of the committed install

    Raises:
        ExecError: If the apply failed; the target is left unchanged
    """
    target = Path(plan.target_root)
    target.parent.mkdir(parents=True, exist_ok=True)
    txn_id = new_transaction_id()
    txn = Transaction(
        plan=plan,
        id=txn_id,
        working_root=target.parent / f".{target.name}.txn-{txn_id}",
        backup_root=target.parent / f".{target.name}.bak-{txn_id}",
    )

    error: str | None = None
    try:
        with ExclusiveLease(target, owner=plan.package):
            _run(txn)
    except LeaseError as e:
        error = str(e)
        raise ExecError(txn.id, error, "unchanged", log=_log_record(txn, error))
    except ExecError as e:
        error = str(e)
        e.log = _log_record(txn, error)
        raise
    finally:
        record = _log_record(txn, error)
        if txn.state is TransactionState.COMMITTED:
            _logging.info(json.dumps(record, sort_keys=True))
        else:
            _logging.error(json.dumps(record, sort_keys=True))
        if log_sink is not None:
            log_sink(record)

    return InstalledManifest(
        package=plan.package,
        profile=plan.profile,
        transaction_id=txn.id,
        target_root=plan.target_root,
        installer_digest=plan.installer_digest,
        files=tuple(walk_files(target)),
    )


__all__ = [
    "TransactionState",
    "OpOutcome",
    "Transaction",
    "InstalledManifest",
    "new_transaction_id",
    "apply_plan",
]
