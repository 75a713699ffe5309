"""Single-writer leases for directory trees."""

import json
import logging
import os
from pathlib import Path

from modstage.errors import LeaseError

_logging = logging.getLogger(__name__)


class ExclusiveLease:
    """Lock file beside ``path`` created with ``O_CREAT | O_EXCL``.

    Holding the lease is the only permission to write the tree. There is no
    timeout or stale-lock detection; a leftover lock file must be removed by
    hand once its owner is known to be gone.
    """

    def __init__(self, path: Path, owner: str = ""):
        self.path = Path(path)
        self.owner = owner
        self.lock_path = self.path.parent / f".{self.path.name}.lock"
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> "ExclusiveLease":
        if self._held:
            raise LeaseError(f"lease on {self.path} is already held by this process")
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise LeaseError(
                f"{self.path} is locked by another writer (remove {self.lock_path} "
                "if no other modstage process is running)"
            )
        with os.fdopen(fd, "w") as f:
            json.dump({"pid": os.getpid(), "owner": self.owner}, f)
        self._held = True
        _logging.debug(f"Acquired lease {self.lock_path}")
        return self

    def release(self) -> None:
        if not self._held:
            return
        self.lock_path.unlink(missing_ok=True)
        self._held = False
        _logging.debug(f"Released lease {self.lock_path}")

    def __enter__(self) -> "ExclusiveLease":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


__all__ = ["ExclusiveLease"]
