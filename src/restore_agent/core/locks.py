"""Completion locks that make repeated restores a no-op.

A lock is an empty file named ``.restore_lock.<restore-id>.<ordinal>`` in the
destination root. The restore id may be empty.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path

from restore_agent.core.errors import RestoreIOError
from restore_agent.core.logging import get_logger

logger = get_logger(__name__)

LOCK_PREFIX = "restore_lock"

RESTORE_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]*")

_ORDINAL_PATTERN = re.compile(r"[0-9]+")


class LockNameError(ValueError):
    """Raised when a file name is not a completion lock name.

    Attributes:
        name: The file name
        reason: Which part of the grammar was violated
    """

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"{name!r} is not a restore lock: {reason}")


@dataclass(frozen=True)
class LockName:
    """The parts of a completion lock file name."""

    restore_id: str
    ordinal: int

    @property
    def filename(self) -> str:
        """The lock file name."""
        return f".{LOCK_PREFIX}.{self.restore_id}.{self.ordinal}"


def parse_lock_name(name: str) -> LockName:
    """Parse a completion lock file name.

    Raises:
        LockNameError: If the name does not follow the lock grammar
    """
    head = f".{LOCK_PREFIX}."
    if not name.startswith(head):
        raise LockNameError(name, f"missing '{head}' prefix")

    restore_id, sep, ordinal = name[len(head) :].rpartition(".")
    if not sep:
        raise LockNameError(name, "missing ordinal field")
    if not RESTORE_ID_PATTERN.fullmatch(restore_id):
        raise LockNameError(name, f"invalid restore id {restore_id!r}")
    if not _ORDINAL_PATTERN.fullmatch(ordinal):
        raise LockNameError(name, f"invalid ordinal {ordinal!r}")

    return LockName(restore_id=restore_id, ordinal=int(ordinal))


class CompletionLock:
    """The completion lock of one worker for one restore operation."""

    def __init__(self, destination: Path, restore_id: str, ordinal: int) -> None:
        """Initialize the lock.

        Args:
            destination: Destination root holding the lock files
            restore_id: External restore identifier, may be empty
            ordinal: Worker ordinal

        Raises:
            ValueError: If the restore id cannot be part of a lock name
        """
        if not RESTORE_ID_PATTERN.fullmatch(restore_id):
            raise ValueError(f"Invalid restore id {restore_id!r}")
        self.destination = destination
        self.name = LockName(restore_id=restore_id, ordinal=ordinal)

    @property
    def path(self) -> Path:
        """Path of the lock file."""
        return self.destination / self.name.filename

    def exists(self) -> bool:
        """Check whether this worker already completed this restore."""
        return self.path.exists()

    def stale_locks(self) -> list[Path]:
        """Find locks left for this ordinal by earlier restore operations.

        Raises:
            RestoreIOError: If the destination cannot be read
        """
        stale = []
        try:
            entries = sorted(self.destination.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise RestoreIOError(f"Failed to read destination '{self.destination}': {e}") from e

        for entry in entries:
            try:
                lock = parse_lock_name(entry.name)
            except LockNameError:
                continue
            if lock.ordinal == self.name.ordinal and lock != self.name:
                stale.append(entry)
        return stale

    def commit(self) -> None:
        """Replace stale locks of this ordinal with a fresh lock.

        An existing lock for this restore is left untouched.

        Raises:
            RestoreIOError: If a lock cannot be removed or written
        """
        for stale in self.stale_locks():
            try:
                stale.unlink()
            except OSError as e:
                raise RestoreIOError(f"Failed to remove stale lock '{stale}': {e}") from e
            logger.info("Removed stale restore lock", path=str(stale))

        try:
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError:
            logger.warning("Restore lock already exists", path=str(self.path))
            return
        except OSError as e:
            raise RestoreIOError(f"Failed to create restore lock '{self.path}': {e}") from e
        os.close(fd)

        logger.info("Created restore lock", path=str(self.path))
