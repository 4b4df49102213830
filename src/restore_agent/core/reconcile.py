"""Match local recovery folders against archive keys.

A destination directory may already hold recovery folders from an earlier
run, each named after the identifier of the member that produced it. The
archive restored for a member carries the same identifier in its file name,
so the two can be paired up before the old folder is replaced.
"""

import posixpath
import re
import shutil
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from restore_agent.core.errors import MismatchedBackupCount, RestoreIOError
from restore_agent.core.locator import ARCHIVE_SUFFIX
from restore_agent.core.logging import get_logger

logger = get_logger(__name__)

IDENTITY_MISMATCH_WARNING = (
    "Restored backup identifier is different from the local recovery folder identifier"
)

# Recovery folders carry the UUID of the member that wrote them
RECOVERY_FOLDER_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE
)


@dataclass(frozen=True)
class RestorePlan:
    """What to restore and what to clear first.

    Attributes:
        key: Archive key to restore
        delete_folder: Local recovery folder to remove before extraction
        warnings: Non-fatal problems found while planning
    """

    key: str
    delete_folder: Path | None = None
    warnings: tuple[str, ...] = ()


def archive_base_name(key: str) -> str:
    """Get the recovery identifier an archive key refers to.

    >>> archive_base_name("2024-01-02-03-04-05/abc.tar.gz")
    'abc'
    """
    name = posixpath.basename(key)
    if name.endswith(ARCHIVE_SUFFIX):
        name = name[: -len(ARCHIVE_SUFFIX)]
    return name


def list_recovery_folders(destination: Path) -> list[str]:
    """List the recovery folders present under the destination, sorted.

    Only directories named like a UUID count. Lock files, hidden entries and
    unrelated directories such as lost+found are ignored.

    Raises:
        RestoreIOError: If the destination cannot be read
    """
    if not destination.exists():
        return []

    try:
        return sorted(
            entry.name
            for entry in destination.iterdir()
            if RECOVERY_FOLDER_PATTERN.fullmatch(entry.name) and entry.is_dir()
        )
    except OSError as e:
        raise RestoreIOError(f"Failed to read destination '{destination}': {e}") from e


def plan_restore(destination: Path, ordinal: int, keys: Sequence[str]) -> RestorePlan:
    """Choose the archive to restore and the local folder it supersedes.

    Args:
        destination: Destination root
        ordinal: Worker ordinal, already checked against ``len(keys)``
        keys: Sorted archive keys

    Returns:
        The restore plan

    Raises:
        MismatchedBackupCount: If several local folders exist but their count
            differs from the number of archives
        RestoreIOError: If the destination cannot be read
    """
    folders = list_recovery_folders(destination)

    if not folders:
        return RestorePlan(key=keys[ordinal])

    if len(folders) == 1:
        folder = folders[0]
        for key in keys:
            if archive_base_name(key) == folder:
                logger.info("Matched local recovery folder", folder=folder, key=key)
                return RestorePlan(key=key, delete_folder=destination / folder)

        # Assume the archives come from a different cluster entirely
        logger.warning(IDENTITY_MISMATCH_WARNING, folder=folder, key=keys[ordinal])
        return RestorePlan(key=keys[ordinal], warnings=(IDENTITY_MISMATCH_WARNING,))

    # Several folders means members share the destination, so the folder at
    # this ordinal is ours
    if len(folders) != len(keys):
        raise MismatchedBackupCount(len(folders), len(keys))

    key = keys[ordinal]
    folder = folders[ordinal]
    warnings: tuple[str, ...] = ()
    if archive_base_name(key) != folder:
        logger.warning(IDENTITY_MISMATCH_WARNING, folder=folder, key=key)
        warnings = (IDENTITY_MISMATCH_WARNING,)

    return RestorePlan(key=key, delete_folder=destination / folder, warnings=warnings)


def apply_plan(plan: RestorePlan) -> None:
    """Remove the superseded recovery folder, if any.

    Raises:
        RestoreIOError: If the folder cannot be removed
    """
    if plan.delete_folder is None:
        return

    logger.info("Removing local recovery folder", path=str(plan.delete_folder))
    try:
        shutil.rmtree(plan.delete_folder)
    except FileNotFoundError:
        pass
    except OSError as e:
        raise RestoreIOError(f"Failed to remove '{plan.delete_folder}': {e}") from e
