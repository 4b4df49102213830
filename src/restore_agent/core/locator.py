"""Locate the archived backup files that belong to the latest backup run."""

import re
import threading

from restore_agent.core.errors import NoArchivesFound, RestoreCancelled
from restore_agent.core.logging import get_logger
from restore_agent.storage.base import BlobStore

logger = get_logger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"

# Backup runs are stored under a directory named after their start time,
# e.g. 2006-01-02-15-04-05/
DATED_PREFIX_PATTERN = re.compile(r"^(?P<dir>\d{4}-\d{2}-\d{2}-\d{2}-\d{2}-\d{2})/")


def dated_prefix(key: str) -> str | None:
    """Return the dated backup directory a key lives in, if any.

    Args:
        key: Object key

    Returns:
        The directory name without the trailing slash, or None for undated keys
    """
    match = DATED_PREFIX_PATTERN.match(key)
    if match is None:
        return None
    return match.group("dir")


def find_backup_keys(store: BlobStore, cancel: threading.Event | None = None) -> list[str]:
    """List the archive keys of the most recent backup run.

    If any key sits in a dated directory, only keys in the greatest such
    directory are kept. String comparison stands in for time comparison here,
    which only holds because the directory format is fixed-width and
    zero-padded; revisit this if the format ever changes.

    Args:
        store: Opened bucket
        cancel: Set to abort the listing

    Returns:
        Archive keys, sorted ascending

    Raises:
        NoArchivesFound: If no archive is left after filtering
        StoreError: If listing fails
        RestoreCancelled: If cancelled while listing
    """
    keys: list[str] = []
    latest = ""

    for obj in store.list_objects():
        if cancel is not None and cancel.is_set():
            raise RestoreCancelled("Listing cancelled")

        if not obj.key.endswith(ARCHIVE_SUFFIX):
            continue

        directory = dated_prefix(obj.key)
        if directory is not None and directory > latest:
            latest = directory

        keys.append(obj.key)

    if latest:
        logger.info("Using latest backup directory", directory=latest)
        keys = [k for k in keys if k.startswith(latest + "/")]

    if not keys:
        raise NoArchivesFound("There are no archived backup files in the bucket")

    keys.sort()
    logger.debug("Found archived backup files", count=len(keys))
    return keys
