"""Filesystem bucket driver for ``file://`` URIs."""

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import BinaryIO

from restore_agent.core.errors import StoreError
from restore_agent.core.logging import get_logger
from restore_agent.storage.base import BucketURI, ObjectInfo

logger = get_logger(__name__)


class LocalStore:
    """A directory on a mounted filesystem treated as a bucket.

    Keys are POSIX paths relative to the root directory.
    """

    def __init__(self, root: Path) -> None:
        """Initialize the local store.

        Args:
            root: Directory holding the archived backups
        """
        self.root = root

    def list_objects(self) -> Iterator[ObjectInfo]:
        """Walk the root directory in sorted order.

        Raises:
            StoreError: If the root is missing or a directory cannot be read
        """
        if not self.root.is_dir():
            raise StoreError(f"Bucket directory '{self.root}' does not exist")

        try:
            for path in sorted(self.root.rglob("*")):
                if not path.is_file():
                    continue
                stat = path.stat()
                yield ObjectInfo(
                    key=path.relative_to(self.root).as_posix(),
                    size=stat.st_size,
                    modified=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                )
        except OSError as e:
            raise StoreError(f"Failed to list '{self.root}': {e}") from e

    def open_reader(self, key: str) -> BinaryIO:
        """Open an object for reading.

        Raises:
            StoreError: If the object does not exist or cannot be opened
        """
        path = self.root / key
        try:
            return path.open("rb")
        except OSError as e:
            raise StoreError(f"Failed to open '{key}': {e}") from e

    def close(self) -> None:
        """Nothing to release for a local directory."""
        logger.debug("Closed bucket", root=str(self.root))


def open_local_store(uri: BucketURI, credentials: dict[str, bytes]) -> LocalStore:
    """Open a local directory bucket. Credentials are ignored."""
    return LocalStore(Path(uri.bucket))
