"""Stream a gzipped tar archive from a bucket into the destination tree."""

import gzip
import stat
import tarfile
import threading
import zlib
from pathlib import Path
from typing import IO

from restore_agent.core.errors import RestoreCancelled, RestoreIOError, StoreError
from restore_agent.core.logging import get_logger
from restore_agent.storage.base import BlobStore

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024

_READ_ERRORS = (OSError, EOFError, tarfile.TarError, zlib.error, StoreError)


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise RestoreCancelled("Extraction cancelled")


def _resolve_target(root: Path, name: str) -> Path:
    # Absolute entry names are rooted at the destination, not at /
    target = (root / name.lstrip("/")).resolve()
    if target != root and not target.is_relative_to(root):
        raise RestoreIOError(f"Archive entry '{name}' escapes the destination")
    return target


def _save_file(
    target: Path,
    mode: int,
    src: IO[bytes],
    cancel: threading.Event | None,
) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as dst:
        while True:
            _check_cancel(cancel)
            chunk = src.read(CHUNK_SIZE)
            if not chunk:
                break
            dst.write(chunk)
    target.chmod(mode)


def extract_archive(
    store: BlobStore,
    key: str,
    destination: Path,
    cancel: threading.Event | None = None,
) -> int:
    """Extract an archive from the bucket into the destination directory.

    Entries are processed in archive order. A failure stops the extraction
    and leaves whatever was already written on disk.

    Args:
        store: Opened bucket
        key: Archive key
        destination: Destination root
        cancel: Set to abort between entries or chunks

    Returns:
        Number of entries written

    Raises:
        RestoreIOError: On any read, decompression or filesystem error
        RestoreCancelled: If cancelled part way
    """
    destination.mkdir(parents=True, exist_ok=True)
    root = destination.resolve()
    written = 0

    try:
        with (
            store.open_reader(key) as reader,
            gzip.GzipFile(fileobj=reader, mode="rb") as decompressed,
            tarfile.open(fileobj=decompressed, mode="r|") as archive,
        ):
            for member in archive:
                _check_cancel(cancel)

                target = _resolve_target(root, member.name)
                mode = stat.S_IMODE(member.mode)

                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    target.chmod(mode)
                elif member.isfile():
                    src = archive.extractfile(member)
                    if src is None:
                        raise RestoreIOError(f"Archive entry '{member.name}' has no content")
                    with src:
                        _save_file(target, mode, src, cancel)
                else:
                    logger.warning(
                        "Skipping unsupported archive entry", entry=member.name, type=member.type
                    )
                    continue

                written += 1
                logger.debug("Extracted entry", entry=member.name, mode=oct(mode))
    except (RestoreIOError, RestoreCancelled):
        raise
    except _READ_ERRORS as e:
        raise RestoreIOError(f"Failed to extract '{key}': {e}") from e

    logger.info("Extracted archive", key=key, entries=written)
    return written
