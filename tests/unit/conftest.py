"""Shared fixtures for restore agent unit tests."""

import io
import tarfile
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from restore_agent.storage.base import ObjectInfo

# (name, mode, content); content None marks a directory
ArchiveEntry = tuple[str, int, bytes | None]


def _build_archive(entries: list[ArchiveEntry]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for name, mode, content in entries:
            info = tarfile.TarInfo(name)
            info.mode = mode
            if content is None:
                info.type = tarfile.DIRTYPE
                tar.addfile(info)
            else:
                info.size = len(content)
                tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class _MemoryStore:
    """In-memory bucket recording how it was used."""

    def __init__(self, objects: dict[str, bytes] | None = None) -> None:
        self.objects = objects or {}
        self.listed = False
        self.opened: list[str] = []
        self.closed = False

    def list_objects(self) -> Iterator[ObjectInfo]:
        self.listed = True
        for key, data in self.objects.items():
            yield ObjectInfo(key=key, size=len(data))

    def open_reader(self, key: str) -> io.BytesIO:
        self.opened.append(key)
        return io.BytesIO(self.objects[key])

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_archive() -> Callable[[list[ArchiveEntry]], bytes]:
    """Build a gzipped tar archive in memory from (name, mode, content) entries."""
    return _build_archive


@pytest.fixture
def make_store() -> Callable[..., _MemoryStore]:
    """Create an in-memory bucket from a key to bytes mapping.

    Behaviour can be changed per test by assigning to the instance, e.g.
    ``store.open_reader = failing_open``.
    """
    return _MemoryStore


@pytest.fixture
def bucket_dir(tmp_path: Path) -> Path:
    """A directory used as a file:// bucket."""
    path = tmp_path / "bucket"
    path.mkdir()
    return path


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    """The restore destination directory."""
    path = tmp_path / "dst"
    path.mkdir()
    return path


@pytest.fixture
def put_archive(bucket_dir: Path) -> Callable[[str, list[ArchiveEntry]], Path]:
    """Write an archive into the bucket directory under a key."""

    def _put(key: str, entries: list[ArchiveEntry]) -> Path:
        path = bucket_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(_build_archive(entries))
        return path

    return _put
