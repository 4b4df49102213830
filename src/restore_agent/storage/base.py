"""Object store protocol shared by all bucket drivers."""

import io
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, BinaryIO, Protocol, runtime_checkable
from urllib.parse import parse_qsl, urlsplit

from restore_agent.core.errors import StoreError


@dataclass
class ObjectInfo:
    """A single object listed from a bucket.

    Attributes:
        key: Object key relative to the bucket prefix
        size: Object size in bytes
        modified: Last modification time, if the driver knows it
    """

    key: str
    size: int = 0
    modified: datetime | None = None


@dataclass
class BucketURI:
    """A parsed bucket location such as ``s3://backups/hazelcast?region=eu-west-1``.

    Attributes:
        scheme: Driver scheme (``s3``, ``gs``, ``azblob``, ``file``)
        bucket: Bucket name, or the root directory for ``file``
        prefix: Key prefix inside the bucket, empty or ending in ``/``
        params: Query parameters passed to the driver
    """

    scheme: str
    bucket: str
    prefix: str = ""
    params: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        if self.scheme == "file":
            return f"file://{self.bucket}/{self.prefix}".rstrip("/")
        return f"{self.scheme}://{self.bucket}/{self.prefix}".rstrip("/")


def parse_bucket_uri(uri: str) -> BucketURI:
    """Parse a bucket URI.

    Args:
        uri: Bucket URI, e.g. ``s3://bucket/path/to/backups``

    Returns:
        Parsed bucket URI

    Raises:
        StoreError: If the URI has no scheme or no bucket
    """
    parts = urlsplit(uri.strip())
    if not parts.scheme:
        raise StoreError(f"Bucket URI {uri!r} has no scheme, expected e.g. s3://bucket/path")

    scheme = parts.scheme.lower()
    params = dict(parse_qsl(parts.query))

    if scheme == "file":
        # file:///data/backups keeps the whole path as the bucket root
        root = parts.netloc + parts.path
        if not root:
            raise StoreError(f"Bucket URI {uri!r} has no directory")
        return BucketURI(scheme=scheme, bucket=root.rstrip("/") or "/", params=params)

    if not parts.netloc:
        raise StoreError(f"Bucket URI {uri!r} has no bucket name")

    prefix = parts.path.strip("/")
    if prefix:
        prefix += "/"

    return BucketURI(scheme=scheme, bucket=parts.netloc, prefix=prefix, params=params)


def secret_value(credentials: dict[str, bytes], key: str) -> str | None:
    """Get a secret entry as text, or None when it is missing or empty."""
    value = credentials.get(key)
    if not value:
        return None
    return value.decode("utf-8").strip() or None


@runtime_checkable
class BlobStore(Protocol):
    """Protocol for a bucket of archived backups.

    Drivers list keys relative to the configured prefix and raise
    `StoreError` for any backend failure.
    """

    def list_objects(self) -> Iterator[ObjectInfo]:
        """Iterate over every object under the bucket prefix.

        Raises:
            StoreError: If listing fails part way
        """
        ...

    def open_reader(self, key: str) -> BinaryIO:
        """Open a streaming reader for an object.

        The returned stream is a context manager and must be closed.

        Raises:
            StoreError: If the object cannot be opened
        """
        ...

    def close(self) -> None:
        """Release any client resources held by the store."""
        ...


class ObjectReader(io.RawIOBase):
    """Raw stream over an SDK download body that reports failures as StoreError.

    Wrap it in ``io.BufferedReader`` before handing it out.
    """

    def __init__(self, url: str, body: Any, errors: tuple[type[Exception], ...]) -> None:
        """Initialize the reader.

        Args:
            url: Object location used in error messages
            body: SDK object with a ``read(size)`` method
            errors: SDK exception types to convert into StoreError
        """
        self._url = url
        self._body = body
        self._errors = errors

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: Any) -> int:
        try:
            data = self._body.read(len(buffer))
        except self._errors as e:
            raise StoreError(f"Failed to read {self._url}: {e}") from e
        n = len(data)
        buffer[:n] = data
        return n

    def close(self) -> None:
        if not self.closed:
            # Azure download streams have nothing to close
            close = getattr(self._body, "close", None)
            if close is not None:
                close()
        super().close()
