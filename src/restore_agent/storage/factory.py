"""Registry of bucket drivers keyed by URI scheme."""

from collections.abc import Callable

from restore_agent.core.errors import StoreError
from restore_agent.core.logging import get_logger
from restore_agent.storage.azblob import open_azure_store
from restore_agent.storage.base import BlobStore, BucketURI, parse_bucket_uri
from restore_agent.storage.gcs import open_gcs_store
from restore_agent.storage.local import open_local_store
from restore_agent.storage.s3 import open_s3_store

logger = get_logger(__name__)

StoreOpener = Callable[[BucketURI, dict[str, bytes]], BlobStore]


class StoreRegistry:
    """Maps URI schemes to functions that open a store for them."""

    def __init__(self) -> None:
        self._openers: dict[str, StoreOpener] = {}

    def register(self, scheme: str, opener: StoreOpener) -> None:
        """Register a driver for a URI scheme.

        Args:
            scheme: URI scheme, e.g. ``s3``
            opener: Callable opening a store from a parsed URI and credentials

        Raises:
            ValueError: If the scheme is already registered
        """
        scheme = scheme.lower()
        if scheme in self._openers:
            raise ValueError(f"Driver for scheme '{scheme}' is already registered")
        self._openers[scheme] = opener

    def schemes(self) -> list[str]:
        """Get the registered schemes, sorted."""
        return sorted(self._openers)

    def open(self, uri: str, credentials: dict[str, bytes]) -> BlobStore:
        """Open the bucket a URI points to.

        Args:
            uri: Bucket URI
            credentials: Secret data handed to the driver

        Returns:
            Opened store; the caller must close it

        Raises:
            StoreError: If the URI is malformed or its scheme is not registered
        """
        bucket_uri = parse_bucket_uri(uri)
        opener = self._openers.get(bucket_uri.scheme)
        if opener is None:
            raise StoreError(
                f"Unsupported bucket scheme '{bucket_uri.scheme}'. "
                f"Supported schemes: {', '.join(self.schemes())}"
            )

        logger.info("Opening bucket", bucket=str(bucket_uri))
        return opener(bucket_uri, credentials)


def default_registry() -> StoreRegistry:
    """Build the registry with every driver shipped with the agent."""
    registry = StoreRegistry()
    registry.register("s3", open_s3_store)
    registry.register("gs", open_gcs_store)
    registry.register("azblob", open_azure_store)
    registry.register("file", open_local_store)
    return registry
