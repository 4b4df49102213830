"""Azure Blob Storage bucket driver backed by azure-storage-blob."""

import io
from collections.abc import Iterator
from typing import Any, BinaryIO

from azure.core.credentials import AzureNamedKeyCredential
from azure.core.exceptions import AzureError
from azure.storage.blob import ContainerClient

from restore_agent.core.errors import StoreError
from restore_agent.core.logging import get_logger
from restore_agent.storage.base import BucketURI, ObjectInfo, ObjectReader, secret_value

logger = get_logger(__name__)

# Secret keys understood by this driver
STORAGE_ACCOUNT = "storage-account"
STORAGE_KEY = "storage-key"
ENDPOINT = "endpoint"

_PAGE_SIZE = 1000


class AzureBlobStore:
    """A container (optionally narrowed to a prefix) in Azure Blob Storage."""

    def __init__(self, client: Any, container: str, prefix: str = "") -> None:
        """Initialize the Azure store.

        Args:
            client: azure.storage.blob ContainerClient
            container: Container name
            prefix: Key prefix, empty or ending in ``/``
        """
        self.client = client
        self.container = container
        self.prefix = prefix

    def list_objects(self) -> Iterator[ObjectInfo]:
        """List every blob under the prefix, page by page.

        Raises:
            StoreError: If a page cannot be fetched
        """
        try:
            for blob in self.client.list_blobs(
                name_starts_with=self.prefix or None, results_per_page=_PAGE_SIZE
            ):
                key = blob.name[len(self.prefix) :]
                if not key:
                    continue
                yield ObjectInfo(key=key, size=blob.size or 0, modified=blob.last_modified)
        except AzureError as e:
            raise StoreError(f"Failed to list azblob://{self.container}/{self.prefix}: {e}") from e

    def open_reader(self, key: str) -> BinaryIO:
        """Start streaming a blob.

        Raises:
            StoreError: If the blob cannot be fetched
        """
        full_key = self.prefix + key
        url = f"azblob://{self.container}/{full_key}"
        try:
            downloader = self.client.download_blob(full_key)
        except AzureError as e:
            raise StoreError(f"Failed to open {url}: {e}") from e

        return io.BufferedReader(ObjectReader(url, downloader, (AzureError,)))

    def close(self) -> None:
        """Close the underlying HTTP pipeline."""
        self.client.close()
        logger.debug("Closed bucket", bucket=self.container)


def open_azure_store(uri: BucketURI, credentials: dict[str, bytes]) -> AzureBlobStore:
    """Open an Azure Blob Storage container.

    The bucket part of the URI is the container. The storage account comes
    from the secret, or from the ``account`` query parameter. The
    ``endpoint`` parameter replaces the public account URL, e.g. for Azurite.
    Without a storage key the container is accessed anonymously.

    Args:
        uri: Parsed bucket URI
        credentials: Secret data with the keys listed at the top of this module

    Returns:
        Opened Azure store

    Raises:
        StoreError: If no account is known or the client cannot be created
    """
    account = uri.params.get("account") or secret_value(credentials, STORAGE_ACCOUNT)
    key = secret_value(credentials, STORAGE_KEY)
    endpoint = uri.params.get(ENDPOINT)

    if not endpoint:
        if not account:
            raise StoreError(f"Failed to open bucket {uri}: no storage account configured")
        endpoint = f"https://{account}.blob.core.windows.net"

    credential = AzureNamedKeyCredential(account, key) if account and key else None

    try:
        client = ContainerClient(endpoint, uri.bucket, credential=credential)
    except (AzureError, ValueError) as e:
        raise StoreError(f"Failed to open bucket {uri}: {e}") from e

    logger.debug("Opened bucket", bucket=uri.bucket, prefix=uri.prefix, account=account or "")
    return AzureBlobStore(client, uri.bucket, uri.prefix)
