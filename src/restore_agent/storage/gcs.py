"""Google Cloud Storage bucket driver backed by google-cloud-storage."""

import io
import json
from collections.abc import Iterator
from typing import Any, BinaryIO

from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from google.oauth2 import service_account

from restore_agent.core.errors import StoreError
from restore_agent.core.logging import get_logger
from restore_agent.storage.base import BucketURI, ObjectInfo, ObjectReader, secret_value

logger = get_logger(__name__)

# Secret key holding the service account JSON key itself, despite the name
SERVICE_ACCOUNT_KEY = "google-credentials-path"
PROJECT = "project"
ENDPOINT = "endpoint"

_PAGE_SIZE = 1000
_CHUNK_SIZE = 8 * 1024 * 1024

_GOOGLE_ERRORS = (GoogleAPIError, GoogleAuthError)


class GCSStore:
    """A bucket (optionally narrowed to a prefix) in Google Cloud Storage."""

    def __init__(self, client: Any, bucket: str, prefix: str = "") -> None:
        """Initialize the GCS store.

        Args:
            client: google.cloud.storage client
            bucket: Bucket name
            prefix: Key prefix, empty or ending in ``/``
        """
        self.client = client
        self.bucket = bucket
        self.prefix = prefix

    def list_objects(self) -> Iterator[ObjectInfo]:
        """List every blob under the prefix, page by page.

        Raises:
            StoreError: If a page cannot be fetched
        """
        try:
            for blob in self.client.list_blobs(
                self.bucket, prefix=self.prefix, page_size=_PAGE_SIZE
            ):
                key = blob.name[len(self.prefix) :]
                if not key:
                    continue
                yield ObjectInfo(key=key, size=blob.size or 0, modified=blob.updated)
        except _GOOGLE_ERRORS as e:
            raise StoreError(f"Failed to list gs://{self.bucket}/{self.prefix}: {e}") from e

    def open_reader(self, key: str) -> BinaryIO:
        """Start streaming a blob in fixed-size chunks.

        Raises:
            StoreError: If the blob does not exist or cannot be fetched
        """
        full_key = self.prefix + key
        url = f"gs://{self.bucket}/{full_key}"
        try:
            blob = self.client.bucket(self.bucket).get_blob(full_key)
            if blob is None:
                raise StoreError(f"Failed to open {url}: no such object")
            body = blob.open("rb", chunk_size=_CHUNK_SIZE)
        except _GOOGLE_ERRORS as e:
            raise StoreError(f"Failed to open {url}: {e}") from e

        return io.BufferedReader(ObjectReader(url, body, _GOOGLE_ERRORS))

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.client.close()
        logger.debug("Closed bucket", bucket=self.bucket)


def open_gcs_store(uri: BucketURI, credentials: dict[str, bytes]) -> GCSStore:
    """Open a Google Cloud Storage bucket.

    Without a service account key the client uses Application Default
    Credentials (workload identity, metadata server, environment). URI query
    parameters ``project`` and ``endpoint`` configure the client.

    Args:
        uri: Parsed bucket URI
        credentials: Secret data with the keys listed at the top of this module

    Returns:
        Opened GCS store

    Raises:
        StoreError: If the key is malformed or the client cannot be created
    """
    key_json = secret_value(credentials, SERVICE_ACCOUNT_KEY)
    project = uri.params.get(PROJECT)
    endpoint = uri.params.get(ENDPOINT)

    try:
        account_credentials = None
        if key_json:
            info = json.loads(key_json)
            if not isinstance(info, dict):
                raise ValueError("service account key is not a JSON object")
            account_credentials = service_account.Credentials.from_service_account_info(info)
            project = project or info.get("project_id")

        client = storage.Client(
            project=project,
            credentials=account_credentials,
            client_options={"api_endpoint": endpoint} if endpoint else None,
        )
    except (GoogleAuthError, ValueError) as e:
        # json.JSONDecodeError and malformed key fields are ValueErrors
        raise StoreError(f"Failed to open bucket {uri}: {e}") from e

    logger.debug("Opened bucket", bucket=uri.bucket, prefix=uri.prefix, project=project)
    return GCSStore(client, uri.bucket, uri.prefix)
