"""Amazon S3 (and S3-compatible) bucket driver backed by boto3."""

import io
from collections.abc import Iterator
from typing import Any, BinaryIO

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from restore_agent.core.errors import StoreError
from restore_agent.core.logging import get_logger
from restore_agent.storage.base import BucketURI, ObjectInfo, ObjectReader, secret_value

logger = get_logger(__name__)

# Secret keys understood by this driver
ACCESS_KEY_ID = "access-key-id"
SECRET_ACCESS_KEY = "secret-access-key"
SESSION_TOKEN = "session-token"
REGION = "region"
ENDPOINT = "endpoint"

_PAGE_SIZE = 1000

_BOTO_ERRORS = (BotoCoreError, ClientError)


class S3Store:
    """A bucket (optionally narrowed to a prefix) in S3."""

    def __init__(self, client: Any, bucket: str, prefix: str = "") -> None:
        """Initialize the S3 store.

        Args:
            client: boto3 S3 client
            bucket: Bucket name
            prefix: Key prefix, empty or ending in ``/``
        """
        self.client = client
        self.bucket = bucket
        self.prefix = prefix

    def list_objects(self) -> Iterator[ObjectInfo]:
        """List every object under the prefix, page by page.

        Raises:
            StoreError: If a page cannot be fetched
        """
        paginator = self.client.get_paginator("list_objects_v2")
        pages = paginator.paginate(
            Bucket=self.bucket,
            Prefix=self.prefix,
            PaginationConfig={"PageSize": _PAGE_SIZE},
        )
        try:
            for page in pages:
                for obj in page.get("Contents", []):
                    key = obj["Key"][len(self.prefix) :]
                    if not key:
                        continue
                    yield ObjectInfo(
                        key=key,
                        size=obj.get("Size", 0),
                        modified=obj.get("LastModified"),
                    )
        except _BOTO_ERRORS as e:
            raise StoreError(f"Failed to list s3://{self.bucket}/{self.prefix}: {e}") from e

    def open_reader(self, key: str) -> BinaryIO:
        """Start streaming an object.

        Raises:
            StoreError: If the object cannot be fetched
        """
        full_key = self.prefix + key
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=full_key)
        except _BOTO_ERRORS as e:
            raise StoreError(f"Failed to open s3://{self.bucket}/{full_key}: {e}") from e

        url = f"s3://{self.bucket}/{full_key}"
        return io.BufferedReader(ObjectReader(url, response["Body"], _BOTO_ERRORS))

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self.client.close()
        logger.debug("Closed bucket", bucket=self.bucket)


def open_s3_store(uri: BucketURI, credentials: dict[str, bytes]) -> S3Store:
    """Open an S3 bucket.

    URI query parameters ``region`` and ``endpoint`` take precedence over the
    values in the credentials secret. Without access keys boto3 falls back to
    its default credential chain (instance profile, environment, web identity).

    Args:
        uri: Parsed bucket URI
        credentials: Secret data with the keys listed at the top of this module

    Returns:
        Opened S3 store

    Raises:
        StoreError: If the client cannot be created
    """
    region = uri.params.get(REGION) or secret_value(credentials, REGION)
    endpoint = uri.params.get(ENDPOINT) or secret_value(credentials, ENDPOINT)

    try:
        session = boto3.Session(
            aws_access_key_id=secret_value(credentials, ACCESS_KEY_ID),
            aws_secret_access_key=secret_value(credentials, SECRET_ACCESS_KEY),
            aws_session_token=secret_value(credentials, SESSION_TOKEN),
            region_name=region,
        )
        client = session.client(
            "s3",
            endpoint_url=endpoint,
            config=BotoConfig(retries={"max_attempts": 5, "mode": "standard"}),
        )
    except (BotoCoreError, ValueError) as e:
        raise StoreError(f"Failed to open bucket {uri}: {e}") from e

    logger.debug("Opened bucket", bucket=uri.bucket, prefix=uri.prefix, region=region)
    return S3Store(client, uri.bucket, uri.prefix)
