"""Unit tests for bucket URIs, drivers and the driver registry."""

import io
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from azure.core.exceptions import ResourceNotFoundError
from botocore.exceptions import ClientError
from google.api_core.exceptions import Forbidden

from restore_agent.core.errors import StoreError
from restore_agent.storage.azblob import AzureBlobStore, open_azure_store
from restore_agent.storage.base import (
    BlobStore,
    BucketURI,
    ObjectReader,
    parse_bucket_uri,
    secret_value,
)
from restore_agent.storage.factory import StoreRegistry, default_registry
from restore_agent.storage.local import LocalStore, open_local_store
from restore_agent.storage.gcs import GCSStore, open_gcs_store
from restore_agent.storage.s3 import S3Store, open_s3_store


def _client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, operation)


class TestParseBucketURI:
    """Tests for parse_bucket_uri function."""

    def test_bucket_only(self) -> None:
        assert parse_bucket_uri("s3://backups") == BucketURI(scheme="s3", bucket="backups")

    def test_bucket_with_prefix(self) -> None:
        """Test that the prefix gets a single trailing slash."""
        uri = parse_bucket_uri("s3://backups/hazelcast/cluster/")
        assert uri.bucket == "backups"
        assert uri.prefix == "hazelcast/cluster/"

    def test_query_params(self) -> None:
        uri = parse_bucket_uri("s3://backups/x?region=eu-west-1&endpoint=http://minio:9000")
        assert uri.params == {"region": "eu-west-1", "endpoint": "http://minio:9000"}

    def test_scheme_lowercased(self) -> None:
        assert parse_bucket_uri("S3://backups").scheme == "s3"

    def test_file_uri(self) -> None:
        uri = parse_bucket_uri("file:///data/backups/")
        assert uri.scheme == "file"
        assert uri.bucket == "/data/backups"
        assert uri.prefix == ""

    def test_str(self) -> None:
        assert str(parse_bucket_uri("s3://backups/a/b")) == "s3://backups/a/b"
        assert str(parse_bucket_uri("file:///data/backups")) == "file:///data/backups"

    def test_missing_scheme(self) -> None:
        with pytest.raises(StoreError, match="no scheme"):
            parse_bucket_uri("backups/path")

    def test_missing_bucket(self) -> None:
        with pytest.raises(StoreError, match="no bucket name"):
            parse_bucket_uri("s3:///path")


class TestStoreRegistry:
    """Tests for StoreRegistry."""

    def test_default_schemes(self) -> None:
        assert default_registry().schemes() == ["azblob", "file", "gs", "s3"]

    def test_open_dispatches_by_scheme(self) -> None:
        """Test that the opener for the URI scheme gets the parsed URI and credentials."""
        store = Mock()
        opener = Mock(return_value=store)
        registry = StoreRegistry()
        registry.register("mem", opener)

        result = registry.open("mem://bucket/prefix", {"k": b"v"})

        assert result is store
        opener.assert_called_once_with(
            BucketURI(scheme="mem", bucket="bucket", prefix="prefix/"), {"k": b"v"}
        )

    def test_unknown_scheme(self) -> None:
        """Test that an unknown scheme names the supported ones."""
        with pytest.raises(StoreError, match="Supported schemes: azblob, file, gs, s3"):
            default_registry().open("ftp://bucket", {})

    def test_duplicate_registration(self) -> None:
        registry = StoreRegistry()
        registry.register("s3", Mock())
        with pytest.raises(ValueError, match="already registered"):
            registry.register("S3", Mock())


class TestLocalStore:
    """Tests for the file:// driver."""

    def test_list_objects(self, bucket_dir: Path) -> None:
        """Test that keys are relative POSIX paths in sorted order."""
        (bucket_dir / "2024-01-01-00-00-00").mkdir()
        (bucket_dir / "2024-01-01-00-00-00" / "b.tar.gz").write_bytes(b"bb")
        (bucket_dir / "a.tar.gz").write_bytes(b"a")

        objects = list(LocalStore(bucket_dir).list_objects())

        assert [o.key for o in objects] == ["2024-01-01-00-00-00/b.tar.gz", "a.tar.gz"]
        assert [o.size for o in objects] == [2, 1]

    def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(StoreError, match="does not exist"):
            list(LocalStore(tmp_path / "missing").list_objects())

    def test_open_reader(self, bucket_dir: Path) -> None:
        (bucket_dir / "a.tar.gz").write_bytes(b"content")
        with LocalStore(bucket_dir).open_reader("a.tar.gz") as reader:
            assert reader.read() == b"content"

    def test_open_missing(self, bucket_dir: Path) -> None:
        with pytest.raises(StoreError, match="Failed to open"):
            LocalStore(bucket_dir).open_reader("missing.tar.gz")

    def test_open_local_store(self, bucket_dir: Path) -> None:
        store = open_local_store(parse_bucket_uri(f"file://{bucket_dir}"), {})
        assert isinstance(store, BlobStore)
        assert store.root == bucket_dir


class TestS3Store:
    """Tests for the s3:// driver."""

    def _client(self, pages: list[dict]) -> Mock:
        client = Mock()
        client.get_paginator.return_value.paginate.return_value = pages
        return client

    def test_list_strips_prefix(self) -> None:
        """Test that listed keys are relative to the prefix."""
        client = self._client(
            [
                {"Contents": [{"Key": "hz/", "Size": 0}, {"Key": "hz/a.tar.gz", "Size": 3}]},
                {"Contents": [{"Key": "hz/2024-01-01-00-00-00/b.tar.gz", "Size": 4}]},
                {},
            ]
        )
        store = S3Store(client, "bucket", "hz/")

        keys = [o.key for o in store.list_objects()]

        assert keys == ["a.tar.gz", "2024-01-01-00-00-00/b.tar.gz"]
        client.get_paginator.assert_called_once_with("list_objects_v2")
        paginate_kwargs = client.get_paginator.return_value.paginate.call_args.kwargs
        assert paginate_kwargs["Bucket"] == "bucket"
        assert paginate_kwargs["Prefix"] == "hz/"

    def test_list_error(self) -> None:
        """Test that a failing page surfaces as StoreError."""

        def pages():  # type: ignore[no-untyped-def]
            yield {"Contents": [{"Key": "a.tar.gz", "Size": 1}]}
            raise _client_error("ListObjectsV2")

        client = Mock()
        client.get_paginator.return_value.paginate.return_value = pages()
        store = S3Store(client, "bucket")

        with pytest.raises(StoreError, match="Failed to list"):
            list(store.list_objects())

    def test_open_reader(self) -> None:
        """Test that the object body is streamed with the prefix applied."""
        client = Mock()
        client.get_object.return_value = {"Body": io.BytesIO(b"archive bytes")}
        store = S3Store(client, "bucket", "hz/")

        with store.open_reader("a.tar.gz") as reader:
            assert reader.read() == b"archive bytes"

        client.get_object.assert_called_once_with(Bucket="bucket", Key="hz/a.tar.gz")

    def test_open_reader_error(self) -> None:
        client = Mock()
        client.get_object.side_effect = _client_error("GetObject")

        with pytest.raises(StoreError, match="Failed to open s3://bucket/a.tar.gz"):
            S3Store(client, "bucket").open_reader("a.tar.gz")

    def test_read_error(self) -> None:
        """Test that errors while streaming become StoreError."""
        body = Mock()
        body.read.side_effect = _client_error("GetObject")
        client = Mock()
        client.get_object.return_value = {"Body": body}

        with S3Store(client, "bucket").open_reader("a.tar.gz") as reader:
            with pytest.raises(StoreError, match="Failed to read"):
                reader.read()

    def test_close(self) -> None:
        client = Mock()
        S3Store(client, "bucket").close()
        client.close.assert_called_once()

    def test_open_s3_store_credentials(self) -> None:
        """Test that secret data and URI params configure the boto3 session."""
        uri = parse_bucket_uri("s3://bucket/hz?region=eu-west-1")
        credentials = {
            "access-key-id": b"AKIA",
            "secret-access-key": b"secret\n",
            "region": b"us-east-1",
            "endpoint": b"http://minio:9000",
        }

        with patch("restore_agent.storage.s3.boto3.Session") as session_cls:
            store = open_s3_store(uri, credentials)

        session_cls.assert_called_once_with(
            aws_access_key_id="AKIA",
            aws_secret_access_key="secret",
            aws_session_token=None,
            region_name="eu-west-1",
        )
        client_kwargs = session_cls.return_value.client.call_args.kwargs
        assert client_kwargs["endpoint_url"] == "http://minio:9000"
        assert store.bucket == "bucket"
        assert store.prefix == "hz/"

    def test_open_s3_store_ambient_credentials(self) -> None:
        with patch("restore_agent.storage.s3.boto3.Session") as session_cls:
            open_s3_store(parse_bucket_uri("s3://bucket"), {})

        session_cls.assert_called_once_with(
            aws_access_key_id=None,
            aws_secret_access_key=None,
            aws_session_token=None,
            region_name=None,
        )


class TestSecretValue:
    """Tests for secret_value function."""

    def test_decodes_and_strips(self) -> None:
        assert secret_value({"k": b" value\n"}, "k") == "value"

    @pytest.mark.parametrize("credentials", [{}, {"k": b""}, {"k": b"\n"}])
    def test_missing_or_blank(self, credentials: dict[str, bytes]) -> None:
        assert secret_value(credentials, "k") is None


class TestObjectReader:
    """Tests for ObjectReader."""

    def test_reads_body(self) -> None:
        reader = io.BufferedReader(ObjectReader("mem://k", io.BytesIO(b"data"), (KeyError,)))
        assert reader.read() == b"data"

    def test_maps_sdk_errors(self) -> None:
        body = Mock()
        body.read.side_effect = KeyError("gone")
        with io.BufferedReader(ObjectReader("mem://k", body, (KeyError,))) as reader:
            with pytest.raises(StoreError, match="Failed to read mem://k"):
                reader.read()
        body.close.assert_called_once()

    def test_body_without_close(self) -> None:
        """Test that bodies lacking close() are accepted."""
        body = Mock(spec=["read"])
        ObjectReader("mem://k", body, (KeyError,)).close()


class TestGCSStore:
    """Tests for the gs:// driver."""

    def _blob(self, name: str, size: int = 1) -> Mock:
        blob = Mock()
        blob.name = name
        blob.size = size
        return blob

    def test_list_strips_prefix(self) -> None:
        """Test that listed keys are relative to the prefix."""
        client = Mock()
        client.list_blobs.return_value = [
            self._blob("hz/", 0),
            self._blob("hz/a.tar.gz", 3),
            self._blob("hz/2024-01-01-00-00-00/b.tar.gz", 4),
        ]
        store = GCSStore(client, "bucket", "hz/")

        objects = list(store.list_objects())

        assert [o.key for o in objects] == ["a.tar.gz", "2024-01-01-00-00-00/b.tar.gz"]
        assert [o.size for o in objects] == [3, 4]
        assert client.list_blobs.call_args.args == ("bucket",)
        assert client.list_blobs.call_args.kwargs["prefix"] == "hz/"

    def test_list_error(self) -> None:
        client = Mock()
        client.list_blobs.side_effect = Forbidden("denied")

        with pytest.raises(StoreError, match="Failed to list gs://bucket/"):
            list(GCSStore(client, "bucket").list_objects())

    def test_open_reader(self) -> None:
        """Test that the blob is streamed with the prefix applied."""
        client = Mock()
        blob = client.bucket.return_value.get_blob.return_value
        blob.open.return_value = io.BytesIO(b"archive bytes")

        with GCSStore(client, "bucket", "hz/").open_reader("a.tar.gz") as reader:
            assert reader.read() == b"archive bytes"

        client.bucket.assert_called_once_with("bucket")
        client.bucket.return_value.get_blob.assert_called_once_with("hz/a.tar.gz")
        assert blob.open.call_args.args == ("rb",)

    def test_open_missing(self) -> None:
        client = Mock()
        client.bucket.return_value.get_blob.return_value = None

        with pytest.raises(StoreError, match="no such object"):
            GCSStore(client, "bucket").open_reader("a.tar.gz")

    def test_open_error(self) -> None:
        client = Mock()
        client.bucket.return_value.get_blob.side_effect = Forbidden("denied")

        with pytest.raises(StoreError, match="Failed to open gs://bucket/a.tar.gz"):
            GCSStore(client, "bucket").open_reader("a.tar.gz")

    def test_read_error(self) -> None:
        """Test that errors while streaming become StoreError."""
        client = Mock()
        body = client.bucket.return_value.get_blob.return_value.open.return_value
        body.read.side_effect = Forbidden("denied")

        with GCSStore(client, "bucket").open_reader("a.tar.gz") as reader:
            with pytest.raises(StoreError, match="Failed to read"):
                reader.read()

    def test_close(self) -> None:
        client = Mock()
        GCSStore(client, "bucket").close()
        client.close.assert_called_once()

    def test_open_gcs_store_service_account(self) -> None:
        """Test that the secret's service account key configures the client."""
        key = b'{"type": "service_account", "project_id": "backups-prj"}'

        with (
            patch("restore_agent.storage.gcs.storage.Client") as client_cls,
            patch(
                "restore_agent.storage.gcs.service_account.Credentials.from_service_account_info"
            ) as from_info,
        ):
            store = open_gcs_store(
                parse_bucket_uri("gs://bucket/hz"), {"google-credentials-path": key}
            )

        from_info.assert_called_once_with({"type": "service_account", "project_id": "backups-prj"})
        client_cls.assert_called_once_with(
            project="backups-prj", credentials=from_info.return_value, client_options=None
        )
        assert store.bucket == "bucket"
        assert store.prefix == "hz/"

    def test_open_gcs_store_ambient_credentials(self) -> None:
        with patch("restore_agent.storage.gcs.storage.Client") as client_cls:
            open_gcs_store(parse_bucket_uri("gs://bucket?endpoint=http://fake-gcs:4443"), {})

        client_cls.assert_called_once_with(
            project=None,
            credentials=None,
            client_options={"api_endpoint": "http://fake-gcs:4443"},
        )

    @pytest.mark.parametrize("key", [b"not json", b"[1, 2]"])
    def test_open_gcs_store_malformed_key(self, key: bytes) -> None:
        with pytest.raises(StoreError, match="Failed to open bucket gs://bucket"):
            open_gcs_store(parse_bucket_uri("gs://bucket"), {"google-credentials-path": key})


class TestAzureBlobStore:
    """Tests for the azblob:// driver."""

    def _blob(self, name: str, size: int = 1) -> Mock:
        blob = Mock()
        blob.name = name
        blob.size = size
        return blob

    def test_list_strips_prefix(self) -> None:
        """Test that listed keys are relative to the prefix."""
        client = Mock()
        client.list_blobs.return_value = [self._blob("hz/a.tar.gz", 3), self._blob("hz/", 0)]
        store = AzureBlobStore(client, "container", "hz/")

        assert [o.key for o in store.list_objects()] == ["a.tar.gz"]
        assert client.list_blobs.call_args.kwargs["name_starts_with"] == "hz/"

    def test_list_error(self) -> None:
        client = Mock()
        client.list_blobs.side_effect = ResourceNotFoundError("no container")

        with pytest.raises(StoreError, match="Failed to list azblob://container/"):
            list(AzureBlobStore(client, "container").list_objects())

    def test_open_reader(self) -> None:
        client = Mock()
        client.download_blob.return_value = io.BytesIO(b"archive bytes")

        with AzureBlobStore(client, "container", "hz/").open_reader("a.tar.gz") as reader:
            assert reader.read() == b"archive bytes"

        client.download_blob.assert_called_once_with("hz/a.tar.gz")

    def test_open_error(self) -> None:
        client = Mock()
        client.download_blob.side_effect = ResourceNotFoundError("no blob")

        with pytest.raises(StoreError, match="Failed to open azblob://container/a.tar.gz"):
            AzureBlobStore(client, "container").open_reader("a.tar.gz")

    def test_read_error(self) -> None:
        client = Mock()
        client.download_blob.return_value.read.side_effect = ResourceNotFoundError("gone")

        with AzureBlobStore(client, "container").open_reader("a.tar.gz") as reader:
            with pytest.raises(StoreError, match="Failed to read"):
                reader.read()

    def test_close(self) -> None:
        client = Mock()
        AzureBlobStore(client, "container").close()
        client.close.assert_called_once()

    def test_open_azure_store_shared_key(self) -> None:
        """Test that the secret's account and key configure the client."""
        credentials = {"storage-account": b"backupacct", "storage-key": b"a2V5\n"}

        with (
            patch("restore_agent.storage.azblob.ContainerClient") as client_cls,
            patch("restore_agent.storage.azblob.AzureNamedKeyCredential") as key_cls,
        ):
            store = open_azure_store(parse_bucket_uri("azblob://container/hz"), credentials)

        key_cls.assert_called_once_with("backupacct", "a2V5")
        client_cls.assert_called_once_with(
            "https://backupacct.blob.core.windows.net",
            "container",
            credential=key_cls.return_value,
        )
        assert store.container == "container"
        assert store.prefix == "hz/"

    def test_open_azure_store_endpoint_override(self) -> None:
        uri = parse_bucket_uri("azblob://container?endpoint=http://azurite:10000/devstoreaccount1")

        with patch("restore_agent.storage.azblob.ContainerClient") as client_cls:
            open_azure_store(uri, {})

        client_cls.assert_called_once_with(
            "http://azurite:10000/devstoreaccount1", "container", credential=None
        )

    def test_open_azure_store_without_account(self) -> None:
        with pytest.raises(StoreError, match="no storage account"):
            open_azure_store(parse_bucket_uri("azblob://container"), {})
