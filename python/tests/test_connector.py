"""
Connector Tests - Verify S3 access through a mocked boto3 client.

Tests:
- Pagination is followed and timestamps converted to ms
- Connection errors surface as StoreConnectionError
- Download and metadata errors surface as FetchError
- Resource URL building
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from s3feed.config import FeedConfig
from s3feed.connector import S3Connector, is_dns_bucket_name
from s3feed.errors import FetchError, StoreConnectionError


def client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


@pytest.fixture
def s3_config(temp_dir) -> FeedConfig:
    return FeedConfig(bucket="test-bucket", path_prefix="dir/", db_path=temp_dir / "s3.db")


@pytest.fixture
def client() -> MagicMock:
    return MagicMock()


class TestListObjects:
    """Tests for paginated listing."""

    def test_follows_pages(self, s3_config, client):
        when = datetime(2024, 1, 1, tzinfo=timezone.utc)
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "dir/a.pdf", "LastModified": when, "Size": 3}]},
            {"Contents": [{"Key": "dir/b.pdf", "LastModified": when, "Size": 4}]},
            {},
        ]
        client.get_paginator.return_value = paginator
        connector = S3Connector(s3_config, client=client)

        summaries = list(connector.list_objects("test-bucket", "dir/"))

        client.get_paginator.assert_called_once_with("list_objects_v2")
        paginator.paginate.assert_called_once_with(Bucket="test-bucket", Prefix="dir/")
        assert [s.key for s in summaries] == ["dir/a.pdf", "dir/b.pdf"]
        assert summaries[0].last_modified == int(when.timestamp() * 1000)
        assert summaries[1].size == 4
        assert summaries[0].bucket == "test-bucket"

    def test_page_error_propagates(self, s3_config, client):
        """A failing page is not swallowed by the connector."""
        paginator = MagicMock()
        paginator.paginate.side_effect = client_error("AccessDenied", "ListObjectsV2")
        client.get_paginator.return_value = paginator
        connector = S3Connector(s3_config, client=client)

        with pytest.raises(ClientError):
            list(connector.list_objects("test-bucket", "dir/"))


class TestConnect:
    """Tests for the startup check."""

    def test_connect_ok(self, s3_config, client):
        connector = S3Connector(s3_config, client=client)
        connector.connect()
        client.get_bucket_location.assert_called_once_with(Bucket="test-bucket")

    def test_connect_failure(self, s3_config, client):
        client.get_bucket_location.side_effect = client_error("NoSuchBucket", "GetBucketLocation")
        connector = S3Connector(s3_config, client=client)

        with pytest.raises(StoreConnectionError):
            connector.connect()


class TestDownload:
    """Tests for object download and metadata."""

    def test_get_bytes(self, s3_config, client):
        body = MagicMock()
        body.read.return_value = b"content"
        client.get_object.return_value = {"Body": body}
        connector = S3Connector(s3_config, client=client)

        assert connector.get_bytes("dir/a.pdf") == b"content"
        client.get_object.assert_called_once_with(Bucket="test-bucket", Key="dir/a.pdf")
        body.close.assert_called_once()

    def test_get_bytes_failure(self, s3_config, client):
        client.get_object.side_effect = client_error("NoSuchKey", "GetObject")
        connector = S3Connector(s3_config, client=client)

        with pytest.raises(FetchError) as exc_info:
            connector.get_bytes("dir/gone.pdf")
        assert exc_info.value.key == "dir/gone.pdf"

    def test_user_metadata(self, s3_config, client):
        client.head_object.return_value = {"Metadata": {"author": "ops"}}
        connector = S3Connector(s3_config, client=client)

        assert connector.get_user_metadata("dir/a.pdf") == {"author": "ops"}

    def test_user_metadata_failure(self, s3_config, client):
        client.head_object.side_effect = client_error("403", "HeadObject")
        connector = S3Connector(s3_config, client=client)

        with pytest.raises(FetchError):
            connector.get_user_metadata("dir/a.pdf")


class TestResolveUrl:
    """Tests for resource URLs."""

    def test_virtual_hosted_on_aws(self, s3_config, client):
        connector = S3Connector(s3_config, client=client)
        assert connector.resolve_url("test-bucket", "dir/a.pdf") == "https://test-bucket.s3.amazonaws.com/dir/a.pdf"

    def test_path_style_for_non_dns_bucket(self, s3_config, client):
        connector = S3Connector(s3_config, client=client)
        assert connector.resolve_url("My_Bucket", "a.pdf") == "https://s3.amazonaws.com/My_Bucket/a.pdf"

    def test_custom_endpoint_and_quoting(self, temp_dir, client):
        config = FeedConfig(bucket="b", endpoint_url="http://localhost:9000/", db_path=temp_dir / "s3.db")
        connector = S3Connector(config, client=client)

        assert connector.resolve_url("b", "my docs/a b.pdf") == "http://localhost:9000/b/my%20docs/a%20b.pdf"

    def test_empty_key(self, s3_config, client):
        assert S3Connector(s3_config, client=client).resolve_url("test-bucket", "") is None

    @pytest.mark.parametrize("bucket", ["test-bucket", "my.bucket.logs", "abc", "a1-b2"])
    def test_dns_bucket_names(self, bucket):
        assert is_dns_bucket_name(bucket)

    @pytest.mark.parametrize(
        "bucket", ["ab", "My_Bucket", "UPPER", "-lead", "trail-", "a..b", "a.-b", "192.168.1.1", "x" * 64]
    )
    def test_non_dns_bucket_names(self, bucket):
        assert not is_dns_bucket_name(bucket)
