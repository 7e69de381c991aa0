"""
Writer Tests - Verify per-object document writes.

Tests:
- Extract mode builds title/date/url/file/metadata fields
- Raw mode passes bytes through
- Fetch and extraction failures skip the object
- Download host rewriting
"""

from unittest.mock import MagicMock

import pytest

from s3feed.batch import BatchAccumulator
from s3feed.config import FeedConfig
from s3feed.connector import S3Connector
from s3feed.models import ObjectSummary, SkipReason
from s3feed.writer import (
    DocumentWriter,
    ExtractedBodyBuilder,
    RawBodyBuilder,
    make_body_builder,
    rewrite_download_url,
)


@pytest.fixture
def batch(index, test_config) -> BatchAccumulator:
    return BatchAccumulator(index, test_config.index_name, test_config.type_name, threshold=100)


def summary(key: str, last_modified: int = 100) -> ObjectSummary:
    return ObjectSummary(key=key, last_modified=last_modified, bucket="test-bucket")


class TestRewriteDownloadUrl:
    """Tests for download host substitution."""

    def test_virtual_hosted_url(self):
        """The bucket lives in the host, so only the key path is kept."""
        url = "https://bucket.s3.amazonaws.com/dir/a.pdf"
        assert rewrite_download_url(url, "http://cdn.example.com") == "http://cdn.example.com/dir/a.pdf"

    def test_path_style_url_keeps_bucket(self):
        url = "https://s3.amazonaws.com/My_Bucket/dir/a.pdf"
        assert rewrite_download_url(url, "http://cdn.example.com") == "http://cdn.example.com/My_Bucket/dir/a.pdf"

    def test_trailing_slash_on_host(self):
        url = "https://bucket.s3.amazonaws.com/a.pdf"
        assert rewrite_download_url(url, "http://cdn.example.com/") == "http://cdn.example.com/a.pdf"

    def test_keeps_query(self):
        url = "https://bucket.s3.amazonaws.com/a.pdf?v=2"
        assert rewrite_download_url(url, "http://cdn") == "http://cdn/a.pdf?v=2"

    def test_no_host_keeps_url(self):
        url = "https://bucket.s3.amazonaws.com/a.pdf"
        assert rewrite_download_url(url, None) == url
        assert rewrite_download_url(None, "http://cdn") is None

    def test_connector_url_behind_cdn(self, temp_dir):
        """A CDN host fronting the bucket serves keys at its root."""
        config = FeedConfig(
            bucket="mybucket",
            download_host="http://d123.cloudfront.net",
            db_path=temp_dir / "x.db",
        )
        url = S3Connector(config, client=MagicMock()).resolve_url("mybucket", "dir/a.pdf")

        assert rewrite_download_url(url, config.download_host) == "http://d123.cloudfront.net/dir/a.pdf"


class TestBodyBuilder:
    """Tests for write mode selection."""

    def test_raw_mode(self, temp_dir):
        config = FeedConfig(bucket="b", raw=True, db_path=temp_dir / "x.db")
        assert isinstance(make_body_builder(config, None), RawBodyBuilder)

    def test_extract_mode(self, temp_dir, extractor):
        config = FeedConfig(bucket="b", db_path=temp_dir / "x.db")
        assert isinstance(make_body_builder(config, extractor), ExtractedBodyBuilder)

    def test_extract_mode_needs_extractor(self, temp_dir):
        config = FeedConfig(bucket="b", db_path=temp_dir / "x.db")
        with pytest.raises(ValueError):
            make_body_builder(config, None)


class TestExtractMode:
    """Tests for extracted documents."""

    def test_writes_document(self, test_config, store, extractor, batch, index):
        """A successful write queues one document with the derived id."""
        store.put("dir/a.txt", b"hello world", 100)
        writer = DocumentWriter(test_config, store, batch, extractor)

        result = writer.write(summary("dir/a.txt"))

        assert result.ok
        assert result.doc_id == "dir-a.txt"
        assert batch.pending_count == 1

        batch.flush_remainder()
        doc = index.get_document(test_config.index_name, test_config.type_name, "dir-a.txt")
        assert doc.fields["title"] == "a.txt"
        assert doc.fields["modified_date"] == 100
        assert doc.fields["source_url"] == "https://test-bucket.s3.amazonaws.com/dir/a.txt"
        assert doc.fields["file"]["content"] == "hello world"
        assert doc.fields["file"]["_name"] == "a.txt"
        assert doc.fields["metadata"]["content_length"] == 11

    def test_user_metadata_is_merged(self, test_config, store, extractor, batch):
        store.put("a.txt", b"x", 100, metadata={"author": "ops"})
        writer = DocumentWriter(test_config, store, batch, extractor)

        writer.write(summary("a.txt"))

        doc = batch._pending[0].document
        assert doc.fields["metadata"]["user"] == {"author": "ops"}

    def test_download_host_applied(self, temp_dir, store, extractor, index):
        config = FeedConfig(
            feed_name="hosted",
            bucket="test-bucket",
            download_host="http://files.example.com",
            db_path=temp_dir / "test.db",
        )
        store.put("a.txt", b"x", 100)
        batch = BatchAccumulator(index, config.index_name, config.type_name)
        writer = DocumentWriter(config, store, batch, extractor)

        writer.write(summary("a.txt"))

        doc = batch._pending[0].document
        assert doc.fields["source_url"] == "http://files.example.com/a.txt"

    def test_fetch_failure_skips(self, test_config, store, extractor, batch):
        """A download error skips the object and queues nothing."""
        store.put("a.txt", b"x", 100)
        store.failing_keys.add("a.txt")
        writer = DocumentWriter(test_config, store, batch, extractor)

        result = writer.write(summary("a.txt"))

        assert not result.ok
        assert result.skip_reason is SkipReason.FETCH_FAILED
        assert batch.pending_count == 0
        assert extractor.calls == []

    def test_extract_failure_skips(self, test_config, store, extractor, batch):
        store.put("bad.bin", b"x", 100)
        extractor.failing_names.add("bad.bin")
        writer = DocumentWriter(test_config, store, batch, extractor)

        result = writer.write(summary("bad.bin"))

        assert result.skip_reason is SkipReason.EXTRACT_FAILED
        assert batch.pending_count == 0

    def test_metadata_failure_skips_as_fetch(self, test_config, store, extractor, batch):
        """A failed user metadata lookup counts as a fetch failure."""
        store.put("a.txt", b"x", 100)
        store.failing_metadata.add("a.txt")
        writer = DocumentWriter(test_config, store, batch, extractor)

        result = writer.write(summary("a.txt"))

        assert result.skip_reason is SkipReason.FETCH_FAILED
        assert batch.pending_count == 0

    def test_unexpected_extract_error_skips(self, test_config, store, extractor, batch):
        """Non-UTF-8 bytes make the fake extractor raise UnicodeDecodeError."""
        store.put("a.txt", b"\xff\xfe\xfa", 100)
        writer = DocumentWriter(test_config, store, batch, extractor)

        result = writer.write(summary("a.txt"))

        assert result.skip_reason is SkipReason.EXTRACT_FAILED


class TestRawMode:
    """Tests for passthrough documents."""

    def test_bytes_pass_through(self, temp_dir, store, index):
        config = FeedConfig(feed_name="raw", bucket="test-bucket", raw=True, db_path=temp_dir / "test.db")
        body = b'{"title": "prebuilt"}'
        store.put("docs/one.json", body, 100)
        batch = BatchAccumulator(index, config.index_name, config.type_name)
        writer = DocumentWriter(config, store, batch)

        result = writer.write(summary("docs/one.json"))
        batch.flush_remainder()

        assert result.doc_id == "docs-one.json"
        assert index.get_document("raw", "doc", "docs-one.json").raw == body
