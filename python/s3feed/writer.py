"""
Document Writer - Turn one changed object into one index write.

Fetching, extraction and field building are all-or-nothing per object:
any failure skips the object for this cycle and is reported in the
WriteResult instead of being raised.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from .batch import BatchAccumulator
from .config import FeedConfig
from .connector import ObjectStore
from .errors import ExtractError, FetchError, handle_error
from .extractor import ContentExtractor
from .models import BatchOperation, Document, ObjectSummary, SkipReason, WriteResult, document_id


logger = logging.getLogger(__name__)


# Document field names
DOC_FIELD_TITLE = "title"
DOC_FIELD_MODIFIED_DATE = "modified_date"
DOC_FIELD_SOURCE_URL = "source_url"
DOC_FIELD_FILE = "file"
DOC_FIELD_METADATA = "metadata"


def rewrite_download_url(url: Optional[str], download_host: Optional[str]) -> Optional[str]:
    """
    Replace the scheme and host of a resource URL with a public download host.

    'https://bucket.s3.amazonaws.com/dir/a.pdf' with host 'http://cdn.example.com'
    becomes 'http://cdn.example.com/dir/a.pdf'. Path-style URLs keep the
    bucket segment, as the store would serve them.
    """
    if url is None or not download_host:
        return url
    parts = urlsplit(url)
    rest = parts.path
    if parts.query:
        rest += "?" + parts.query
    return download_host.rstrip("/") + rest


class RawBodyBuilder:
    """Passthrough mode: object bytes become the document body unchanged."""

    def build(self, writer: "DocumentWriter", summary: ObjectSummary, data: bytes) -> Document:
        return Document(id=document_id(summary.key), raw=data)


class ExtractedBodyBuilder:
    """Extract mode: text and metadata wrapped with title, date and URL fields."""

    def __init__(self, extractor: ContentExtractor):
        self.extractor = extractor

    def build(self, writer: "DocumentWriter", summary: ObjectSummary, data: bytes) -> Document:
        text, metadata = self.extractor.extract(data, summary.name)
        user_metadata = writer.store.get_user_metadata(summary.key)

        merged: Dict[str, Any] = dict(metadata)
        if user_metadata:
            merged["user"] = dict(user_metadata)

        fields = {
            DOC_FIELD_TITLE: summary.name,
            DOC_FIELD_MODIFIED_DATE: summary.last_modified,
            DOC_FIELD_SOURCE_URL: writer.download_url(summary),
            DOC_FIELD_FILE: {
                "_name": summary.name,
                "title": summary.name,
                "content": text,
            },
            DOC_FIELD_METADATA: merged,
        }
        return Document(id=document_id(summary.key), fields=fields)


def make_body_builder(config: FeedConfig, extractor: Optional[ContentExtractor]):
    """Pick the body builder for a feed (resolved once, not per object)."""
    if config.raw:
        return RawBodyBuilder()
    if extractor is None:
        raise ValueError("An extractor is required unless raw mode is enabled")
    return ExtractedBodyBuilder(extractor)


class DocumentWriter:
    """
    Fetches objects and queues them as Write operations.

    Usage:
        writer = DocumentWriter(config, store, batch, Extractor())
        result = writer.write(summary)
        if not result.ok:
            print(result.skip_reason)
    """

    def __init__(
        self,
        config: FeedConfig,
        store: ObjectStore,
        batch: BatchAccumulator,
        extractor: Optional[ContentExtractor] = None,
    ):
        self.config = config
        self.store = store
        self.batch = batch
        self._builder = make_body_builder(config, extractor)

    def download_url(self, summary: ObjectSummary) -> Optional[str]:
        """Resource URL of an object, rewritten to the download host if any."""
        url = self.store.resolve_url(summary.bucket or self.config.bucket, summary.key)
        return rewrite_download_url(url, self.config.download_host)

    def write(self, summary: ObjectSummary) -> WriteResult:
        """
        Index one object.

        Returns:
            WriteResult with the document id, or the reason it was skipped
        """
        logger.debug(f"Trying to index '{summary.key}'")

        try:
            data = self.store.get_bytes(summary.key)
        except Exception as e:
            error = e if isinstance(e, FetchError) else FetchError(summary.key, str(e))
            handle_error(error, summary.key, "fetch")
            return WriteResult.skipped(summary.key, SkipReason.FETCH_FAILED)

        try:
            document = self._builder.build(self, summary, data)
        except FetchError as e:
            # User metadata lookup is a fetch
            handle_error(e, summary.key, "metadata")
            return WriteResult.skipped(summary.key, SkipReason.FETCH_FAILED)
        except Exception as e:
            error = e if isinstance(e, ExtractError) else ExtractError(summary.name, str(e))
            handle_error(error, summary.key, "extract")
            return WriteResult.skipped(summary.key, SkipReason.EXTRACT_FAILED)

        self.batch.add(BatchOperation.write(document))
        return WriteResult.written(summary.key, document.id)
