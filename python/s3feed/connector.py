"""
Connector - Amazon S3 access for one feed.

Wraps a boto3 client behind the small set of calls the sync engine
needs: connect, list, download, resolve a URL, read user metadata.
"""

import logging
import re
from datetime import datetime
from typing import Dict, Iterator, Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import get_config, FeedConfig
from .errors import FetchError, StoreConnectionError
from .models import ObjectSummary


logger = logging.getLogger(__name__)


DEFAULT_HOST = "s3.amazonaws.com"
DEFAULT_ENDPOINT = f"https://{DEFAULT_HOST}"

_DNS_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$")
_IP_ADDRESS_RE = re.compile(r"^\d+\.\d+\.\d+\.\d+$")


def is_dns_bucket_name(bucket: str) -> bool:
    """True if the bucket name can be used as a host name label."""
    if not bucket or not _DNS_BUCKET_RE.match(bucket):
        return False
    if ".." in bucket or ".-" in bucket or "-." in bucket:
        return False
    return not _IP_ADDRESS_RE.match(bucket)


class ObjectStore(Protocol):
    """Object store capability consumed by the scanner and writer."""

    def connect(self) -> None: ...

    def list_objects(self, bucket: str, prefix: str) -> Iterator[ObjectSummary]: ...

    def get_bytes(self, key: str) -> bytes: ...

    def resolve_url(self, bucket: str, key: str) -> Optional[str]: ...

    def get_user_metadata(self, key: str) -> Dict[str, str]: ...


class S3Connector:
    """
    Query and download objects from an S3 bucket.

    Uses explicit access/secret keys when configured, otherwise the
    default boto3 credential chain (environment, profile, IAM role).
    """

    def __init__(self, config: FeedConfig | None = None, client=None):
        self.config = config or get_config()
        self.bucket = self.config.bucket
        self.prefix = self.config.path_prefix
        self._client = client

    def _get_client(self):
        """Get or create the S3 client."""
        if self._client is None:
            if self.config.access_key and self.config.secret_key:
                session = boto3.Session(
                    aws_access_key_id=self.config.access_key,
                    aws_secret_access_key=self.config.secret_key,
                    region_name=self.config.region,
                )
            else:
                if self.config.use_iam_role:
                    logger.debug("Using IAM role credentials from the default chain")
                session = boto3.Session(region_name=self.config.region)
            self._client = session.client(
                "s3",
                region_name=self.config.region,
                endpoint_url=self.config.endpoint_url,
                config=BotoConfig(
                    connect_timeout=self.config.request_timeout_s,
                    read_timeout=self.config.request_timeout_s,
                    retries={"max_attempts": 5, "mode": "standard"},
                ),
            )
        return self._client

    def connect(self) -> None:
        """
        Check credentials and bucket by asking for the bucket location.

        Raises:
            StoreConnectionError: keys are wrong or the bucket does not exist
        """
        try:
            self._get_client().get_bucket_location(Bucket=self.bucket)
        except (ClientError, BotoCoreError) as e:
            raise StoreConnectionError(
                f"Cannot connect to bucket {self.bucket}: {e}"
            ) from e
        logger.info(f"Connected to bucket {self.bucket} (prefix '{self.prefix}')")

    def list_objects(self, bucket: str, prefix: str) -> Iterator[ObjectSummary]:
        """
        Yield every object under the prefix, following pagination.

        Errors from any page propagate to the caller.
        """
        paginator = self._get_client().get_paginator("list_objects_v2")
        pages = paginator.paginate(Bucket=bucket, Prefix=prefix or "")
        for page in pages:
            contents = page.get("Contents", [])
            logger.debug(f"Found {len(contents)} items in this listObjects page")
            for obj in contents:
                yield ObjectSummary(
                    key=obj["Key"],
                    last_modified=_to_millis(obj["LastModified"]),
                    size=obj.get("Size", 0),
                    bucket=bucket,
                )

    def get_bytes(self, key: str) -> bytes:
        """Download an object as bytes."""
        logger.debug(f"Downloading file content from {key}")
        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except (ClientError, BotoCoreError, OSError) as e:
            raise FetchError(key, f"Cannot download {key}: {e}") from e

    def resolve_url(self, bucket: str, key: str) -> Optional[str]:
        """
        Resource URL of an object (access still needs credentials).

        Virtual-hosted ('https://<bucket>.s3.amazonaws.com/<key>') for
        DNS-compatible bucket names on AWS, path-style otherwise or when a
        custom endpoint is configured.
        """
        if not key:
            return None
        quoted = quote(key, safe="/")
        if self.config.endpoint_url is None and is_dns_bucket_name(bucket):
            return f"https://{bucket}.{DEFAULT_HOST}/{quoted}"
        base = (self.config.endpoint_url or DEFAULT_ENDPOINT).rstrip("/")
        return f"{base}/{bucket}/{quoted}"

    def get_user_metadata(self, key: str) -> Dict[str, str]:
        """User-defined (x-amz-meta-*) metadata of an object."""
        try:
            response = self._get_client().head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise FetchError(key, f"Cannot read metadata of {key}: {e}") from e
        return dict(response.get("Metadata") or {})


def _to_millis(value) -> int:
    """Convert a boto3 LastModified value to ms since epoch."""
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)
