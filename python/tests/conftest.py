"""
Test Configuration - Shared fixtures for feed tests.

Uses pytest fixtures to create isolated test environments: a temporary
SQLite index and an in-memory object store standing in for S3.
"""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, Iterator, List, Optional, Set

import pytest

from s3feed.config import FeedConfig, set_config
from s3feed.errors import ExtractError, FetchError, StoreConnectionError
from s3feed.indexer import SqliteIndex
from s3feed.models import ObjectSummary


class FakeStore:
    """In-memory object store with switchable failures."""

    def __init__(self, bucket: str = "test-bucket"):
        self.bucket = bucket
        self.objects: Dict[str, tuple[bytes, int]] = {}
        self.user_metadata: Dict[str, Dict[str, str]] = {}
        self.failing_keys: Set[str] = set()
        self.fail_listing = False
        self.fail_connect = False
        self.failing_metadata: Set[str] = set()
        self.connected = False
        self.list_calls = 0

    def put(self, key: str, data: bytes, last_modified: int, metadata: Optional[dict] = None):
        self.objects[key] = (data, last_modified)
        if metadata:
            self.user_metadata[key] = metadata

    def remove(self, key: str):
        self.objects.pop(key, None)

    def connect(self) -> None:
        if self.fail_connect:
            raise StoreConnectionError(f"Cannot connect to bucket {self.bucket}")
        self.connected = True

    def list_objects(self, bucket: str, prefix: str) -> Iterator[ObjectSummary]:
        self.list_calls += 1
        if self.fail_listing:
            raise ConnectionError("listing page failed")
        for key in sorted(self.objects):
            if key.startswith(prefix or ""):
                data, last_modified = self.objects[key]
                yield ObjectSummary(key=key, last_modified=last_modified, size=len(data), bucket=bucket)

    def get_bytes(self, key: str) -> bytes:
        if key in self.failing_keys or key not in self.objects:
            raise FetchError(key, f"boom on {key}")
        return self.objects[key][0]

    def resolve_url(self, bucket: str, key: str) -> Optional[str]:
        return f"https://{bucket}.s3.amazonaws.com/{key}"

    def get_user_metadata(self, key: str) -> Dict[str, str]:
        if key in self.failing_metadata:
            raise FetchError(key, f"Cannot read metadata of {key}")
        return dict(self.user_metadata.get(key, {}))


class FakeExtractor:
    """Decodes bytes as text; names listed in failing_names raise."""

    def __init__(self):
        self.failing_names: Set[str] = set()
        self.calls: List[str] = []

    def extract(self, data: bytes, name: str):
        self.calls.append(name)
        if name in self.failing_names:
            raise ExtractError(name)
        return data.decode("utf-8"), {"content_length": len(data)}


class StepClock:
    """Clock returning increasing ms values, one step per call."""

    def __init__(self, start: int = 1_000, step: int = 1_000):
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="s3feed_test_")
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> FeedConfig:
    """Create an isolated test configuration."""
    config = FeedConfig(
        feed_name="testfeed",
        bucket="test-bucket",
        path_prefix="",
        update_rate_ms=50,
        bulk_size=10,
        db_path=temp_dir / "test.db",
    )
    set_config(config)
    return config


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def index(test_config) -> Generator[SqliteIndex, None, None]:
    """SQLite index in the temp directory."""
    idx = SqliteIndex(test_config)
    yield idx
    idx.close()
