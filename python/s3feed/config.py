"""
Feed Configuration - Centralized settings for one S3 feed.

Settings come from environment variables, a river-style settings
document, or direct construction. By default a feed polls every
15 minutes and indexes every key in bulks of 100.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional

from .errors import ConfigError


DEFAULT_UPDATE_RATE_MS = 15 * 60 * 1000
DEFAULT_BULK_SIZE = 100
DEFAULT_IDS_LIMIT = 5000
INDEX_TYPE_DOC = "doc"


@dataclass
class FeedConfig:
    """
    Configuration for one feed (bucket + prefix into one index/type pair).

    index_name defaults to the feed name when left empty.
    """

    # --- Feed ---
    feed_name: str = "s3feed"
    bucket: str = ""
    path_prefix: str = ""
    download_host: Optional[str] = None
    update_rate_ms: int = DEFAULT_UPDATE_RATE_MS

    # --- Filtering ---
    includes: List[str] = field(default_factory=list)
    excludes: List[str] = field(default_factory=list)

    # --- Index ---
    index_name: str = ""
    type_name: str = INDEX_TYPE_DOC
    bulk_size: int = DEFAULT_BULK_SIZE
    indexed_ids_limit: int = DEFAULT_IDS_LIMIT  # Cap on ids read for deletions
    raw: bool = False                           # Submit object bytes unchanged

    # --- Credentials ---
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    use_iam_role: bool = False
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    request_timeout_s: float = 30.0

    # --- Local state ---
    db_path: Path = field(default_factory=lambda: Path.home() / ".s3feed" / "index.db")

    def __post_init__(self):
        """Validate settings and normalize paths."""
        if not self.index_name:
            self.index_name = self.feed_name
        self.db_path = Path(self.db_path).expanduser().resolve()
        self.includes = _clean_patterns(self.includes)
        self.excludes = _clean_patterns(self.excludes)

        if self.update_rate_ms <= 0:
            raise ConfigError(f"update_rate must be positive, got {self.update_rate_ms}")
        if self.bulk_size <= 0:
            raise ConfigError(f"bulk_size must be positive, got {self.bulk_size}")
        if self.indexed_ids_limit <= 0:
            raise ConfigError(f"ids_limit must be positive, got {self.indexed_ids_limit}")
        if bool(self.access_key) != bool(self.secret_key):
            raise ConfigError("accessKey and secretKey must be given together")

    @property
    def update_rate_seconds(self) -> float:
        return self.update_rate_ms / 1000.0

    def validate_for_run(self) -> None:
        """Check the settings needed to actually scan a bucket."""
        if not self.bucket:
            raise ConfigError(f"No bucket configured for feed {self.feed_name}")

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any], **overrides) -> "FeedConfig":
        """
        Create config from a river-style settings document.

        Expected shape:
            {
              "amazon-s3": {"name", "bucket", "pathPrefix", "download_host",
                            "update_rate", "includes", "excludes",
                            "accessKey", "secretKey", "use_iam_role", "raw"},
              "index": {"index", "type", "bulk_size", "ids_limit"}
            }
        """
        feed = settings.get("amazon-s3")
        if not isinstance(feed, Mapping):
            raise ConfigError("You didn't define the amazon-s3 settings")
        index = settings.get("index") or {}

        kwargs: dict[str, Any] = {
            "feed_name": feed.get("name") or "s3feed",
            "bucket": feed.get("bucket") or "",
            "path_prefix": feed.get("pathPrefix") or "",
            "download_host": feed.get("download_host"),
            "update_rate_ms": _as_int(feed.get("update_rate"), DEFAULT_UPDATE_RATE_MS, "update_rate"),
            "includes": parse_pattern_list(feed.get("includes")),
            "excludes": parse_pattern_list(feed.get("excludes")),
            "access_key": feed.get("accessKey"),
            "secret_key": feed.get("secretKey"),
            "use_iam_role": _as_bool(feed.get("use_iam_role")),
            "raw": _as_bool(feed.get("raw")),
            "region": feed.get("region"),
            "endpoint_url": feed.get("endpoint"),
            "index_name": index.get("index") or "",
            "type_name": index.get("type") or INDEX_TYPE_DOC,
            "bulk_size": _as_int(index.get("bulk_size"), DEFAULT_BULK_SIZE, "bulk_size"),
            "indexed_ids_limit": _as_int(index.get("ids_limit"), DEFAULT_IDS_LIMIT, "ids_limit"),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)

    @classmethod
    def from_env(cls) -> "FeedConfig":
        """
        Create config from environment variables.

        Supported env vars:
            S3FEED_NAME: Feed name (also the default index name)
            S3FEED_BUCKET: Bucket to scan
            S3FEED_PATH_PREFIX: Key prefix to scan
            S3FEED_DOWNLOAD_HOST: Public host replacing s3.amazonaws.com in URLs
            S3FEED_UPDATE_RATE: Interval between cycles in ms
            S3FEED_INCLUDES / S3FEED_EXCLUDES: Comma-separated glob patterns
            S3FEED_INDEX / S3FEED_TYPE: Target index and type
            S3FEED_BULK_SIZE: Operations per bulk request
            S3FEED_RAW: "true" to index object bytes unchanged
            S3FEED_DB_PATH: Path to the SQLite index
            AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY / AWS_DEFAULT_REGION
        """
        env = os.environ
        kwargs: dict[str, Any] = {}

        if name := env.get("S3FEED_NAME"):
            kwargs["feed_name"] = name
        if bucket := env.get("S3FEED_BUCKET"):
            kwargs["bucket"] = bucket
        if prefix := env.get("S3FEED_PATH_PREFIX"):
            kwargs["path_prefix"] = prefix
        if host := env.get("S3FEED_DOWNLOAD_HOST"):
            kwargs["download_host"] = host
        if rate := env.get("S3FEED_UPDATE_RATE"):
            kwargs["update_rate_ms"] = _as_int(rate, DEFAULT_UPDATE_RATE_MS, "S3FEED_UPDATE_RATE")
        if includes := env.get("S3FEED_INCLUDES"):
            kwargs["includes"] = parse_pattern_list(includes)
        if excludes := env.get("S3FEED_EXCLUDES"):
            kwargs["excludes"] = parse_pattern_list(excludes)
        if index := env.get("S3FEED_INDEX"):
            kwargs["index_name"] = index
        if type_name := env.get("S3FEED_TYPE"):
            kwargs["type_name"] = type_name
        if bulk := env.get("S3FEED_BULK_SIZE"):
            kwargs["bulk_size"] = _as_int(bulk, DEFAULT_BULK_SIZE, "S3FEED_BULK_SIZE")
        if raw := env.get("S3FEED_RAW"):
            kwargs["raw"] = _as_bool(raw)
        if db_path := env.get("S3FEED_DB_PATH"):
            kwargs["db_path"] = Path(db_path)
        if access_key := env.get("AWS_ACCESS_KEY_ID"):
            kwargs["access_key"] = access_key
        if secret_key := env.get("AWS_SECRET_ACCESS_KEY"):
            kwargs["secret_key"] = secret_key
        if region := env.get("AWS_DEFAULT_REGION"):
            kwargs["region"] = region

        return cls(**kwargs)


def parse_pattern_list(value: Any) -> List[str]:
    """
    Parse includes/excludes given as a list or a comma-separated string.

    Whitespace is removed and duplicates dropped, keeping first occurrence.
    """
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return _clean_patterns(items)


def _clean_patterns(items: List[str]) -> List[str]:
    seen: dict[str, None] = {}
    for item in items:
        pattern = "".join(item.split())
        if pattern:
            seen.setdefault(pattern, None)
    return list(seen)


def _as_int(value: Any, default: int, name: str) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


# Singleton default config
_default_config: FeedConfig | None = None


def get_config() -> FeedConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = FeedConfig.from_env()
    return _default_config


def set_config(config: FeedConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
