"""
Data Models - Type definitions for the sync pipeline.

These dataclasses represent the data flowing through one scan cycle,
from the bucket listing down to the bulk operations sent to the index.
"""

from dataclasses import dataclass, field
from typing import Optional, List, Tuple, FrozenSet
from enum import Enum


class FeedStatus(Enum):
    """Enable/disable flag stored for each feed."""
    STARTED = "STARTED"
    STOPPED = "STOPPED"
    UNKNOWN = "UNKNOWN"   # No status recorded yet


class OpType(Enum):
    """Kind of bulk operation."""
    WRITE = "write"
    DELETE = "delete"


class SkipReason(Enum):
    """Why an object was not indexed this cycle."""
    FETCH_FAILED = "fetch_failed"
    EXTRACT_FAILED = "extract_failed"


class CycleOutcome(Enum):
    """How a scan cycle ended."""
    COMPLETED = "completed"   # Watermark persisted (possibly with skips)
    DISABLED = "disabled"     # Feed is STOPPED, nothing done
    FAILED = "failed"         # Aborted before the watermark was persisted


def document_id(key: str) -> str:
    """Build the index id for an object key (path separators become '-')."""
    return key.replace("/", "-")


@dataclass(frozen=True)
class ObjectSummary:
    """
    One object from a bucket listing.

    last_modified is in milliseconds since epoch so it compares
    directly against the stored watermark.
    """
    key: str
    last_modified: int
    size: int = 0
    bucket: str = ""

    @property
    def name(self) -> str:
        """Last path segment of the key."""
        return self.key[self.key.rfind("/") + 1:]


@dataclass(frozen=True)
class Listing:
    """Result of listing a bucket prefix."""
    captured_at: int                       # Local clock, read before the first page
    summaries: Tuple[ObjectSummary, ...]
    all_keys: FrozenSet[str]


@dataclass(frozen=True)
class ChangeSet:
    """Objects to (re)index plus every key that currently exists."""
    changed: Tuple[ObjectSummary, ...]
    all_keys: FrozenSet[str]


@dataclass
class Document:
    """
    A document ready to be written to the index.

    Exactly one of fields (extract mode) or raw (passthrough mode) is set.
    """
    id: str
    fields: Optional[dict] = None
    raw: Optional[bytes] = None


@dataclass
class BatchOperation:
    """A single write or delete waiting in the batch."""
    op_type: OpType
    doc_id: str
    document: Optional[Document] = None

    @classmethod
    def write(cls, document: Document) -> "BatchOperation":
        return cls(op_type=OpType.WRITE, doc_id=document.id, document=document)

    @classmethod
    def delete(cls, doc_id: str) -> "BatchOperation":
        return cls(op_type=OpType.DELETE, doc_id=doc_id)


@dataclass
class OperationFailure:
    """A bulk operation the index rejected."""
    op_type: OpType
    doc_id: str
    reason: str


@dataclass
class BulkReport:
    """Per-operation outcome of one bulk submission."""
    submitted: int
    failures: List[OperationFailure] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    def failure_message(self) -> str:
        return "; ".join(
            f"[{f.op_type.value} {f.doc_id}]: {f.reason}" for f in self.failures
        )


@dataclass
class WriteResult:
    """Outcome of writing one object: an id, or the reason it was skipped."""
    key: str
    doc_id: Optional[str] = None
    skip_reason: Optional[SkipReason] = None

    @property
    def ok(self) -> bool:
        return self.skip_reason is None

    @classmethod
    def written(cls, key: str, doc_id: str) -> "WriteResult":
        return cls(key=key, doc_id=doc_id)

    @classmethod
    def skipped(cls, key: str, reason: SkipReason) -> "WriteResult":
        return cls(key=key, skip_reason=reason)


@dataclass
class CycleReport:
    """Statistics from one scan cycle."""
    outcome: CycleOutcome = CycleOutcome.COMPLETED
    objects_listed: int = 0
    objects_changed: int = 0
    objects_filtered: int = 0     # Changed but not indexable
    documents_written: int = 0
    documents_deleted: int = 0
    flushes: int = 0
    failed_operations: int = 0
    skipped: List[WriteResult] = field(default_factory=list)
    watermark: Optional[int] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def objects_skipped(self) -> int:
        return len(self.skipped)

    def __str__(self) -> str:
        if self.outcome is CycleOutcome.DISABLED:
            return "Cycle skipped (feed disabled)"
        if self.outcome is CycleOutcome.FAILED:
            return f"Cycle failed after {self.duration_seconds:.1f}s: {self.error}"
        return (
            f"Indexed {self.documents_written} documents "
            f"({self.objects_changed} changed of {self.objects_listed} listed, "
            f"{self.objects_filtered} filtered, "
            f"{self.objects_skipped} skipped, "
            f"{self.documents_deleted} deleted, "
            f"{self.failed_operations} failed ops) "
            f"in {self.duration_seconds:.1f}s"
        )
