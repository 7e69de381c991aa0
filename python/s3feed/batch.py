"""
Batch Accumulator - Buffered bulk writes to the index.

Operations are flushed as one bulk request once the threshold is reached,
and whatever remains is flushed at the end of the cycle. Failed operations
are logged and counted; they are never retried within the cycle and
already-applied operations are never rolled back.
"""

import logging
from typing import List

from .indexer import SearchIndex
from .models import BatchOperation, OperationFailure


logger = logging.getLogger(__name__)


class BatchAccumulator:
    """Collects BatchOperations and submits them in bulk."""

    def __init__(
        self,
        index: SearchIndex,
        index_name: str,
        type_name: str,
        threshold: int = 100,
    ):
        self._index = index
        self.index_name = index_name
        self.type_name = type_name
        self.threshold = threshold
        self._pending: List[BatchOperation] = []

        self.flushes = 0
        self.submitted = 0
        self.failures: List[OperationFailure] = []

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add(self, op: BatchOperation) -> None:
        """Queue an operation, flushing if the threshold is reached."""
        logger.debug(f"Queueing {op.op_type.value} of {op.doc_id}")
        self._pending.append(op)
        self.flush_if_threshold()

    def flush_if_threshold(self) -> bool:
        """Flush when enough operations are pending. Returns True if flushed."""
        if self._pending and len(self._pending) >= self.threshold:
            logger.debug("Bulk commit is needed")
            self._flush()
            return True
        return False

    def flush_remainder(self) -> bool:
        """Flush whatever is pending, even below the threshold."""
        if self._pending:
            self._flush()
            return True
        return False

    def _flush(self) -> None:
        ops = self._pending
        self._pending = []
        self.flushes += 1

        try:
            report = self._index.bulk_submit(self.index_name, self.type_name, ops)
        except Exception as e:
            failures = [
                OperationFailure(op_type=op.op_type, doc_id=op.doc_id, reason=str(e))
                for op in ops
            ]
            self.failures.extend(failures)
            logger.warning(
                f"Bulk request of {len(ops)} operations failed: {e} "
                f"(ids: {', '.join(op.doc_id for op in ops)})"
            )
            return

        self.submitted += report.submitted
        if report.has_failures:
            self.failures.extend(report.failures)
            logger.warning(
                f"Failed to execute {len(report.failures)} of {len(ops)} operations: "
                f"{report.failure_message()}"
            )
        else:
            logger.debug(f"Bulk request of {len(ops)} operations committed")
