"""
Scanner - Full listing of a bucket prefix.

The scan time is read from the local clock before the first page is
requested, so objects modified while a long listing runs are still
newer than the stored watermark on the next cycle.
"""

import logging
import time
from typing import Callable, List

from .connector import ObjectStore
from .errors import ListingError
from .models import Listing, ObjectSummary


logger = logging.getLogger(__name__)


def current_millis() -> int:
    """Local wall clock in ms since epoch."""
    return int(time.time() * 1000)


class Scanner:
    """
    Lists every object under a prefix.

    Never filters: deletion detection needs the complete key set.
    """

    def __init__(self, store: ObjectStore, clock: Callable[[], int] = current_millis):
        self._store = store
        self._clock = clock

    def list(self, bucket: str, prefix: str) -> Listing:
        """
        List all objects under bucket/prefix.

        Returns:
            Listing with the scan time, summaries in store order and all keys

        Raises:
            ListingError: any page request failed
        """
        captured_at = self._clock()
        start_time = time.monotonic()
        logger.debug(f"Getting bucket {bucket} listing for prefix '{prefix}'")

        summaries: List[ObjectSummary] = []
        try:
            for summary in self._store.list_objects(bucket, prefix):
                summaries.append(summary)
        except Exception as e:
            raise ListingError(f"Cannot list {bucket}/{prefix}: {e}") from e

        duration = time.monotonic() - start_time
        logger.info(f"Listed {len(summaries)} objects in {duration:.1f}s")

        return Listing(
            captured_at=captured_at,
            summaries=tuple(summaries),
            all_keys=frozenset(s.key for s in summaries),
        )
