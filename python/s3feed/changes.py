"""
Change Detection - Split a listing into changed objects and current keys.

Only the modification timestamp is compared; object content is never
diffed. The full key set is kept because deletion detection needs to
know everything that still exists, not just what changed.
"""

import logging
from typing import Optional

from .models import ChangeSet, Listing


logger = logging.getLogger(__name__)


def partition(listing: Listing, watermark: Optional[int]) -> ChangeSet:
    """
    Partition a listing against the last-scan watermark.

    Args:
        listing: Full listing of the feed prefix
        watermark: Last persisted scan time in ms (None on first run)

    Returns:
        ChangeSet with summaries modified strictly after the watermark,
        and every key in the listing
    """
    since = watermark if watermark is not None else 0

    changed = tuple(s for s in listing.summaries if s.last_modified > since)

    logger.debug(f"{len(changed)} of {len(listing.summaries)} objects changed since {since}")

    return ChangeSet(changed=changed, all_keys=listing.all_keys)
