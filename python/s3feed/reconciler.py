"""
Reconciler - Detect documents whose source object is gone.

The object store offers no change feed, so deletions are found by
comparing what the index holds against what the bucket lists now.
"""

import logging
from typing import AbstractSet, Iterable, List

from .models import document_id


logger = logging.getLogger(__name__)


def reconcile_deletions(
    all_current_keys: Iterable[str],
    indexed_ids: AbstractSet[str],
) -> List[str]:
    """
    Return the ids present in the index but absent from the listing.

    Args:
        all_current_keys: Every key currently under the feed prefix
        indexed_ids: Snapshot of document ids in the index

    Returns:
        Ids to delete, in no particular order
    """
    current_ids = {document_id(key) for key in all_current_keys}
    stale = [doc_id for doc_id in indexed_ids if doc_id not in current_ids]

    if stale:
        logger.info(f"{len(stale)} indexed documents no longer exist in the bucket")

    return stale
