"""
s3feed - Incremental sync of an S3 bucket prefix into a document index.

Modules:
    - config: Feed settings (env, settings document, defaults)
    - connector: boto3 S3 access (list, download, URL, user metadata)
    - scanner: Full paginated listing with scan time
    - filters: Include/exclude glob rules
    - changes: Changed objects vs. all current keys
    - extractor: Text extraction (pdftotext CLI, pypdf, docx, text)
    - writer: One object -> one document write
    - reconciler: Deleted objects -> document deletes
    - batch: Bulk submission with size-triggered flush
    - indexer: SQLite document index + feed state
    - orchestrator: Scan loop and CLI

Cycle Flow:
    Gate → List → Diff → Write → Reconcile → Flush → Persist watermark

Usage:
    from s3feed import FeedRunner, FeedConfig

    runner = FeedRunner(FeedConfig(bucket="my-bucket", path_prefix="docs/"))
    runner.setup()
    await runner.run()
"""

from .config import FeedConfig
from .orchestrator import FeedRunner

__all__ = ["FeedConfig", "FeedRunner"]
