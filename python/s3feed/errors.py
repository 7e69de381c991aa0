"""
Error Handling - Error taxonomy and per-object error policies.

This module defines how each failure class is handled by the sync engine:
startup failures stop the feed, cycle failures skip the cycle, and object
failures skip the object while the cycle carries on.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this object, continue the cycle
    ABORT = auto()          # Abort the current cycle


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{key}: {error}"


class FeedError(Exception):
    """Base exception for feed errors."""
    pass


class ConfigError(FeedError):
    """Feed settings are missing or invalid."""
    pass


class StoreConnectionError(FeedError):
    """Credentials or bucket rejected by the object store (fatal at startup)."""
    pass


class IndexSetupError(FeedError):
    """Target index or mapping could not be created (fatal at startup)."""
    pass


class ListingError(FeedError):
    """Bucket listing failed; the cycle is aborted and retried later."""
    pass


class StateError(FeedError):
    """Feed state (watermark) could not be read."""
    pass


class FetchError(FeedError):
    """Object bytes could not be downloaded."""
    def __init__(self, key: str, message: str = ""):
        self.key = key
        super().__init__(message or f"Cannot fetch {key}")


class ExtractError(FeedError):
    """Content extraction failed for an object."""
    def __init__(self, name: str, message: str = ""):
        self.name = name
        super().__init__(message or f"Cannot extract content from {name}")


class FlushError(FeedError):
    """A bulk submission failed as a whole."""
    pass


# Error type to policy mapping (first match wins, so subclasses go first)
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    FetchError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Cannot fetch {key}, skipping: {error}"
    ),
    ExtractError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Cannot extract {key}, skipping: {error}"
    ),
    ListingError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Listing failed for {key}: {error}"
    ),
    StateError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Feed state unavailable for {key}: {error}"
    ),
    StoreConnectionError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Object store rejected connection for {key}: {error}"
    ),
    TimeoutError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.WARNING,
        message_template="Timed out on {key}: {error}"
    ),
}


def handle_error(
    error: Exception,
    key: Optional[str] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        key: Object key or feed name being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP or ABORT)
    """
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Unknown errors abort the cycle; the loop retries next interval
    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.ABORT,
            log_level=logging.ERROR,
            message_template="Unexpected error: {key} - {error}"
        )

    key_str = key if key else "<unknown>"
    message = policy.message_template.format(key=key_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action
