"""
Exception types for the sync pipeline.

Defines categorized exception types for proper error handling.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from nftsync.services.nft_sync.types import ReorgDetection, VerificationResult


class NFTSyncError(Exception):
    """Base exception for the sync pipeline."""
    pass


class ConfigurationError(NFTSyncError):
    """Raised when required connection info is missing. Fatal at startup."""
    pass


class ChainUnavailable(NFTSyncError):
    """Raised on RPC or network failure. Retryable with backoff."""
    pass


class StoreWriteFailure(NFTSyncError):
    """Raised when a store write fails. The batch is not advanced."""
    pass


class SyncAlreadyRunning(NFTSyncError):
    """Raised when another loop already owns the contract/sync-type pair."""
    pass


class ReorgDetected(NFTSyncError):
    """Raised inside a batch when fetched hashes disagree with recorded ones."""

    def __init__(self, detection: "ReorgDetection") -> None:
        self.detection = detection
        super().__init__(
            f"Reorg detected at blocks "
            f"{detection.affected_block_range.from_block}-"
            f"{detection.affected_block_range.to_block}"
        )


class VerificationMismatch(NFTSyncError):
    """Raised on demand when a verification run did not pass."""

    def __init__(self, result: "VerificationResult") -> None:
        self.result = result
        super().__init__(
            f"Verification failed: {result.tokens_mismatched} mismatches, "
            f"{result.total_tokens_in_db}/{result.expected_total_tokens} tokens"
        )


# Retried locally with exponential backoff
TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    ChainUnavailable,
    StoreWriteFailure,
)


def is_transient(exc: BaseException) -> bool:
    """
    Check if exception is retryable.

    Args:
        exc: Exception to check

    Returns:
        True if the operation may succeed when repeated
    """
    return isinstance(exc, TRANSIENT_ERRORS)


def describe(exc: BaseException) -> str:
    """Compact 'Type: message' rendering for last_error."""
    message: Any = str(exc) or repr(exc)
    return f"{type(exc).__name__}: {message}"[:2000]
