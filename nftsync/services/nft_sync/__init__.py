"""
NFT Sync Service.

Mirrors ERC-721 Transfer history of one collection into the database
and keeps it consistent with the chain.

Key features:
- Resumable batch scan from the deployment block to the head
- Idempotent, monotonic ownership updates
- Reorg detection and rollback over the unconfirmed tail
- Sampled verification against live chain state
"""

from .chain_reader import ChainReader
from .engine import SyncEngine
from .enricher import TokenEnricher
from .factory import build_sync_engine
from .rate_governor import RateGovernor
from .reorg_detector import ReorgDetector
from .state_tracker import SyncStateTracker
from .token_store import TokenStore
from .types import (
    CycleResult,
    OwnershipChange,
    RawTransferLog,
    ReorgDetection,
    SyncConfig,
    SyncPhase,
    SyncProgress,
    SyncState,
    SyncStatus,
    SyncStatusReport,
    SyncType,
    TransferRef,
    VerificationResult,
)
from .verifier import Verifier

__all__ = [
    "ChainReader",
    "CycleResult",
    "OwnershipChange",
    "RateGovernor",
    "RawTransferLog",
    "ReorgDetection",
    "ReorgDetector",
    "SyncConfig",
    "SyncEngine",
    "SyncPhase",
    "SyncProgress",
    "SyncState",
    "SyncStateTracker",
    "SyncStatus",
    "SyncStatusReport",
    "SyncType",
    "TokenEnricher",
    "TokenStore",
    "TransferRef",
    "VerificationResult",
    "Verifier",
    "build_sync_engine",
]
