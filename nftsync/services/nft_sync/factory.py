"""
Sync engine factory.

Wires the chain reader, token store and state tracker from settings.
"""

from sqlalchemy.ext.asyncio import AsyncEngine

from nftsync.config.database import create_engine, create_session_maker
from nftsync.config.settings import Settings
from nftsync.services.nft_sync.chain_reader import ChainReader
from nftsync.services.nft_sync.engine import SyncEngine
from nftsync.services.nft_sync.rate_governor import RateGovernor
from nftsync.services.nft_sync.state_tracker import SyncStateTracker
from nftsync.services.nft_sync.token_store import TokenStore
from nftsync.services.nft_sync.types import SyncConfig


def build_sync_engine(
    settings: Settings, db_engine: AsyncEngine | None = None
) -> SyncEngine:
    """
    Build a sync engine with its collaborators.

    Args:
        settings: Application settings
        db_engine: Database engine to use (pooled engine from settings if None)

    Returns:
        SyncEngine owning its database engine and RPC thread pool

    Raises:
        ConfigurationError: If required connection info is missing
    """
    config = SyncConfig.from_settings(settings)

    governor = RateGovernor(
        max_requests_per_second=settings.max_requests_per_second,
        max_blocks_per_second=settings.max_blocks_per_second,
    )
    reader = ChainReader(
        rpc_url=config.rpc_url,
        contract_address=config.contract_address,
        governor=governor,
        max_log_block_range=settings.max_log_block_range,
        timeout=settings.rpc_timeout_seconds,
    )

    db_engine = db_engine or create_engine(settings)
    session_maker = create_session_maker(db_engine)
    store = TokenStore(session_maker, config.contract_address, db_engine=db_engine)
    tracker = SyncStateTracker(session_maker)

    return SyncEngine(config, reader, store, tracker)
