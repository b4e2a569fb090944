"""
Sync State Tracker.

Persists the scan checkpoint after every batch and guards the single
sync loop per contract and sync type with a lease row.
"""

from datetime import UTC, datetime, timedelta

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from nftsync.models.nft_sync_state import NftSyncState
from nftsync.repositories.nft_sync_lease_repository import NftSyncLeaseRepository
from nftsync.repositories.nft_sync_state_repository import NftSyncStateRepository
from nftsync.services.nft_sync.types import SyncState, SyncType
from nftsync.utils.exceptions import StoreWriteFailure
from nftsync.utils.formatting import mask_address

# Columns copied between the row and the dataclass
_STATE_FIELDS = (
    "start_block",
    "current_block",
    "finalized_to_block",
    "head_block",
    "tokens_discovered",
    "tokens_enriched",
    "transfers_processed",
    "started_at",
    "last_updated_at",
    "completed_at",
    "confirmations",
    "batch_size",
    "last_error",
    "error_count",
)


def _as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes returned by drivers without tz support."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SyncStateTracker:
    """Load and save SyncState checkpoints."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        """
        Initialize tracker.

        Args:
            session_maker: Async session factory
        """
        self.session_maker = session_maker

    async def load(
        self, contract_address: str, sync_type: SyncType | str
    ) -> SyncState | None:
        """
        Load persisted state.

        Args:
            contract_address: Collection contract
            sync_type: full or incremental

        Returns:
            SyncState or None if this contract was never synced
        """
        async with self.session_maker() as session:
            row = await NftSyncStateRepository(session).get_state(
                contract_address.lower(), str(sync_type)
            )
            if row is None:
                return None

            values = {name: getattr(row, name) for name in _STATE_FIELDS}
            for name in ("started_at", "last_updated_at", "completed_at"):
                values[name] = _as_utc(values[name])

            return SyncState(
                contract_address=row.contract_address,
                sync_type=SyncType(row.sync_type),
                **values,
            )

    async def save(self, state: SyncState) -> None:
        """
        Persist state (insert or update).

        Args:
            state: State to persist; ``last_updated_at`` is refreshed

        Raises:
            StoreWriteFailure: If the write fails
        """
        state.last_updated_at = datetime.now(UTC)

        async with self.session_maker() as session:
            try:
                repo = NftSyncStateRepository(session)
                row = await repo.get_state(
                    state.contract_address, str(state.sync_type), for_update=True
                )
                if row is None:
                    row = NftSyncState(
                        contract_address=state.contract_address,
                        sync_type=str(state.sync_type),
                    )
                    session.add(row)

                for name in _STATE_FIELDS:
                    setattr(row, name, getattr(state, name))

                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Sync state save failed: {e}") from e

    async def mark_completed(self, state: SyncState) -> None:
        """Set ``completed_at`` once and persist."""
        if state.completed_at is None:
            state.completed_at = datetime.now(UTC)
            logger.success(
                f"[NFT Sync] Sync completed for {mask_address(state.contract_address)} "
                f"at block {state.current_block}"
            )
        await self.save(state)

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    async def acquire_lease(
        self,
        contract_address: str,
        sync_type: SyncType | str,
        owner_id: str,
        ttl_seconds: int,
    ) -> bool:
        """
        Claim the sync loop for a contract and sync type.

        A lease is granted when none exists, when the existing one has
        expired, or when it is already held by ``owner_id`` (renewal).

        Args:
            contract_address: Collection contract
            sync_type: full or incremental
            owner_id: Unique id of this engine instance
            ttl_seconds: Lease lifetime

        Returns:
            True if this owner now holds the lease
        """
        contract = contract_address.lower()
        now = datetime.now(UTC)
        expires_at = now + timedelta(seconds=ttl_seconds)

        async with self.session_maker() as session:
            try:
                repo = NftSyncLeaseRepository(session)
                lease = await repo.get_lease(contract, str(sync_type))

                if lease is None:
                    await repo.create(
                        contract_address=contract,
                        sync_type=str(sync_type),
                        owner_id=owner_id,
                        acquired_at=now,
                        expires_at=expires_at,
                    )
                elif lease.owner_id == owner_id or _as_utc(lease.expires_at) <= now:
                    if lease.owner_id != owner_id:
                        logger.warning(
                            f"[NFT Sync] Taking over expired lease from {lease.owner_id}"
                        )
                        lease.acquired_at = now
                    lease.owner_id = owner_id
                    lease.expires_at = expires_at
                else:
                    return False

                await session.commit()
                return True
            except IntegrityError:
                # Another owner inserted the lease concurrently
                await session.rollback()
                return False
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Lease acquire failed: {e}") from e

    async def renew_lease(
        self,
        contract_address: str,
        sync_type: SyncType | str,
        owner_id: str,
        ttl_seconds: int,
    ) -> bool:
        """Extend a lease held by ``owner_id``."""
        return await self.acquire_lease(
            contract_address, sync_type, owner_id, ttl_seconds
        )

    async def release_lease(
        self, contract_address: str, sync_type: SyncType | str, owner_id: str
    ) -> bool:
        """
        Release a lease held by ``owner_id``.

        Returns:
            True if a lease was released
        """
        async with self.session_maker() as session:
            try:
                released = await NftSyncLeaseRepository(session).delete_owned(
                    contract_address.lower(), str(sync_type), owner_id
                )
                await session.commit()
                return released
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreWriteFailure(f"Lease release failed: {e}") from e
