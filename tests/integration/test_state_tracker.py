"""
Integration tests for the sync state tracker.

Covers:
- Save/load round trip of the checkpoint
- Completion marker
- Lease acquire, renew, release and expiry takeover
"""

import pytest

from nftsync.services.nft_sync.types import SyncState, SyncType
from tests.fakes import CONTRACT


def make_state(**overrides) -> SyncState:
    params = {
        "contract_address": CONTRACT,
        "sync_type": SyncType.FULL,
        "start_block": 100,
        "current_block": 99,
        "finalized_to_block": 99,
        "head_block": 500,
        "confirmations": 20,
        "batch_size": 1000,
    }
    params.update(overrides)
    return SyncState(**params)


class TestCheckpoint:
    """State persistence."""

    @pytest.mark.asyncio
    async def test_load_missing(self, tracker):
        """Test that an unknown contract has no state."""
        assert await tracker.load(CONTRACT, SyncType.FULL) is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, tracker):
        """Test checkpoint round trip."""
        state = make_state()
        await tracker.save(state)

        state.current_block = 250
        state.finalized_to_block = 230
        state.transfers_processed = 42
        state.last_error = "ChainUnavailable: node down"
        state.error_count = 1
        await tracker.save(state)

        loaded = await tracker.load(CONTRACT, SyncType.FULL)

        assert loaded.current_block == 250
        assert loaded.finalized_to_block == 230
        assert loaded.transfers_processed == 42
        assert loaded.last_error == "ChainUnavailable: node down"
        assert loaded.error_count == 1
        assert loaded.sync_type == SyncType.FULL
        assert loaded.started_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_sync_types_are_separate(self, tracker):
        """Test one row per contract and sync type."""
        await tracker.save(make_state(current_block=150))
        await tracker.save(make_state(sync_type=SyncType.INCREMENTAL, current_block=480))

        full = await tracker.load(CONTRACT, SyncType.FULL)
        incremental = await tracker.load(CONTRACT, "incremental")

        assert full.current_block == 150
        assert incremental.current_block == 480

    @pytest.mark.asyncio
    async def test_mark_completed(self, tracker):
        """Test completion timestamp is set once."""
        state = make_state(current_block=500)

        await tracker.mark_completed(state)
        first = state.completed_at
        await tracker.mark_completed(state)

        assert first is not None
        assert state.completed_at == first
        assert (await tracker.load(CONTRACT, SyncType.FULL)).completed_at is not None


class TestLease:
    """Single-writer lease."""

    @pytest.mark.asyncio
    async def test_second_owner_rejected(self, tracker):
        """Test that a live lease blocks other owners."""
        assert await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-1", 60)
        assert not await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-2", 60)

    @pytest.mark.asyncio
    async def test_owner_can_renew(self, tracker):
        """Test renewal by the holder."""
        await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-1", 60)

        assert await tracker.renew_lease(CONTRACT, SyncType.FULL, "worker-1", 60)
        assert not await tracker.renew_lease(CONTRACT, SyncType.FULL, "worker-2", 60)

    @pytest.mark.asyncio
    async def test_release_frees_lease(self, tracker):
        """Test that a released lease can be taken."""
        await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-1", 60)

        assert not await tracker.release_lease(CONTRACT, SyncType.FULL, "worker-2")
        assert await tracker.release_lease(CONTRACT, SyncType.FULL, "worker-1")
        assert await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-2", 60)

    @pytest.mark.asyncio
    async def test_expired_lease_taken_over(self, tracker):
        """Test takeover of a lease left by a crashed owner."""
        await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-1", -1)

        assert await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-2", 60)
        assert not await tracker.renew_lease(CONTRACT, SyncType.FULL, "worker-1", 60)

    @pytest.mark.asyncio
    async def test_leases_per_sync_type(self, tracker):
        """Test that full and incremental loops do not block each other."""
        assert await tracker.acquire_lease(CONTRACT, SyncType.FULL, "worker-1", 60)
        assert await tracker.acquire_lease(
            CONTRACT, SyncType.INCREMENTAL, "worker-2", 60
        )
