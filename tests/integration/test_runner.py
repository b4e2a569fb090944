"""
Integration tests for the command line runner.

Covers exit codes:
- 0 after a sync with passing verification
- 0 when already synced (verification only)
- 1 on failed or inconclusive verification, or a halted sync
- 2 on configuration errors and when another loop holds the lease

Sync progress is reported by the engine alone.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from loguru import logger

from nftsync import runner
from nftsync.utils.exceptions import ChainUnavailable, ConfigurationError
from tests.fakes import WALLET_A, WALLET_B, FakeChain


def collection_chain() -> FakeChain:
    chain = FakeChain(head=300)
    chain.add_transfer(150, 1, to_address=WALLET_A)
    chain.add_transfer(160, 2, to_address=WALLET_B)
    return chain


async def run_with(engine, **kwargs) -> int:
    with patch.object(runner, "build_sync_engine", return_value=engine), \
            patch.object(runner, "install_signal_handlers", MagicMock()):
        return await runner.run(**kwargs)


class TestRunner:
    """runner.run exit codes."""

    @pytest.mark.asyncio
    async def test_sync_and_verify(self, make_engine, store):
        """Test full sync followed by passing verification."""
        engine = make_engine(collection_chain(), from_block=100, collection_size=2)

        assert await run_with(engine) == 0
        assert await store.count_tokens() == 2

    @pytest.mark.asyncio
    async def test_already_synced_only_verifies(self, make_engine):
        """Test that a caught-up collection is verified without scanning."""
        chain = collection_chain()
        first = make_engine(chain, from_block=100, collection_size=2)
        await first.start_sync(follow=False)
        await first.cleanup()
        scans_before = chain.calls["get_transfer_logs"]

        engine = make_engine(chain, from_block=100, collection_size=2)

        assert await run_with(engine) == 0
        assert chain.calls["get_transfer_logs"] == scans_before

    @pytest.mark.asyncio
    async def test_verification_failure(self, make_engine):
        """Test exit code 1 when the collection is incomplete."""
        engine = make_engine(collection_chain(), from_block=100, collection_size=10_000)

        assert await run_with(engine) == 1

    @pytest.mark.asyncio
    async def test_unreadable_sample_fails(self, make_engine):
        """Test exit code 1 when no sampled owner could be read."""
        chain = collection_chain()
        chain.owner_of = AsyncMock(side_effect=ChainUnavailable("ownerOf failed: timeout"))
        engine = make_engine(chain, from_block=100, collection_size=2)

        assert await run_with(engine) == 1

    @pytest.mark.asyncio
    async def test_verify_only(self, make_engine):
        """Test --verify-only on an empty store."""
        engine = make_engine(collection_chain(), from_block=100, collection_size=2)

        assert await run_with(engine, verify_only=True) == 1

    @pytest.mark.asyncio
    async def test_halted_sync(self, make_engine):
        """Test exit code 1 when the sync stops on an error."""
        chain = collection_chain()
        chain.fail_logs_from = 0
        engine = make_engine(chain, from_block=100, max_retries=0)

        assert await run_with(engine) == 1

    @pytest.mark.asyncio
    async def test_wrong_chain(self, make_engine):
        """Test exit code 2 on a configuration error at startup."""
        engine = make_engine(collection_chain(), from_block=100, expected_chain_id=1)

        assert await run_with(engine) == 2

    @pytest.mark.asyncio
    async def test_invalid_configuration(self):
        """Test exit code 2 when the engine cannot be built."""
        with patch.object(
            runner, "build_sync_engine", side_effect=ConfigurationError("RPC URL is required")
        ):
            assert await runner.run() == 2

    @pytest.mark.asyncio
    async def test_lease_held_elsewhere(self, make_engine):
        """Test exit code 2 when another loop is running."""
        chain = collection_chain()
        other = make_engine(chain, owner_id="other", from_block=100)
        await other.initialize()
        engine = make_engine(chain, owner_id="runner", from_block=100)

        assert await run_with(engine) == 2

    @pytest.mark.asyncio
    async def test_progress_logged_once_per_interval(self, make_engine):
        """Test that sync progress comes only from the engine batch log."""
        ticks = iter(range(0, 100_000, 10))
        engine = make_engine(
            collection_chain(), from_block=100, batch_size=50, collection_size=2
        )
        engine._clock = lambda: float(next(ticks))
        messages: list[str] = []
        sink_id = logger.add(lambda message: messages.append(message.record["message"]))
        try:
            assert await run_with(engine) == 0
        finally:
            logger.remove(sink_id)

        progress = [m for m in messages if "Progress" in m or "ETA " in m]
        batches = [m for m in messages if m.startswith("[NFT Sync] Blocks ")]
        assert progress
        assert all(m.startswith("[NFT Sync] Progress ") for m in progress)
        assert len(progress) <= len(batches)
