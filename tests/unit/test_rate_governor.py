"""
Tests for the RPC rate governor.

Covers:
- Request ceiling over a rolling one-second window
- Block span ceiling
- Oversized single requests on an empty window
- Window eviction and reset
"""

import pytest

from nftsync.services.nft_sync.rate_governor import RateGovernor


def make_governor(clock, requests=2, blocks=50):
    return RateGovernor(
        max_requests_per_second=requests,
        max_blocks_per_second=blocks,
        clock=clock,
        sleep=clock.sleep,
    )


class TestRequestCeiling:
    """Requests per second."""

    @pytest.mark.asyncio
    async def test_requests_under_ceiling_do_not_wait(self, fake_clock):
        """Test that calls within the ceiling are admitted immediately."""
        governor = make_governor(fake_clock, requests=3)

        for _ in range(3):
            await governor.acquire()

        assert fake_clock.sleeps == []
        assert governor.requests_in_window == 3

    @pytest.mark.asyncio
    async def test_request_over_ceiling_waits_for_window(self, fake_clock):
        """Test that the third call waits until the first leaves the window."""
        governor = make_governor(fake_clock, requests=2)

        await governor.acquire()
        fake_clock.now += 0.25
        await governor.acquire()
        await governor.acquire()

        assert fake_clock.sleeps == [pytest.approx(0.75)]
        assert governor.total_waited == pytest.approx(0.75)

    @pytest.mark.asyncio
    async def test_window_slides(self, fake_clock):
        """Test that calls older than one second no longer count."""
        governor = make_governor(fake_clock, requests=2)

        await governor.acquire()
        await governor.acquire()
        fake_clock.now += 1.0

        assert governor.requests_in_window == 0
        await governor.acquire()
        assert fake_clock.sleeps == []

    @pytest.mark.asyncio
    async def test_context_manager_acquires(self, fake_clock):
        """Test async with support."""
        governor = make_governor(fake_clock)

        async with governor:
            pass

        assert governor.requests_in_window == 1


class TestBlockCeiling:
    """Blocks per second."""

    @pytest.mark.asyncio
    async def test_block_span_over_ceiling_waits(self, fake_clock):
        """Test that a second 30-block call waits with a 50 block ceiling."""
        governor = make_governor(fake_clock, requests=100, blocks=50)

        await governor.acquire(30)
        await governor.acquire(30)

        assert len(fake_clock.sleeps) == 1
        assert governor.blocks_in_window == 30

    @pytest.mark.asyncio
    async def test_oversized_request_admitted_on_empty_window(self, fake_clock):
        """Test that a request wider than the ceiling cannot starve."""
        governor = make_governor(fake_clock, requests=100, blocks=50)

        await governor.acquire(500)

        assert fake_clock.sleeps == []
        assert governor.blocks_in_window == 500

    @pytest.mark.asyncio
    async def test_non_range_calls_do_not_consume_blocks(self, fake_clock):
        """Test that plain calls only count as requests."""
        governor = make_governor(fake_clock, requests=100, blocks=50)

        await governor.acquire(50)
        await governor.acquire()

        assert fake_clock.sleeps == []
        assert governor.blocks_in_window == 50

    @pytest.mark.asyncio
    async def test_reset_clears_window(self, fake_clock):
        """Test reset."""
        governor = make_governor(fake_clock, requests=1, blocks=50)

        await governor.acquire(10)
        governor.reset()
        await governor.acquire(10)

        assert fake_clock.sleeps == []


class TestConfiguration:
    """Constructor validation."""

    def test_rejects_zero_ceiling(self):
        """Test that ceilings below one are rejected."""
        with pytest.raises(ValueError):
            RateGovernor(max_requests_per_second=0, max_blocks_per_second=50)

        with pytest.raises(ValueError):
            RateGovernor(max_requests_per_second=10, max_blocks_per_second=0)
