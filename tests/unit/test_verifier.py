"""
Tests for the verifier.

Uses mocked reader and store.

Covers:
- All sampled tokens matching
- Owner and token URI mismatches
- Burned tokens
- Per-token RPC failures and fully unreachable samples
- Aggregate count checks
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from nftsync.config.constants import ZERO_ADDRESS
from nftsync.services.nft_sync.verifier import Verifier
from nftsync.utils.exceptions import ChainUnavailable
from tests.fakes import WALLET_A, WALLET_B


def token(token_id, owner=WALLET_A, token_uri=None):
    return SimpleNamespace(token_id=token_id, owner_address=owner, token_uri=token_uri)


@pytest.fixture
def reader():
    """Mocked chain reader at block 5000."""
    reader = AsyncMock()
    reader.get_head_block.return_value = 5000
    reader.owner_of.return_value = WALLET_A
    reader.token_uri.return_value = "ipfs://x"
    return reader


@pytest.fixture
def store():
    """Mocked token store holding three tokens."""
    store = AsyncMock()
    store.find_sample.return_value = [token(1), token(2), token(3)]
    store.count_tokens.return_value = 3
    store.count_transfers.return_value = 5
    return store


class TestVerifier:
    """Sampled verification."""

    @pytest.mark.asyncio
    async def test_all_match(self, reader, store):
        """Test a passing verification."""
        result = await Verifier(reader, store, expected_total_tokens=3).verify(3)

        assert result.passed is True
        assert result.block_number == 5000
        assert result.tokens_checked == 3
        assert result.tokens_matched == 3
        assert result.accuracy == 1.0
        assert result.transfers_below_floor is False
        store.find_sample.assert_awaited_once_with(3)

    @pytest.mark.asyncio
    async def test_owner_mismatch(self, reader, store):
        """Test that an owner disagreement fails verification."""
        reader.owner_of.side_effect = [WALLET_A, WALLET_B, WALLET_A]

        result = await Verifier(reader, store, expected_total_tokens=3).verify(3)

        assert result.passed is False
        assert result.tokens_mismatched == 1
        mismatch = result.mismatches[0]
        assert mismatch.token_id == 2
        assert mismatch.field == "owner"
        assert mismatch.expected == WALLET_B
        assert mismatch.actual == WALLET_A
        assert mismatch.block_number == 5000

    @pytest.mark.asyncio
    async def test_token_uri_checked_only_when_stored(self, reader, store):
        """Test URI comparison for enriched tokens."""
        store.find_sample.return_value = [
            token(1, token_uri="ipfs://old"),
            token(2),
        ]
        store.count_tokens.return_value = 2

        result = await Verifier(reader, store, expected_total_tokens=2).verify(2)

        assert result.tokens_mismatched == 1
        assert result.mismatches[0].field == "token_uri"
        assert reader.token_uri.await_count == 1

    @pytest.mark.asyncio
    async def test_burned_token_matches(self, reader, store):
        """Test that a zero owner in the store matches a reverting ownerOf."""
        store.find_sample.return_value = [token(1, owner=ZERO_ADDRESS)]
        store.count_tokens.return_value = 1
        reader.owner_of.return_value = None

        result = await Verifier(reader, store, expected_total_tokens=1).verify(1)

        assert result.passed is True

    @pytest.mark.asyncio
    async def test_rpc_failure_counts_as_errored(self, reader, store):
        """Test that unreachable tokens are neither matched nor mismatched."""
        reader.owner_of.side_effect = [WALLET_A, ChainUnavailable("timeout"), WALLET_A]

        result = await Verifier(reader, store, expected_total_tokens=3).verify(3)

        assert result.tokens_errored == 1
        assert result.tokens_matched == 2
        assert result.tokens_mismatched == 0
        assert result.passed is True

    @pytest.mark.asyncio
    async def test_unreachable_chain_is_inconclusive(self, reader, store):
        """Test that a sample with no readable token is flagged."""
        reader.owner_of.side_effect = ChainUnavailable("ownerOf failed: timeout")

        result = await Verifier(reader, store, expected_total_tokens=3).verify(3)

        assert result.tokens_errored == 3
        assert result.tokens_matched == 0
        assert result.inconclusive is True

    @pytest.mark.asyncio
    async def test_partial_failure_is_conclusive(self, reader, store):
        """Test that one readable token is enough for a conclusive result."""
        reader.owner_of.side_effect = [WALLET_A, ChainUnavailable("reset"), WALLET_A]

        result = await Verifier(reader, store, expected_total_tokens=3).verify(3)

        assert result.inconclusive is False

    @pytest.mark.asyncio
    async def test_total_mismatch_fails(self, reader, store):
        """Test that a short collection fails even when samples match."""
        result = await Verifier(reader, store, expected_total_tokens=10_000).verify(3)

        assert result.tokens_mismatched == 0
        assert result.passed is False

    @pytest.mark.asyncio
    async def test_transfers_below_floor(self, reader, store):
        """Test the transfer count sanity flag."""
        store.count_transfers.return_value = 2

        result = await Verifier(reader, store, expected_total_tokens=3).verify(3)

        assert result.transfers_below_floor is True
