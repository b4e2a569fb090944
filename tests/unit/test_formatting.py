"""
Tests for formatting helpers and exception utilities.
"""

import pytest

from nftsync.services.nft_sync.types import VerificationResult
from nftsync.utils.exceptions import (
    ChainUnavailable,
    ConfigurationError,
    ReorgDetected,
    StoreWriteFailure,
    VerificationMismatch,
    describe,
    is_transient,
)
from nftsync.utils.formatting import format_duration, mask_address, short_hash


class TestFormatting:
    """Log formatting helpers."""

    def test_mask_address(self):
        """Test address masking."""
        assert mask_address("0x1234567890abcdef1234567890abcdef12345678") == "0x1234...5678"
        assert mask_address(None) == "***"
        assert mask_address("0x12") == "***"

    def test_short_hash(self):
        """Test hash shortening."""
        assert short_hash("0x" + "ab" * 32) == "0xabababab...abab"
        assert short_hash(None) == "-"

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(0, "0s"), (59, "59s"), (61, "1m 01s"), (3723, "1h 02m 03s"), (-5, "0s")],
    )
    def test_format_duration(self, seconds, expected):
        """Test duration rendering."""
        assert format_duration(seconds) == expected


class TestExceptions:
    """Exception helpers."""

    def test_transient_errors(self):
        """Test retry classification."""
        assert is_transient(ChainUnavailable("down")) is True
        assert is_transient(StoreWriteFailure("deadlock")) is True
        assert is_transient(ConfigurationError("bad")) is False

    def test_describe(self):
        """Test last_error rendering."""
        assert describe(ChainUnavailable("node down")) == "ChainUnavailable: node down"
        assert len(describe(ValueError("x" * 5000))) == 2000

    def test_reorg_detected_message(self):
        """Test that ReorgDetected carries its detection."""
        from nftsync.services.nft_sync.types import BlockRange, ReorgDetection

        detection = ReorgDetection(
            detected=True, affected_block_range=BlockRange(103, 105)
        )
        error = ReorgDetected(detection)

        assert error.detection is detection
        assert "103-105" in str(error)

    def test_raise_for_mismatch(self):
        """Test VerificationMismatch raised on failed verification."""
        result = VerificationResult(
            sample_size=10, expected_total_tokens=10_000, tokens_mismatched=2
        )

        with pytest.raises(VerificationMismatch) as exc_info:
            result.raise_for_mismatch()

        assert exc_info.value.result is result

    def test_raise_for_mismatch_passed(self):
        """Test no error on a passed verification."""
        VerificationResult(
            sample_size=10, expected_total_tokens=10, passed=True
        ).raise_for_mismatch()
