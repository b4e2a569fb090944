"""
Tests for the chain reader.

Uses a MagicMock in place of the Web3 instance.

Covers:
- Transfer log decoding (ERC-721 vs ERC-20 shaped logs)
- Sub-batching by the block rate ceiling
- Range splitting on node range errors
- Error mapping (revert, network failure, missing block)
- Deployment and first Transfer block search over sparse history
"""

from unittest.mock import MagicMock

import pytest
from web3.exceptions import BlockNotFound, ContractLogicError

from nftsync.config.constants import ZERO_ADDRESS
from nftsync.services.nft_sync.chain_reader import (
    ChainReader,
    decode_transfer_log,
    is_range_error,
)
from nftsync.services.nft_sync.rate_governor import RateGovernor
from nftsync.utils.exceptions import ChainUnavailable
from tests.fakes import CONTRACT, WALLET_A, WALLET_B


def topic_for_address(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def raw_log(block=100, token_id=7, from_address=ZERO_ADDRESS, to_address=WALLET_A):
    return {
        "topics": [
            bytes.fromhex("dd" * 32),
            topic_for_address(from_address),
            topic_for_address(to_address),
            token_id.to_bytes(32, "big"),
        ],
        "blockNumber": block,
        "blockHash": bytes.fromhex("AB" * 32),
        "transactionHash": bytes.fromhex("CD" * 32),
        "transactionIndex": 3,
        "logIndex": 9,
    }


@pytest.fixture
def web3_mock():
    """Mocked Web3 instance."""
    w3 = MagicMock()
    w3.eth.get_logs = MagicMock(return_value=[])
    return w3


@pytest.fixture
def reader(web3_mock, fake_clock):
    """Reader with a 50 blocks/s ceiling and an instant clock."""
    governor = RateGovernor(
        max_requests_per_second=1000,
        max_blocks_per_second=50,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )
    return ChainReader(
        "http://localhost:8545",
        CONTRACT,
        governor,
        max_log_block_range=5000,
        web3=web3_mock,
    )


class TestDecodeTransferLog:
    """Log decoding."""

    def test_decodes_erc721_transfer(self):
        """Test decoding of a four-topic Transfer log."""
        log = decode_transfer_log(raw_log(token_id=1234, to_address=WALLET_B))

        assert log.block_number == 100
        assert log.block_hash == "0x" + "ab" * 32
        assert log.tx_hash == "0x" + "cd" * 32
        assert log.tx_index == 3
        assert log.log_index == 9
        assert log.from_address == ZERO_ADDRESS
        assert log.to_address == WALLET_B
        assert log.token_id == 1234

    def test_skips_erc20_shaped_transfer(self):
        """Test that a three-topic log (ERC-20 Transfer) is ignored."""
        data = raw_log()
        data["topics"] = data["topics"][:3]

        assert decode_transfer_log(data) is None


class TestRangeErrors:
    """Range error classification."""

    @pytest.mark.parametrize(
        "message",
        [
            "query returned more than 10000 results",
            "exceed maximum block range: 5000",
            "Block range too large",
        ],
    )
    def test_range_errors(self, message):
        """Test that node range complaints are recognised."""
        assert is_range_error(ValueError(message)) is True

    def test_other_errors(self):
        """Test that unrelated errors are not range errors."""
        assert is_range_error(ValueError("connection refused")) is False


class TestGetTransferLogs:
    """eth_getLogs batching."""

    @pytest.mark.asyncio
    async def test_splits_range_by_block_ceiling(self, reader, web3_mock):
        """Test that 120 blocks are fetched as 50 + 50 + 20."""
        await reader.get_transfer_logs(1, 120)

        ranges = [
            (call.args[0]["fromBlock"], call.args[0]["toBlock"])
            for call in web3_mock.eth.get_logs.call_args_list
        ]
        assert ranges == [(1, 50), (51, 100), (101, 120)]

    @pytest.mark.asyncio
    async def test_halves_range_on_range_error(self, reader, web3_mock):
        """Test recursive halving when the node rejects a span."""

        def get_logs(params):
            if params["toBlock"] - params["fromBlock"] + 1 > 25:
                raise ValueError("query returned more than 10000 results")
            return [raw_log(block=params["fromBlock"], token_id=params["fromBlock"])]

        web3_mock.eth.get_logs.side_effect = get_logs

        logs = await reader.get_transfer_logs(1, 50)

        assert [log.block_number for log in logs] == [1, 26]

    @pytest.mark.asyncio
    async def test_results_are_sorted(self, reader, web3_mock):
        """Test chain ordering of returned logs."""
        web3_mock.eth.get_logs.return_value = [
            raw_log(block=20, token_id=2),
            raw_log(block=10, token_id=1),
        ]

        logs = await reader.get_transfer_logs(1, 50)

        assert [log.block_number for log in logs] == [10, 20]

    @pytest.mark.asyncio
    async def test_empty_range(self, reader, web3_mock):
        """Test that an inverted range makes no call."""
        assert await reader.get_transfer_logs(10, 9) == []
        web3_mock.eth.get_logs.assert_not_called()

    @pytest.mark.asyncio
    async def test_network_failure_raises_chain_unavailable(self, reader, web3_mock):
        """Test error mapping on connection failure."""
        web3_mock.eth.get_logs.side_effect = ConnectionError("connection refused")

        with pytest.raises(ChainUnavailable):
            await reader.get_transfer_logs(1, 10)


class TestBlocks:
    """Block reads."""

    @pytest.mark.asyncio
    async def test_get_head_block(self, reader, web3_mock):
        """Test head block read."""
        web3_mock.eth.block_number = 1234

        assert await reader.get_head_block() == 1234

    @pytest.mark.asyncio
    async def test_get_block_hash(self, reader, web3_mock):
        """Test hash is returned as lowercase hex."""
        web3_mock.eth.get_block.return_value = {
            "hash": bytes.fromhex("EF" * 32),
            "timestamp": 1700000000,
        }

        assert await reader.get_block_hash(10) == "0x" + "ef" * 32
        assert await reader.get_block_timestamp(10) == 1700000000

    @pytest.mark.asyncio
    async def test_missing_block_returns_none(self, reader, web3_mock):
        """Test BlockNotFound is reported as None."""
        web3_mock.eth.get_block.side_effect = BlockNotFound("not found")

        assert await reader.get_block_hash(10) is None

    @pytest.mark.asyncio
    async def test_block_read_failure(self, reader, web3_mock):
        """Test error mapping on block reads."""
        web3_mock.eth.get_block.side_effect = OSError("reset by peer")

        with pytest.raises(ChainUnavailable):
            await reader.get_block_hash(10)


class TestContractCalls:
    """ownerOf / tokenURI."""

    @pytest.mark.asyncio
    async def test_owner_of(self, reader, web3_mock):
        """Test owner is lowercased."""
        owner_call = web3_mock.eth.contract.return_value.functions.ownerOf.return_value
        owner_call.call.return_value = "0x" + "AB" * 20

        assert await reader.owner_of(1) == "0x" + "ab" * 20

    @pytest.mark.asyncio
    async def test_owner_of_revert_returns_none(self, reader, web3_mock):
        """Test that a burned token (revert) yields None."""
        owner_call = web3_mock.eth.contract.return_value.functions.ownerOf.return_value
        owner_call.call.side_effect = ContractLogicError("execution reverted")

        assert await reader.owner_of(1) is None

    @pytest.mark.asyncio
    async def test_token_uri_revert_returns_none(self, reader, web3_mock):
        """Test tokenURI revert."""
        uri_call = web3_mock.eth.contract.return_value.functions.tokenURI.return_value
        uri_call.call.side_effect = ContractLogicError("execution reverted")

        assert await reader.token_uri(1) is None

    @pytest.mark.asyncio
    async def test_owner_of_network_failure(self, reader, web3_mock):
        """Test that network failures are not mistaken for reverts."""
        owner_call = web3_mock.eth.contract.return_value.functions.ownerOf.return_value
        owner_call.call.side_effect = ConnectionError("refused")

        with pytest.raises(ChainUnavailable):
            await reader.owner_of(1)


class TestFindFirstTransferBlock:
    """Deployment block search."""

    @staticmethod
    def deploy_at(web3_mock, deployed_block, transfer_blocks):
        """Contract code from deployed_block on; Transfer logs only at transfer_blocks."""

        def get_code(address, block_identifier):
            return b"\x60\x80" if block_identifier >= deployed_block else b""

        def get_logs(params):
            return [
                raw_log(block=block, token_id=index)
                for index, block in enumerate(transfer_blocks)
                if params["fromBlock"] <= block <= params["toBlock"]
            ]

        web3_mock.eth.get_code.side_effect = get_code
        web3_mock.eth.get_logs.side_effect = get_logs

    @pytest.mark.asyncio
    async def test_sparse_history(self, reader, web3_mock):
        """Test that long gaps without transfers do not hide the first mint."""
        self.deploy_at(web3_mock, 3000, [3210, 9000])

        assert await reader.find_deployment_block(10_000) == 3000
        assert await reader.find_first_transfer_block(10_000) == 3210

    @pytest.mark.asyncio
    async def test_mint_in_deployment_block(self, reader, web3_mock):
        """Test a collection minted in the block that created it."""
        self.deploy_at(web3_mock, 777, [777, 778])

        assert await reader.find_first_transfer_block(50_000) == 777

    @pytest.mark.asyncio
    async def test_scan_starts_at_deployment(self, reader, web3_mock):
        """Test that no logs are requested below the deployment block."""
        self.deploy_at(web3_mock, 4000, [4020])

        await reader.find_first_transfer_block(10_000)

        starts = [call.args[0]["fromBlock"] for call in web3_mock.eth.get_logs.call_args_list]
        assert min(starts) == 4000

    @pytest.mark.asyncio
    async def test_no_transfers_returns_head(self, reader, web3_mock):
        """Test fallback to head when the contract never emitted."""
        self.deploy_at(web3_mock, 100, [])

        assert await reader.find_first_transfer_block(500) == 500

    @pytest.mark.asyncio
    async def test_no_code_returns_head(self, reader, web3_mock):
        """Test fallback to head when the address holds no contract."""
        self.deploy_at(web3_mock, 10**9, [])

        assert await reader.find_deployment_block(500) is None
        assert await reader.find_first_transfer_block(500) == 500
        web3_mock.eth.get_logs.assert_not_called()
