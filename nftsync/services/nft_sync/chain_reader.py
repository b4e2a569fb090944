"""
Chain Reader.

Thin async layer over a synchronous web3 HTTP provider. Calls run in a
thread pool under a timeout and pass through the Rate Governor.
The reader never retries: failures surface as ChainUnavailable and the
sync engine decides what to do.
"""

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from loguru import logger
from web3 import Web3
from web3.exceptions import BlockNotFound, ContractLogicError, Web3Exception

from nftsync.config.constants import (
    BLOCKCHAIN_EXECUTOR_WORKERS,
    BLOCKCHAIN_LONG_TIMEOUT,
    BLOCKCHAIN_TIMEOUT,
    DEFAULT_MAX_LOG_BLOCK_RANGE,
    ERC721_ABI,
    TRANSFER_EVENT_TOPIC,
)
from nftsync.services.nft_sync.rate_governor import RateGovernor
from nftsync.services.nft_sync.types import RawTransferLog
from nftsync.utils.exceptions import ChainUnavailable
from nftsync.utils.formatting import mask_address

T = TypeVar("T")

# Node errors meaning "ask for fewer blocks"
RANGE_ERROR_MARKERS = (
    "block range",
    "range too large",
    "too many blocks",
    "more than",
    "limit exceeded",
    "query timeout",
    "response size",
)

# Errors raised by web3 and its HTTP transport on RPC/network failure
RPC_ERRORS: tuple[type[Exception], ...] = (Web3Exception, OSError, ValueError)


def is_range_error(exc: BaseException) -> bool:
    """Check if the node rejected a log query for spanning too much."""
    message = str(exc).lower()
    return any(marker in message for marker in RANGE_ERROR_MARKERS)


def decode_transfer_log(log: Any) -> RawTransferLog | None:
    """
    Decode a raw Transfer log.

    ERC-721 indexes all three arguments, so a usable log has four
    topics. ERC-20 transfers share the signature with three topics and
    are skipped.

    Args:
        log: Log entry from eth_getLogs

    Returns:
        RawTransferLog or None if the log is not an ERC-721 transfer
    """
    topics = log["topics"]
    if len(topics) < 4:
        return None

    from_topic = Web3.to_hex(topics[1])
    to_topic = Web3.to_hex(topics[2])
    token_topic = Web3.to_hex(topics[3])

    return RawTransferLog(
        block_number=int(log["blockNumber"]),
        block_hash=Web3.to_hex(log["blockHash"]).lower(),
        tx_hash=Web3.to_hex(log["transactionHash"]).lower(),
        tx_index=int(log["transactionIndex"]),
        log_index=int(log["logIndex"]),
        from_address=("0x" + from_topic[-40:]).lower(),
        to_address=("0x" + to_topic[-40:]).lower(),
        token_id=int(token_topic, 16),
    )


class ChainReader:
    """
    Read-only access to the chain for one ERC-721 contract.

    Handles:
    - Head block, block hashes and timestamps
    - Transfer logs over arbitrary ranges (sub-batched)
    - ownerOf / tokenURI / contract metadata
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        governor: RateGovernor,
        max_log_block_range: int = DEFAULT_MAX_LOG_BLOCK_RANGE,
        timeout: float = BLOCKCHAIN_TIMEOUT,
        max_workers: int = BLOCKCHAIN_EXECUTOR_WORKERS,
        web3: Web3 | None = None,
    ) -> None:
        """
        Initialize chain reader.

        Args:
            rpc_url: HTTP RPC endpoint
            contract_address: Collection contract
            governor: Rate governor shared by all calls
            max_log_block_range: Widest eth_getLogs span the node accepts
            timeout: Per-call timeout in seconds
            max_workers: Thread pool size for web3 calls
            web3: Preconfigured Web3 instance (tests)
        """
        self.rpc_url = rpc_url
        self.contract_address = contract_address.lower()
        self.governor = governor
        self.max_log_block_range = max(1, max_log_block_range)
        self.timeout = timeout

        self.w3 = web3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )
        self._checksum_address = Web3.to_checksum_address(contract_address)
        self.contract = self.w3.eth.contract(
            address=self._checksum_address, abi=ERC721_ABI
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="web3"
        )

    @property
    def log_chunk_size(self) -> int:
        """Blocks per eth_getLogs call."""
        return max(
            1, min(self.max_log_block_range, self.governor.max_blocks_per_second)
        )

    async def _call(
        self,
        func: Callable[[], T],
        operation: str,
        blocks: int = 0,
        timeout: float | None = None,
    ) -> T:
        """
        Run a blocking web3 call in the thread pool.

        ContractLogicError (revert) passes through untouched; every other
        RPC or network failure becomes ChainUnavailable.
        """
        await self.governor.acquire(blocks)

        loop = asyncio.get_running_loop()
        limit = timeout or self.timeout
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, func),
                timeout=limit,
            )
        except TimeoutError as e:
            raise ChainUnavailable(f"{operation} timed out after {limit}s") from e
        except ContractLogicError:
            raise
        except BlockNotFound:
            raise
        except RPC_ERRORS as e:
            raise ChainUnavailable(f"{operation} failed: {e}") from e

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    async def get_head_block(self) -> int:
        """Get latest block number."""
        return await self._call(lambda: self.w3.eth.block_number, "eth_blockNumber")

    async def get_block_hash(self, block_number: int) -> str | None:
        """
        Get block hash.

        Args:
            block_number: Block number

        Returns:
            0x-prefixed lowercase hash, or None if the node has no such block
        """
        try:
            block = await self._call(
                lambda: self.w3.eth.get_block(block_number),
                f"eth_getBlockByNumber({block_number})",
            )
        except BlockNotFound:
            return None
        if block is None:
            return None
        return Web3.to_hex(block["hash"]).lower()

    async def get_block_timestamp(self, block_number: int) -> int | None:
        """Get block timestamp in unix seconds."""
        try:
            block = await self._call(
                lambda: self.w3.eth.get_block(block_number),
                f"eth_getBlockByNumber({block_number})",
            )
        except BlockNotFound:
            return None
        if block is None:
            return None
        return int(block["timestamp"])

    async def get_chain_id(self) -> int:
        """Get chain ID reported by the node."""
        return await self._call(lambda: self.w3.eth.chain_id, "eth_chainId")

    async def is_syncing(self) -> bool:
        """Check if the node is still catching up."""
        result = await self._call(lambda: self.w3.eth.syncing, "eth_syncing")
        return bool(result)

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def get_transfer_logs(
        self, from_block: int, to_block: int
    ) -> list[RawTransferLog]:
        """
        Get Transfer logs of the contract over an inclusive range.

        Args:
            from_block: First block
            to_block: Last block

        Returns:
            Logs ordered by (block, tx_index, log_index)

        Raises:
            ChainUnavailable: On RPC or network failure
        """
        if to_block < from_block:
            return []

        logs: list[RawTransferLog] = []
        chunk = self.log_chunk_size
        start = from_block
        while start <= to_block:
            end = min(start + chunk - 1, to_block)
            logs.extend(await self._fetch_range(start, end))
            start = end + 1

        logs.sort(key=lambda log: log.sort_key)
        return logs

    async def _fetch_range(self, from_block: int, to_block: int) -> list[RawTransferLog]:
        params = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": self._checksum_address,
            "topics": [TRANSFER_EVENT_TOPIC],
        }
        try:
            raw_logs = await self._call(
                lambda: self.w3.eth.get_logs(params),
                f"eth_getLogs({from_block}-{to_block})",
                blocks=to_block - from_block + 1,
                timeout=BLOCKCHAIN_LONG_TIMEOUT,
            )
        except ChainUnavailable as e:
            if to_block > from_block and is_range_error(e.__cause__ or e):
                mid = (from_block + to_block) // 2
                logger.debug(
                    f"[Chain] Range {from_block}-{to_block} rejected, splitting at {mid}"
                )
                left = await self._fetch_range(from_block, mid)
                right = await self._fetch_range(mid + 1, to_block)
                return left + right
            raise

        decoded = []
        for raw in raw_logs:
            log = decode_transfer_log(raw)
            if log is not None:
                decoded.append(log)
        return decoded

    async def has_code(self, block_number: int) -> bool:
        """Check if the contract bytecode exists at a block (needs archive state)."""
        code = await self._call(
            lambda: self.w3.eth.get_code(
                self._checksum_address, block_identifier=block_number
            ),
            f"eth_getCode({block_number})",
        )
        return len(code) > 0

    async def find_deployment_block(self, head_block: int) -> int | None:
        """
        Binary search for the block that created the contract.

        Code presence is monotonic: absent before deployment, present
        from it onward.

        Returns:
            Deployment block, or None if there is no code at head
        """
        if not await self.has_code(head_block):
            return None

        low, high = 0, head_block
        while low < high:
            mid = (low + high) // 2
            if await self.has_code(mid):
                high = mid
            else:
                low = mid + 1
        return low

    async def find_first_transfer_block(self, head_block: int | None = None) -> int:
        """
        Locate the first block holding a Transfer event of the contract.

        Finds the deployment block, then scans forward from it in
        max_log_block_range windows until the first log shows up.

        Args:
            head_block: Upper bound (latest block if None)

        Returns:
            First Transfer block, or head if the contract never emitted one
        """
        head = head_block if head_block is not None else await self.get_head_block()
        logger.info(f"[Chain] Searching first Transfer block up to {head}")

        deployed = await self.find_deployment_block(head)
        if deployed is None:
            logger.warning(
                f"[Chain] No code at {mask_address(self.contract_address)} "
                f"by block {head}, starting at head"
            )
            return head
        logger.info(f"[Chain] Contract deployed at block {deployed}")

        start = deployed
        while start <= head:
            end = min(start + self.max_log_block_range - 1, head)
            logs = await self.get_transfer_logs(start, end)
            if logs:
                logger.info(f"[Chain] First Transfer block: {logs[0].block_number}")
                return logs[0].block_number
            start = end + 1

        logger.info(f"[Chain] No Transfer events yet, starting at head {head}")
        return head

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def owner_of(self, token_id: int) -> str | None:
        """
        Get current owner of a token.

        Returns:
            Lowercase owner, or None if the call reverts (burned/unminted)
        """
        try:
            owner = await self._call(
                lambda: self.contract.functions.ownerOf(token_id).call(),
                f"ownerOf({token_id})",
            )
        except ContractLogicError:
            return None
        return owner.lower() if owner else None

    async def token_uri(self, token_id: int) -> str | None:
        """
        Get metadata URI of a token.

        Returns:
            URI, or None if the call reverts
        """
        try:
            uri = await self._call(
                lambda: self.contract.functions.tokenURI(token_id).call(),
                f"tokenURI({token_id})",
            )
        except ContractLogicError:
            return None
        return uri or None

    async def get_contract_info(self) -> dict[str, Any]:
        """
        Read name, symbol and totalSupply.

        Missing functions (revert) are reported as None.
        """
        info: dict[str, Any] = {"address": self.contract_address}
        for field, function in (
            ("name", self.contract.functions.name),
            ("symbol", self.contract.functions.symbol),
            ("total_supply", self.contract.functions.totalSupply),
        ):
            try:
                info[field] = await self._call(
                    lambda fn=function: fn().call(), f"{field}()"
                )
            except ContractLogicError:
                info[field] = None

        logger.info(
            f"[Chain] Contract {mask_address(self.contract_address)}: "
            f"{info.get('name')} ({info.get('symbol')}), "
            f"totalSupply={info.get('total_supply')}"
        )
        return info

    async def close(self) -> None:
        """Shut down the thread pool."""
        self._executor.shutdown(wait=False, cancel_futures=True)
