"""
Application constants.

Centralized constants for the NFT sync pipeline.
"""

from eth_utils import keccak

# ========================================================================
# COLLECTION
# ========================================================================

# The collection has exactly 10,000 tokens
COLLECTION_SIZE = 10_000

# KCC mainnet
KCC_CHAIN_ID = 321

# Marketplace escrow wallet; a token held here is listed for sale
KUSWAP_LISTING_WALLET = "0xd6b69d820872c40dcdaab2b35cd1c805a33ab16c"

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# ========================================================================
# ERC-721
# ========================================================================

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
TRANSFER_EVENT_TOPIC = "0x" + keccak(text=TRANSFER_EVENT_SIGNATURE).hex()

# Minimal ERC-721 ABI for ownership, metadata and Transfer events
ERC721_ABI = [
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "ownerOf",
        "outputs": [{"name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "tokenId", "type": "uint256"}],
        "name": "tokenURI",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "totalSupply",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "name",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": True, "name": "tokenId", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
]

# ========================================================================
# SYNC DEFAULTS
# ========================================================================

DEFAULT_CONFIRMATIONS = 20
DEFAULT_BATCH_SIZE = 1000
DEFAULT_MAX_LOG_BLOCK_RANGE = 5000
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_MS = 1000
DEFAULT_MAX_BLOCKS_PER_SECOND = 50
DEFAULT_MAX_REQUESTS_PER_SECOND = 100
DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_ENRICH_BATCH_SIZE = 100
DEFAULT_LEASE_TTL_SECONDS = 120
DEFAULT_VERIFICATION_SAMPLE_SIZE = 200

# Daily verification run (UTC)
VERIFICATION_HOUR_UTC = 3

# ========================================================================
# TIMEOUTS
# ========================================================================

BLOCKCHAIN_TIMEOUT = 30.0  # Single RPC call in the executor
BLOCKCHAIN_LONG_TIMEOUT = 120.0  # eth_getLogs over wide ranges
BLOCKCHAIN_EXECUTOR_WORKERS = 4

PROGRESS_LOG_INTERVAL_SECONDS = 5.0
