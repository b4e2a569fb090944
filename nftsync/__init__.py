"""
NFT sync service.

Mirrors on-chain Transfer history of a fixed-size NFT collection into
a relational store and keeps token ownership consistent with the chain.
"""

__version__ = "1.0.0"
