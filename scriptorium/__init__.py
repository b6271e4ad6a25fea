"""Scriptorium: write files and NFT metadata into on-chain inscription accounts."""

__version__ = "0.1.0"
