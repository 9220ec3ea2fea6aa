"""
Solana NFT collection pipeline: wallet conversion, storage uploads, minting,
collection verification and burning, built on a small resilient-operation core.
"""

__version__ = "0.1.0"
