"""
Pipeline steps, one per CLI command, run in order:
convert-secret, upload, create-ruleset, create-collection, mint, verify, burn.
"""

from .wallet_setup import convert_secret, show_wallet
from .upload import upload_assets
from .ruleset import create_rule_set
from .collection import create_collection
from .mint import mint_nfts
from .verify import verify_nfts
from .burn import burn_nft

__all__ = [
    "convert_secret",
    "show_wallet",
    "upload_assets",
    "create_rule_set",
    "create_collection",
    "mint_nfts",
    "verify_nfts",
    "burn_nft",
]
