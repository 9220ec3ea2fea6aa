"""
Step 6: burn one NFT owned by the paying wallet.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from ..core.config import RetryConfig, Settings, settings
from ..core.exceptions import NFTNotFoundError
from ..resilience import Sleeper
from ..services.solana_client import SolanaClient, explorer_link
from ..services.token_metadata import TokenStandard, burn_v1
from ..services.wallet import parse_pubkey
from .common import fetch_metadata


logger = structlog.get_logger(__name__)


@dataclass
class BurnResult:
    mint: str
    signature: str
    explorer_url: str


async def burn_nft(
    client: SolanaClient,
    mint_address: str,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
) -> BurnResult:
    mint = parse_pubkey(mint_address)

    metadata = await fetch_metadata(client, mint)
    if metadata is None:
        raise NFTNotFoundError(mint_address)

    token_standard = metadata.token_standard
    if token_standard is None:
        token_standard = TokenStandard.NON_FUNGIBLE
    # Verified members require the collection metadata account
    collection_mint = None
    if metadata.collection_verified and metadata.collection_key:
        collection_mint = parse_pubkey(metadata.collection_key)

    logger.info(
        "Burning NFT",
        mint=mint_address,
        name=metadata.name,
        token_standard=token_standard.name
    )
    signature = await client.send_with_retry(
        lambda: [burn_v1(mint, client.pubkey, token_standard, collection_mint)],
        policy=RetryConfig.default(cfg),
        name=f"burn {mint_address}",
        sleep=sleep,
    )

    url = explorer_link("tx", signature, cfg.cluster)
    logger.info("NFT burned", mint=mint_address, signature=signature, explorer=url)
    return BurnResult(mint=mint_address, signature=signature, explorer_url=url)
