"""
Step 2: mint the collection NFT and cache its address.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from ..core.config import Settings, settings
from ..core.exceptions import ValidationError
from ..resilience import BalanceCheck, Sleeper
from ..services.assets import AssetLayout, TokenMetadata, save_collection_address
from ..services.solana_client import SolanaClient, explorer_link
from .common import MintedAsset, ensure_wallet_funded, mint_asset, resolve_rule_set, wait_for_metadata


logger = structlog.get_logger(__name__)


@dataclass
class CollectionResult:
    minted: MintedAsset
    balance: BalanceCheck
    cache_file: Path
    explorer_url: str


async def create_collection(
    client: SolanaClient,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
) -> CollectionResult:
    layout = AssetLayout(cfg.assets_dir)
    files = layout.collection_metadata_files()
    if not files:
        raise ValidationError(
            f"No metadata files found in collection folder: {layout.collection_metadata}",
            {"folder": str(layout.collection_metadata)}
        )
    if len(files) > 1:
        logger.warning("Multiple collection metadata files, using the first", file=files[0].name)

    metadata = TokenMetadata.from_file(files[0])
    logger.info("Collection metadata loaded", name=metadata.name, uri=metadata.uri)

    balance = await ensure_wallet_funded(client, cfg, sleep)
    minted = await mint_asset(
        client, metadata, cfg,
        collection_size=0,
        rule_set=resolve_rule_set(cfg),
        sleep=sleep,
    )
    await wait_for_metadata(client, minted.mint, cfg, sleep)

    cache_file = save_collection_address(layout.cache, minted.mint)
    url = explorer_link("address", minted.mint, cfg.cluster)
    logger.info("Collection created", mint=minted.mint, cache_file=str(cache_file), explorer=url)

    return CollectionResult(minted=minted, balance=balance, cache_file=cache_file, explorer_url=url)
