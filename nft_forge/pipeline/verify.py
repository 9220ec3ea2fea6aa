"""
Step 4: verify cached NFTs as members of the cached collection.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import structlog

from ..core.config import RetryConfig, Settings, settings
from ..core.exceptions import BatchAbortedError, NFTNotFoundError, ValidationError
from ..resilience import FailureMode, Sleeper, run_batch
from ..services.assets import AssetLayout, load_collection_address, load_nft_addresses
from ..services.solana_client import SolanaClient
from ..services.token_metadata import verify_collection_v1
from ..services.wallet import parse_pubkey
from .common import ensure_wallet_funded, failure_mode_from, fetch_metadata


logger = structlog.get_logger(__name__)


class VerifyOutcome(Enum):
    VERIFIED = "verified"
    ALREADY_VERIFIED = "already_verified"


@dataclass
class VerifyReport:
    collection: str
    verified: List[str] = field(default_factory=list)
    already_verified: List[str] = field(default_factory=list)
    failed: List[Tuple[str, BaseException]] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


async def verify_one(
    client: SolanaClient,
    address: str,
    collection: str,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
) -> VerifyOutcome:
    mint = parse_pubkey(address)
    metadata = await fetch_metadata(client, mint)
    if metadata is None:
        raise NFTNotFoundError(address)

    if metadata.is_verified_member_of(collection):
        logger.info("NFT already verified, skipping", mint=address)
        return VerifyOutcome.ALREADY_VERIFIED

    if metadata.collection_key != collection:
        raise ValidationError(
            f"NFT {address} does not belong to collection {collection}",
            {"mint": address, "collection": metadata.collection_key}
        )

    collection_mint = parse_pubkey(collection)
    signature = await client.send_with_retry(
        lambda: [verify_collection_v1(mint, collection_mint, client.pubkey)],
        policy=RetryConfig.default(cfg),
        name=f"verify {address}",
        sleep=sleep,
    )
    logger.info("NFT verified", mint=address, signature=signature)
    return VerifyOutcome.VERIFIED


async def verify_nfts(
    client: SolanaClient,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
    mode: Optional[FailureMode] = None,
) -> VerifyReport:
    layout = AssetLayout(cfg.assets_dir)
    collection = load_collection_address(layout.cache)
    addresses = load_nft_addresses(layout.cache)

    # Malformed addresses fail the whole step before any network call
    parse_pubkey(collection)
    for address in addresses:
        parse_pubkey(address)

    logger.info("Verifying NFTs", collection=collection, count=len(addresses))
    await ensure_wallet_funded(client, cfg, sleep)

    aborted: Optional[BatchAbortedError] = None
    try:
        result = await run_batch(
            addresses,
            lambda address: verify_one(client, address, collection, cfg, sleep),
            parallelism=cfg.parallel_batch_size,
            mode=mode or failure_mode_from(cfg),
        )
    except BatchAbortedError as e:
        aborted = e
        result = e.result

    report = VerifyReport(collection=collection, failed=list(result.failed), skipped=list(result.skipped))
    for address, outcome in result.succeeded:
        if outcome is VerifyOutcome.VERIFIED:
            report.verified.append(address)
        else:
            report.already_verified.append(address)

    logger.info(
        "Verification finished",
        verified=len(report.verified),
        already_verified=len(report.already_verified),
        failed=len(report.failed)
    )
    if aborted is not None:
        raise aborted
    return report
