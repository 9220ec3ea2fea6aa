"""
Step 3: mint member NFTs into the cached collection.

Units run in chunks of `parallel_batch_size`. The balance check and the mint
transaction of every unit go through one mailbox for the paying wallet, while
the visibility polls of a chunk overlap.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import structlog

from ..core.config import Settings, settings
from ..core.exceptions import BatchAbortedError, NFTNotFoundError
from ..resilience import AccountMailbox, BatchResult, FailureMode, Sleeper, run_batch, run_unit
from ..services.assets import AssetLayout, TokenMetadata, load_collection_address, save_nft_addresses
from ..services.solana_client import SolanaClient
from ..services.wallet import parse_pubkey
from .common import (
    MintedAsset,
    ensure_wallet_funded,
    failure_mode_from,
    fetch_metadata,
    mint_asset,
    resolve_rule_set,
    wait_for_metadata,
)


logger = structlog.get_logger(__name__)


@dataclass
class MintReport:
    collection: str
    minted: List[MintedAsset] = field(default_factory=list)
    failed: List[Tuple[Path, BaseException]] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    cache_file: Optional[Path] = None

    @property
    def addresses(self) -> List[str]:
        return [asset.mint for asset in self.minted]


def select_files(files: Sequence[Path], start_index: int = 0, max_to_mint: int = 0) -> List[Path]:
    """Slice from `start_index`, at most `max_to_mint` files (0 means all)."""
    start = max(start_index, 0)
    if max_to_mint > 0:
        return list(files[start:start + max_to_mint])
    return list(files[start:])


class CollectionMinter:
    """Mints metadata files as members of one collection."""

    def __init__(
        self,
        client: SolanaClient,
        collection: str,
        cfg: Settings = settings,
        sleep: Optional[Sleeper] = None,
    ):
        self.client = client
        self.collection = collection
        self.collection_pubkey = parse_pubkey(collection)
        self.cfg = cfg
        self.sleep = sleep
        self.rule_set = resolve_rule_set(cfg)
        self.mailbox = AccountMailbox(str(client.pubkey))
        self._balance_before = 0.0
        self.logger = logger.bind(service="collection_minter", collection=collection)

    async def check_collection(self):
        if await fetch_metadata(self.client, self.collection_pubkey) is None:
            raise NFTNotFoundError(self.collection)

    async def mint_one(self, metadata_file: Path) -> MintedAsset:
        metadata = TokenMetadata.from_file(metadata_file)

        async def confirm(minted: MintedAsset) -> MintedAsset:
            await wait_for_metadata(self.client, minted.mint, self.cfg, self.sleep)
            return minted

        return await run_unit(
            mutate=lambda: mint_asset(
                self.client,
                metadata,
                self.cfg,
                collection=self.collection_pubkey,
                is_mutable=False,
                rule_set=self.rule_set,
                sleep=self.sleep,
            ),
            assure=lambda: ensure_wallet_funded(self.client, self.cfg, self.sleep),
            confirm=confirm,
            mailbox=self.mailbox,
        )

    async def _log_balance_before(self, index: int, chunk: Sequence[Path]):
        self._balance_before = await self.client.get_balance()
        self.logger.info("Starting chunk", chunk=index, size=len(chunk), balance=round(self._balance_before, 6))

    async def _log_balance_after(self, index: int, chunk: Sequence[Path]):
        balance_after = await self.client.get_balance()
        self.logger.info(
            "Chunk finished",
            chunk=index,
            balance=round(balance_after, 6),
            sol_used=round(self._balance_before - balance_after, 6)
        )

    async def run(self, files: Sequence[Path], mode: FailureMode = FailureMode.CONTINUE) -> BatchResult:
        async with self.mailbox:
            return await run_batch(
                files,
                self.mint_one,
                parallelism=self.cfg.parallel_batch_size,
                mode=mode,
                before_chunk=self._log_balance_before,
                after_chunk=self._log_balance_after,
            )


async def mint_nfts(
    client: SolanaClient,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
    mode: Optional[FailureMode] = None,
) -> MintReport:
    """
    Mint the selected NFT metadata files and cache the new mint addresses.

    Addresses minted before a batch abort are still written to the cache.
    """
    layout = AssetLayout(cfg.assets_dir)
    collection = load_collection_address(layout.cache)
    minter = CollectionMinter(client, collection, cfg, sleep)

    files = select_files(layout.nft_metadata_files(), cfg.start_index, cfg.max_to_mint)
    logger.info(
        "Minting NFTs",
        collection=collection,
        start_index=cfg.start_index,
        max_to_mint=cfg.max_to_mint,
        count=len(files)
    )

    await minter.check_collection()

    aborted: Optional[BatchAbortedError] = None
    try:
        result = await minter.run(files, mode or failure_mode_from(cfg))
    except BatchAbortedError as e:
        aborted = e
        result = e.result

    report = MintReport(
        collection=collection,
        minted=result.values,
        failed=list(result.failed),
        skipped=list(result.skipped),
    )
    if report.minted:
        report.cache_file = save_nft_addresses(layout.cache, report.addresses)

    logger.info(
        "Minting finished",
        minted=len(report.minted),
        failed=len(report.failed),
        skipped=len(report.skipped)
    )
    if aborted is not None:
        raise aborted
    return report
