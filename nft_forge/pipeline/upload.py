"""
Step 1: upload collection and NFT assets to Irys, or straight to Arweave.

Each image is uploaded first, its URL is patched into the matching metadata
file, then the metadata is uploaded and its own URL patched into `.uri`.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import structlog

from ..core.config import RetryConfig, Settings, settings
from ..resilience import BalanceCheck, Sleeper, ensure_funded, retry_operation
from ..services.arweave_uploader import ArweaveUploader
from ..services.assets import (
    AssetLayout,
    mime_type_for,
    patch_metadata_creators,
    patch_metadata_image,
    patch_metadata_uri,
    plan_uploads,
)
from ..services.irys_uploader import IrysUploader, UploadReceipt


logger = structlog.get_logger(__name__)

StorageUploader = Union[IrysUploader, ArweaveUploader]


@dataclass
class UploadedAsset:
    image_file: Path
    metadata_file: Path
    image_id: str
    metadata_id: str
    metadata_url: str
    arweave_url: str


@dataclass
class UploadReport:
    balance: BalanceCheck
    collection: Optional[UploadedAsset] = None
    nfts: List[UploadedAsset] = field(default_factory=list)
    final_balance: Optional[float] = None

    @property
    def assets(self) -> List[UploadedAsset]:
        return ([self.collection] if self.collection else []) + self.nfts


class AssetUploader:
    """
    Runs the two-step uploads against one storage backend.

    With `creator` set, every metadata file names that address as its sole
    creator before it is uploaded.
    """

    def __init__(
        self,
        uploader: StorageUploader,
        cfg: Settings = settings,
        sleep: Optional[Sleeper] = None,
        creator: Optional[str] = None,
    ):
        self.uploader = uploader
        self.cfg = cfg
        self.sleep = sleep
        self.creator = creator
        self.logger = logger.bind(service="asset_uploader")

    async def ensure_node_funded(self) -> BalanceCheck:
        if not self.uploader.supports_funding:
            balance = await self.uploader.get_balance()
            self.logger.info("Storage wallet balance", balance=round(balance, 6))
            if balance <= 0:
                self.logger.warning("Storage wallet is empty, uploads will be rejected")
            return BalanceCheck(initial=balance, final=balance, funded=False)

        return await ensure_funded(
            self.uploader.get_balance,
            self.uploader.fund,
            RetryConfig.storage_threshold(self.cfg),
            funding_policy=RetryConfig.fund(self.cfg),
            sleep=self.sleep,
            account="irys node",
        )

    async def upload_with_retry(self, path: Path) -> UploadReceipt:
        return await retry_operation(
            lambda: self.uploader.upload_file(path),
            RetryConfig.upload(self.cfg),
            name=f"upload {path.name}",
            sleep=self.sleep,
        )

    def urls(self, transaction_id: str) -> Tuple[str, str]:
        return self.uploader.urls(transaction_id, self.cfg)

    async def upload_two_step(self, image_file: Path, metadata_file: Path, reupload: bool = False) -> UploadedAsset:
        image = await self.upload_with_retry(image_file)
        image_url, _ = self.urls(image.id)
        patch_metadata_image(metadata_file, image_url, mime_type_for(image_file))
        if self.creator:
            patch_metadata_creators(metadata_file, self.creator)

        metadata = await self.upload_with_retry(metadata_file)
        metadata_url, _ = self.urls(metadata.id)
        patch_metadata_uri(metadata_file, metadata_url)

        final_id = metadata.id
        if reupload:
            # The stored copy still points .uri at the image until re-uploaded
            final_id = (await self.upload_with_retry(metadata_file)).id
            self.logger.info("Patched metadata re-uploaded", file=str(metadata_file), id=final_id)

        primary_url, arweave_url = self.urls(final_id)
        return UploadedAsset(
            image_file=image_file,
            metadata_file=metadata_file,
            image_id=image.id,
            metadata_id=final_id,
            metadata_url=primary_url,
            arweave_url=arweave_url,
        )

    async def run(self, layout: AssetLayout, reupload: Optional[bool] = None) -> UploadReport:
        reupload = self.cfg.reupload_metadata if reupload is None else reupload
        plan = plan_uploads(layout, self.cfg.single_nft_pair)
        report = UploadReport(balance=await self.ensure_node_funded())

        if plan.collection_image is not None:
            self.logger.info("Uploading collection", image=plan.collection_image.name)
            report.collection = await self.upload_two_step(
                plan.collection_image, plan.collection_metadata, reupload
            )
            self.logger.info(
                "Collection uploaded",
                url=report.collection.metadata_url,
                arweave_url=report.collection.arweave_url
            )
        else:
            self.logger.info("Collection files not selected, skipping")

        total = len(plan.nft_pairs)
        for index, (image_file, metadata_file) in enumerate(plan.nft_pairs, start=1):
            self.logger.info("Uploading NFT", index=index, total=total, image=image_file.name)
            uploaded = await self.upload_two_step(image_file, metadata_file, reupload)
            report.nfts.append(uploaded)
            self.logger.info("NFT uploaded", index=index, url=uploaded.metadata_url)

        report.final_balance = await self.uploader.get_balance()
        self.logger.info(
            "All assets uploaded",
            nfts=len(report.nfts),
            balance=round(report.final_balance, 6),
            spent=round(report.balance.final - report.final_balance, 6)
        )
        return report


async def upload_assets(
    uploader: StorageUploader,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
    reupload: Optional[bool] = None,
    creator: Optional[str] = None,
) -> UploadReport:
    return await AssetUploader(uploader, cfg, sleep, creator).run(AssetLayout(cfg.assets_dir), reupload)
