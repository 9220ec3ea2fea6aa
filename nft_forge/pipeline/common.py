"""
Building blocks shared by the minting, verification and burn steps.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..core.config import RetryConfig, Settings, settings
from ..core.exceptions import InsufficientFundsError, SolanaRPCError
from ..resilience import BalanceCheck, FailureMode, Sleeper, ensure_funded, retry_operation, wait_for_visibility
from ..services.assets import AssetLayout, TokenMetadata, load_rule_set_address
from ..services.solana_client import SolanaClient
from ..services.token_metadata import (
    AssetData,
    Creator,
    MetadataAccount,
    compute_budget_instructions,
    create_v1,
    decode_metadata,
    find_metadata_pda,
    mint_v1,
)
from ..services.wallet import parse_pubkey


logger = structlog.get_logger(__name__)


@dataclass
class MintedAsset:
    """A mint that has landed and is readable."""
    mint: str
    signature: str
    name: str


def failure_mode_from(cfg: Settings) -> FailureMode:
    return FailureMode(cfg.failure_mode)


async def ensure_wallet_funded(
    client: SolanaClient,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
) -> BalanceCheck:
    """
    Top up the paying wallet by airdrop on devnet.

    Other clusters cannot airdrop, so only the hard floor is checked.
    """
    threshold = RetryConfig.wallet_threshold(cfg)
    account = str(client.pubkey)

    if cfg.is_devnet:
        return await ensure_funded(
            client.get_balance,
            client.request_airdrop,
            threshold,
            funding_policy=RetryConfig.airdrop(cfg),
            sleep=sleep,
            account=account,
        )

    balance = await client.get_balance()
    if balance < threshold.hard_floor:
        raise InsufficientFundsError(threshold.hard_floor, balance, account)
    if balance < threshold.min_balance:
        logger.warning(
            "Wallet balance below target",
            account=account,
            balance=balance,
            min_balance=threshold.min_balance
        )
    return BalanceCheck(initial=balance, final=balance, funded=False)


async def fetch_metadata(client: SolanaClient, mint: Pubkey) -> Optional[MetadataAccount]:
    """Decoded metadata account of `mint`, or None while it does not exist."""
    account = await client.get_account_info(find_metadata_pda(mint))
    if account is None:
        return None
    return decode_metadata(account.data)


async def wait_for_metadata(
    client: SolanaClient,
    mint: str,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
) -> MetadataAccount:
    mint_pubkey = parse_pubkey(mint)
    return await wait_for_visibility(
        lambda: fetch_metadata(client, mint_pubkey),
        handle=mint,
        max_retries=cfg.visibility_retries,
        delay=cfg.visibility_delay,
        sleep=sleep,
        name="fetch metadata",
    )


def resolve_rule_set(cfg: Settings = settings) -> Optional[Pubkey]:
    """`RULE_SET` when set, otherwise the rule set cached by create-ruleset."""
    if cfg.rule_set:
        return parse_pubkey(cfg.rule_set)
    cached = load_rule_set_address(AssetLayout(cfg.assets_dir).cache)
    return parse_pubkey(cached) if cached else None


async def mint_asset(
    client: SolanaClient,
    metadata: TokenMetadata,
    cfg: Settings = settings,
    collection: Optional[Pubkey] = None,
    collection_size: Optional[int] = None,
    is_mutable: bool = True,
    rule_set: Optional[Pubkey] = None,
    sleep: Optional[Sleeper] = None,
) -> MintedAsset:
    """
    Create and mint one programmable NFT to the paying wallet.

    The mint keypair is created once. Every attempt signs a fresh
    transaction, and a retry first checks whether an earlier attempt landed
    after all, so one asset is never minted twice.
    """
    authority = client.pubkey
    mint = Keypair()
    asset = AssetData(
        name=metadata.name,
        symbol=metadata.symbol,
        uri=metadata.uri,
        seller_fee_basis_points=cfg.seller_fee_basis_points,
        creators=[Creator(address=authority, verified=True, share=100)],
        is_mutable=is_mutable,
        collection=collection,
        collection_size=collection_size,
        rule_set=rule_set,
    )
    attempts = 0
    last_signature = ""

    async def attempt() -> MintedAsset:
        nonlocal attempts, last_signature
        attempts += 1
        if attempts > 1 and await fetch_metadata(client, mint.pubkey()) is not None:
            logger.warning("Earlier mint attempt landed", name=metadata.name, mint=str(mint.pubkey()))
            return MintedAsset(mint=str(mint.pubkey()), signature=last_signature, name=metadata.name)

        instructions = [
            *compute_budget_instructions(cfg.compute_unit_limit, cfg.compute_microlamports),
            create_v1(mint.pubkey(), authority, authority, asset),
            mint_v1(mint.pubkey(), authority, authority, authority, rule_set=rule_set),
        ]
        try:
            signature = await client.send_instructions(instructions, [mint])
        except SolanaRPCError as e:
            last_signature = e.details.get("signature", last_signature)
            raise
        return MintedAsset(mint=str(mint.pubkey()), signature=signature, name=metadata.name)

    minted = await retry_operation(
        attempt,
        RetryConfig.mint(cfg),
        name=f"mint {metadata.name}",
        sleep=sleep
    )
    logger.info("Asset minted", name=minted.name, mint=minted.mint, signature=minted.signature)
    return minted
