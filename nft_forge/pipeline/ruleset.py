"""
Step 2a: create the royalty rule set the programmable NFTs are minted with.

The rule set PDA is derived from the wallet and the rule set name, so an
existing rule set is detected and reused.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from ..core.config import RetryConfig, Settings, settings
from ..resilience import Sleeper, wait_for_visibility
from ..services.assets import AssetLayout, save_rule_set_address
from ..services.solana_client import SolanaClient, explorer_link
from ..services.token_auth_rules import create_or_update_v1, find_rule_set_pda, royalty_rule_set
from .common import ensure_wallet_funded


logger = structlog.get_logger(__name__)


@dataclass
class RuleSetResult:
    address: str
    created: bool
    cache_file: Path
    explorer_url: str
    signature: Optional[str] = None


async def create_rule_set(
    client: SolanaClient,
    cfg: Settings = settings,
    sleep: Optional[Sleeper] = None,
) -> RuleSetResult:
    owner = client.pubkey
    pda = find_rule_set_pda(owner, cfg.rule_set_name)
    address = str(pda)
    revision = royalty_rule_set(owner, cfg.rule_set_name)
    logger.info("Rule set PDA", address=address, name=cfg.rule_set_name)

    signature = None
    if await client.get_account_info(pda) is not None:
        logger.info("Rule set already exists, nothing to create", address=address)
    else:
        await ensure_wallet_funded(client, cfg, sleep)
        signature = await client.send_with_retry(
            lambda: [create_or_update_v1(owner, pda, revision)],
            policy=RetryConfig.default(cfg),
            name=f"create rule set {cfg.rule_set_name}",
            sleep=sleep,
        )
        await wait_for_visibility(
            lambda: client.get_account_info(pda),
            handle=address,
            max_retries=cfg.visibility_retries,
            delay=cfg.visibility_delay,
            sleep=sleep,
            name="fetch rule set",
        )
        logger.info("Rule set created", address=address, signature=signature)

    cache_file = save_rule_set_address(AssetLayout(cfg.assets_dir).cache, address)
    return RuleSetResult(
        address=address,
        created=signature is not None,
        cache_file=cache_file,
        explorer_url=explorer_link("address", address, cfg.cluster),
        signature=signature,
    )
