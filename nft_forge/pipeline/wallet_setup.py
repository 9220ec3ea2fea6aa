"""
Step 0: convert a base58 wallet secret into a keypair file, and back.
"""

from pathlib import Path
from typing import Optional

import structlog

from ..core.config import WALLET_FILENAMES, Settings, settings
from ..core.exceptions import ConfigurationError
from ..services.wallet import WalletInfo, read_wallet, save_wallet


logger = structlog.get_logger(__name__)


def wallet_path_for(cluster: str, wallets_dir: Optional[str] = None, cfg: Settings = settings) -> Path:
    if cluster not in WALLET_FILENAMES:
        raise ConfigurationError(
            f"Invalid cluster: {cluster}. Must be one of: {list(WALLET_FILENAMES)}",
            {"cluster": cluster}
        )
    return Path(wallets_dir or cfg.wallets_dir) / WALLET_FILENAMES[cluster]


def convert_secret(
    secret_base58: str,
    cluster: Optional[str] = None,
    wallets_dir: Optional[str] = None,
    overwrite: bool = False,
    cfg: Settings = settings,
) -> Path:
    """Write `<wallets_dir>/<cluster>-id.json` from a base58 secret."""
    path = wallet_path_for(cluster or cfg.cluster, wallets_dir, cfg)
    save_wallet(secret_base58, path, overwrite=overwrite)
    logger.info("Secret converted", cluster=cluster or cfg.cluster, path=str(path))
    return path


def show_wallet(path: Optional[str] = None, cfg: Settings = settings) -> WalletInfo:
    """Public key and base58 secret of the configured (or given) keypair file."""
    return read_wallet(Path(path) if path else cfg.wallet_path)
