"""
Configuration management using Pydantic Settings.
Supports the devnet, testnet and mainnet-beta clusters.
"""

from pathlib import Path
from typing import Optional, Dict

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..resilience.retry import Backoff, RetryPolicy
from ..resilience.balance import FundingThreshold


CLUSTER_RPC_URLS = {
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}

WALLET_FILENAMES = {
    "devnet": "devnet-id.json",
    "testnet": "testnet-id.json",
    "mainnet-beta": "mainnet-id.json",
}


class Settings(BaseSettings):
    """Pipeline settings read from `.env` and the environment."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Network
    cluster: str = "devnet"
    solana_rpc_url: Optional[str] = None
    solana_commitment: str = "confirmed"
    rpc_timeout: int = 30  # seconds

    # Wallet and assets
    keypair_path: Optional[str] = None
    wallets_dir: str = "wallets"
    assets_path: str = "./assets"
    volume: Optional[str] = None

    # Storage
    base_irys_url: str = "https://devnet.irys.xyz"
    base_arweave_url: str = "https://arweave.net"
    reupload_metadata: bool = False
    upload_backend: str = "irys"  # irys or arweave
    arweave_wallet: Optional[str] = None  # JWK keyfile for direct Arweave uploads
    arweave_node_url: Optional[str] = None
    single_nft_pair: Optional[str] = None  # only upload files whose name contains this

    # Retry settings (delays in seconds)
    retry_attempts: int = 3
    retry_delay: float = 3.0
    upload_attempts: int = 5
    upload_delay: float = 3.0
    fund_attempts: int = 3
    fund_delay: float = 5.0
    airdrop_attempts: int = 5
    airdrop_delay: float = 3.0
    mint_attempts: int = 3
    mint_delay: float = 2.0
    visibility_retries: int = 10
    visibility_delay: float = 3.0

    # Funding thresholds (SOL)
    storage_min_balance: float = 0.05
    storage_top_up: float = 0.05
    storage_hard_floor: float = 0.01
    wallet_min_balance: float = 0.5
    wallet_airdrop_amount: float = 1.0
    wallet_hard_floor: float = 0.01

    # Minting
    parallel_batch_size: int = 12
    start_index: int = 0
    max_to_mint: int = 0  # 0 = no limit
    compute_microlamports: int = 500
    compute_unit_limit: int = 250_000
    seller_fee_basis_points: int = 1000
    rule_set: Optional[str] = None
    rule_set_name: str = "MyRoyaltyRuleSet"
    failure_mode: str = "continue"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # json or console
    log_file: Optional[str] = None

    @field_validator("cluster")
    @classmethod
    def validate_cluster(cls, v: str) -> str:
        if v not in CLUSTER_RPC_URLS:
            raise ValueError(
                f"Invalid CLUSTER value: {v}. Must be one of: {list(CLUSTER_RPC_URLS)}"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("failure_mode")
    @classmethod
    def validate_failure_mode(cls, v: str) -> str:
        if v.lower() not in ("continue", "abort"):
            raise ValueError("Failure mode must be 'continue' or 'abort'")
        return v.lower()

    @field_validator("upload_backend")
    @classmethod
    def validate_upload_backend(cls, v: str) -> str:
        if v.lower() not in ("irys", "arweave"):
            raise ValueError("Upload backend must be 'irys' or 'arweave'")
        return v.lower()

    @field_validator("compute_microlamports")
    @classmethod
    def validate_compute_price(cls, v: int) -> int:
        return max(v, 1)

    @field_validator("parallel_batch_size", "retry_attempts", "upload_attempts",
                     "fund_attempts", "airdrop_attempts", "mint_attempts",
                     "visibility_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v

    @property
    def is_devnet(self) -> bool:
        return self.cluster == "devnet"

    @property
    def rpc_url(self) -> str:
        return self.solana_rpc_url or CLUSTER_RPC_URLS[self.cluster]

    @property
    def wallet_path(self) -> Path:
        """Keypair file, `wallets/<cluster>-id.json` unless overridden."""
        if self.keypair_path:
            return Path(self.keypair_path).expanduser()
        return Path(self.wallets_dir) / WALLET_FILENAMES[self.cluster]

    @property
    def arweave_api_url(self) -> str:
        return self.arweave_node_url or self.base_arweave_url

    @property
    def assets_dir(self) -> Path:
        if self.volume:
            return Path("volumes") / VolumeConfig.folder_for(self.volume) / "assets"
        return Path(self.assets_path)


# Global settings instance
settings = Settings()


class VolumeConfig:
    """Known collection volumes. The JSON metadata files hold the real data."""

    VOLUMES: Dict[str, Dict[str, object]] = {
        "vol01": {
            "folder_name": "vol01-drain-the-swamp",
            "display_name": "Drain The Swamp",
            "royalty_percent": 10,
            "max_nfts": 12,
        },
        "vol02": {
            "folder_name": "vol02-next-project",
            "display_name": "Trumpcession",
            "royalty_percent": 10,
            "max_nfts": 20,
        },
        "vol03": {
            "folder_name": "vol03-third-project",
            "display_name": "Trumps Touch",
            "royalty_percent": 10,
            "max_nfts": 30,
        },
    }

    @classmethod
    def folder_for(cls, volume: str) -> str:
        """Unknown volume keys are used as folder names directly."""
        return str(cls.VOLUMES.get(volume, {}).get("folder_name", volume))


class RetryConfig:
    """Per-call-site retry policies built from settings."""

    @staticmethod
    def default(cfg: Settings = settings) -> RetryPolicy:
        return RetryPolicy(cfg.retry_attempts, cfg.retry_delay)

    @staticmethod
    def upload(cfg: Settings = settings) -> RetryPolicy:
        return RetryPolicy(cfg.upload_attempts, cfg.upload_delay)

    @staticmethod
    def fund(cfg: Settings = settings) -> RetryPolicy:
        return RetryPolicy(cfg.fund_attempts, cfg.fund_delay, Backoff.LINEAR)

    @staticmethod
    def airdrop(cfg: Settings = settings) -> RetryPolicy:
        return RetryPolicy(cfg.airdrop_attempts, cfg.airdrop_delay)

    @staticmethod
    def mint(cfg: Settings = settings) -> RetryPolicy:
        return RetryPolicy(cfg.mint_attempts, cfg.mint_delay)

    @staticmethod
    def visibility(cfg: Settings = settings) -> RetryPolicy:
        return RetryPolicy(cfg.visibility_retries, cfg.visibility_delay)

    @staticmethod
    def storage_threshold(cfg: Settings = settings) -> FundingThreshold:
        return FundingThreshold(
            min_balance=cfg.storage_min_balance,
            top_up_amount=cfg.storage_top_up,
            hard_floor=cfg.storage_hard_floor,
        )

    @staticmethod
    def wallet_threshold(cfg: Settings = settings) -> FundingThreshold:
        return FundingThreshold(
            min_balance=cfg.wallet_min_balance,
            top_up_amount=cfg.wallet_airdrop_amount,
            hard_floor=cfg.wallet_hard_floor,
        )
