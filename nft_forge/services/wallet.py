"""
Wallet key helpers: base58 secret keys to JSON keypair files and back.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Union

import base58
import structlog
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..core.exceptions import InvalidAddressError, ValidationError


logger = structlog.get_logger(__name__)

SECRET_KEY_LENGTH = 64


@dataclass
class WalletInfo:
    """Public key and base58 secret of a keypair file."""
    pubkey: str
    secret_base58: str


def decode_secret(secret_base58: str) -> List[int]:
    """Decode a base58 secret key (as exported by Phantom) into 64 ints."""
    try:
        raw = base58.b58decode(secret_base58.strip())
    except ValueError as e:
        raise ValidationError(f"Secret key is not valid base58: {e}")
    if len(raw) != SECRET_KEY_LENGTH:
        raise ValidationError(
            f"Secret key must decode to {SECRET_KEY_LENGTH} bytes, got {len(raw)}",
            {"length": len(raw)}
        )
    return list(raw)


def keypair_from_array(secret: Sequence[int]) -> Keypair:
    """Build a keypair from the JSON array format used by the Solana CLI."""
    if len(secret) != SECRET_KEY_LENGTH:
        raise ValidationError(
            f"JSON key is invalid or does not contain {SECRET_KEY_LENGTH} elements.",
            {"length": len(secret)}
        )
    try:
        return Keypair.from_bytes(bytes(secret))
    except ValueError as e:
        raise ValidationError(f"Keypair bytes are invalid: {e}")


def load_keypair(path: Union[str, Path]) -> Keypair:
    """Load a keypair from a JSON array file."""
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Keypair file not found at path: {path}", {"path": str(path)})
    try:
        secret = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Keypair file is not valid JSON: {e}", {"path": str(path)})
    if not isinstance(secret, list):
        raise ValidationError("Keypair file must contain a JSON array", {"path": str(path)})
    return keypair_from_array(secret)


def save_wallet(secret_base58: str, path: Union[str, Path], overwrite: bool = False) -> Path:
    """
    Write a base58 secret to `path` as a JSON array.

    Raises:
        ValidationError: if the key is malformed or the file exists and
            `overwrite` is False
    """
    path = Path(path)
    secret = decode_secret(secret_base58)
    # Reject keys whose public half does not match the secret half
    keypair_from_array(secret)

    if path.exists() and not overwrite:
        raise ValidationError(
            f"Wallet file already exists: {path}",
            {"path": str(path)}
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(secret), encoding="utf-8")
    logger.info("Wallet file written", path=str(path))
    return path


def read_wallet(path: Union[str, Path]) -> WalletInfo:
    """Read a keypair file and return its public key and base58 secret."""
    keypair = load_keypair(path)
    return WalletInfo(
        pubkey=str(keypair.pubkey()),
        secret_base58=base58.b58encode(bytes(keypair)).decode("ascii"),
    )


def parse_pubkey(address: str) -> Pubkey:
    """Parse a base58 address, failing before any network call."""
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise InvalidAddressError(address, str(e))
