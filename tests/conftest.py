"""
Shared fixtures: a recording sleeper, an in-memory Solana client and
settings pointed at a temporary assets folder.
"""

import json
import struct
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from nft_forge.core.config import Settings
from nft_forge.core.exceptions import SolanaRPCError
from nft_forge.resilience import retry_operation
from nft_forge.services.solana_client import AccountInfo
from nft_forge.services.token_metadata import (
    BURN_DISCRIMINATOR,
    CREATE_DISCRIMINATOR,
    METADATA_KEY_V1,
    TOKEN_AUTH_RULES_PROGRAM_ID,
    TOKEN_METADATA_PROGRAM_ID,
    VERIFY_DISCRIMINATOR,
    TokenStandard,
    find_metadata_pda,
)


class RecordingSleeper:
    """Stands in for asyncio.sleep and records every requested delay."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float):
        self.delays.append(seconds)


def encode_metadata(
    mint: Pubkey,
    update_authority: Pubkey,
    name: str = "Test NFT",
    symbol: str = "TST",
    uri: str = "https://node.test/meta",
    token_standard: Optional[int] = TokenStandard.PROGRAMMABLE_NON_FUNGIBLE,
    collection: Optional[Pubkey] = None,
    verified: bool = False,
) -> bytes:
    """Metadata account bytes as the token metadata program lays them out."""
    def string(value: str) -> bytes:
        raw = value.encode("utf-8")
        return struct.pack("<I", len(raw)) + raw

    data = bytes([METADATA_KEY_V1]) + bytes(update_authority) + bytes(mint)
    data += string(name) + string(symbol) + string(uri)
    data += struct.pack("<H", 1000)
    data += b"\x01" + struct.pack("<I", 1) + bytes(update_authority) + b"\x01" + bytes([100])
    data += b"\x00"  # primary sale happened
    data += b"\x01"  # is mutable
    data += b"\x01" + bytes([255])  # edition nonce
    if token_standard is None:
        data += b"\x00"
    else:
        data += b"\x01" + bytes([int(token_standard)])
    if collection is None:
        data += b"\x00"
    else:
        data += b"\x01" + (b"\x01" if verified else b"\x00") + bytes(collection)
    return data + b"\x00" * 16


def parse_create_data(data: bytes) -> Dict:
    """Name, symbol, uri and collection from CreateV1 instruction data."""
    offset = 2

    def read_string():
        nonlocal offset
        (length,) = struct.unpack_from("<I", data, offset)
        offset += 4
        value = data[offset:offset + length].decode("utf-8")
        offset += length
        return value

    name, symbol, uri = read_string(), read_string(), read_string()
    offset += 2  # seller fee
    if data[offset] == 1:
        (count,) = struct.unpack_from("<I", data, offset + 1)
        offset += 5 + count * 34
    else:
        offset += 1
    offset += 2  # primary sale, is mutable
    token_standard = data[offset]
    offset += 1
    collection = None
    if data[offset] == 1:
        collection = Pubkey.from_bytes(data[offset + 2:offset + 34])
        offset += 34
    else:
        offset += 1
    offset += 1  # uses
    collection_size = None
    if data[offset] == 1:
        (collection_size,) = struct.unpack_from("<Q", data, offset + 2)

    return {
        "name": name,
        "symbol": symbol,
        "uri": uri,
        "token_standard": token_standard,
        "collection": collection,
        "collection_size": collection_size,
    }


class FakeSolanaClient:
    """
    In-memory ledger holding metadata accounts.

    A new metadata account becomes readable on its `visible_after`-th lookup.
    """

    def __init__(self, balance: float = 2.0, visible_after: int = 1):
        self.payer = Keypair()
        self.balance = balance
        self.visible_after = visible_after
        self.accounts: Dict[str, Dict] = {}
        self.lookups: Dict[str, int] = {}
        self.sent: List[list] = []
        self.send_attempts: List[list] = []
        self.fail_sends = 0
        self.land_then_fail = 0
        self.raw_accounts: Dict[str, bytes] = {}
        self.airdrops: List[float] = []
        self.balance_queries = 0

    @property
    def pubkey(self) -> Pubkey:
        return self.payer.pubkey()

    def add_nft(self, mint: Pubkey, collection: Optional[Pubkey] = None, verified: bool = False, **fields):
        self.accounts[str(find_metadata_pda(mint))] = dict(
            mint=mint,
            update_authority=self.pubkey,
            collection=collection,
            verified=verified,
            **fields
        )
        self.lookups[str(find_metadata_pda(mint))] = self.visible_after

    def nft(self, mint) -> Optional[Dict]:
        return self.accounts.get(str(find_metadata_pda(Pubkey.from_string(str(mint)))))

    async def get_balance(self, address=None) -> float:
        self.balance_queries += 1
        return self.balance

    async def request_airdrop(self, amount_sol: float, address=None) -> str:
        self.airdrops.append(amount_sol)
        self.balance += amount_sol
        return f"airdrop{len(self.airdrops)}"

    async def send_instructions(self, instructions, signers=()) -> str:
        self.send_attempts.append(list(instructions))
        if self.fail_sends > 0:
            self.fail_sends -= 1
            raise SolanaRPCError("Blockhash not found")
        self.sent.append(list(instructions))
        for instruction in instructions:
            self._apply(instruction)
        if self.land_then_fail > 0:
            self.land_then_fail -= 1
            raise SolanaRPCError("Transaction was not confirmed", {"signature": f"sig{len(self.sent)}"})
        return f"sig{len(self.sent)}"

    async def send_with_retry(self, build_instructions, signers=(), policy=None, name="send", sleep=None) -> str:
        return await retry_operation(
            lambda: self.send_instructions(build_instructions(), signers),
            policy,
            name=name,
            sleep=sleep
        )

    async def transfer(self, to: Pubkey, lamports: int) -> str:
        return await self.send_instructions([])

    async def get_account_info(self, address) -> Optional[AccountInfo]:
        key = str(address)
        if key in self.raw_accounts:
            return AccountInfo(
                pubkey=key,
                lamports=1_000_000,
                owner=str(TOKEN_AUTH_RULES_PROGRAM_ID),
                executable=False,
                data=self.raw_accounts[key],
            )
        if key not in self.accounts:
            return None
        self.lookups[key] = self.lookups.get(key, 0) + 1
        if self.lookups[key] < self.visible_after:
            return None

        fields = dict(self.accounts[key])
        return AccountInfo(
            pubkey=key,
            lamports=5_616_720,
            owner=str(TOKEN_METADATA_PROGRAM_ID),
            executable=False,
            data=encode_metadata(**fields),
        )

    def _apply(self, instruction):
        if instruction.program_id == TOKEN_AUTH_RULES_PROGRAM_ID:
            self.raw_accounts[str(instruction.accounts[1].pubkey)] = bytes(instruction.data)
            return
        if instruction.program_id != TOKEN_METADATA_PROGRAM_ID:
            return
        data = bytes(instruction.data)
        kind = data[0]
        accounts = instruction.accounts

        if kind == CREATE_DISCRIMINATOR:
            parsed = parse_create_data(data)
            self.accounts[str(accounts[0].pubkey)] = dict(
                mint=accounts[2].pubkey,
                update_authority=self.pubkey,
                name=parsed["name"],
                symbol=parsed["symbol"],
                uri=parsed["uri"],
                token_standard=parsed["token_standard"],
                collection=parsed["collection"],
                verified=False,
            )
        elif kind == VERIFY_DISCRIMINATOR:
            self.accounts[str(accounts[2].pubkey)]["verified"] = True
        elif kind == BURN_DISCRIMINATOR:
            del self.accounts[str(accounts[2].pubkey)]


@pytest.fixture
def sleeper() -> RecordingSleeper:
    return RecordingSleeper()


@pytest.fixture
def fake_client() -> FakeSolanaClient:
    return FakeSolanaClient()


@pytest.fixture
def make_settings(tmp_path: Path):
    """Settings isolated from `.env`, with assets under `tmp_path`."""
    def _make(**overrides) -> Settings:
        values = dict(
            cluster="devnet",
            assets_path=str(tmp_path / "assets"),
            wallets_dir=str(tmp_path / "wallets"),
            base_irys_url="https://node.test",
            base_arweave_url="https://arweave.test",
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def write_metadata():
    """Write a metadata JSON file and return its path."""
    def _write(path: Path, **content) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(content), encoding="utf-8")
        return path

    return _write
