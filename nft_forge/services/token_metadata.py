"""
Metaplex Token Metadata instructions and account decoding.

Instruction data is Borsh, serialized by hand with struct: a one-byte
instruction discriminator, a one-byte args version, then the args.
Optional accounts that are not supplied are passed as the program id.
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Tuple

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import INSTRUCTIONS as SYSVAR_INSTRUCTIONS_ID

from ..core.exceptions import ValidationError


TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
TOKEN_AUTH_RULES_PROGRAM_ID = Pubkey.from_string("auth9SigNpDKz4sJJ1DfCTuZrZNSAgh9sFD3rboVmgg")

# Instruction discriminators
BURN_DISCRIMINATOR = 41
CREATE_DISCRIMINATOR = 42
MINT_DISCRIMINATOR = 43
VERIFY_DISCRIMINATOR = 52

VERIFY_COLLECTION_V1 = 1

METADATA_KEY_V1 = 4


class TokenStandard(IntEnum):
    NON_FUNGIBLE = 0
    FUNGIBLE_ASSET = 1
    FUNGIBLE = 2
    NON_FUNGIBLE_EDITION = 3
    PROGRAMMABLE_NON_FUNGIBLE = 4
    PROGRAMMABLE_NON_FUNGIBLE_EDITION = 5


# PDAs

def find_metadata_pda(mint: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint)],
        TOKEN_METADATA_PROGRAM_ID
    )
    return pda


def find_master_edition_pda(mint: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint), b"edition"],
        TOKEN_METADATA_PROGRAM_ID
    )
    return pda


def find_token_record_pda(mint: Pubkey, token: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(mint), b"token_record", bytes(token)],
        TOKEN_METADATA_PROGRAM_ID
    )
    return pda


def find_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return pda


# Borsh helpers

def _string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<I", len(raw)) + raw


def _option(payload: Optional[bytes]) -> bytes:
    if payload is None:
        return b"\x00"
    return b"\x01" + payload


def _bool(value: bool) -> bytes:
    return b"\x01" if value else b"\x00"


def _optional_account(pubkey: Optional[Pubkey], writable: bool = False, signer: bool = False) -> AccountMeta:
    if pubkey is None:
        return AccountMeta(pubkey=TOKEN_METADATA_PROGRAM_ID, is_signer=False, is_writable=False)
    return AccountMeta(pubkey=pubkey, is_signer=signer, is_writable=writable)


@dataclass
class Creator:
    address: Pubkey
    verified: bool
    share: int

    def serialize(self) -> bytes:
        return bytes(self.address) + _bool(self.verified) + struct.pack("<B", self.share)


@dataclass
class AssetData:
    """CreateV1 asset data."""
    name: str
    symbol: str
    uri: str
    seller_fee_basis_points: int
    creators: Optional[List[Creator]] = None
    primary_sale_happened: bool = False
    is_mutable: bool = True
    token_standard: TokenStandard = TokenStandard.PROGRAMMABLE_NON_FUNGIBLE
    collection: Optional[Pubkey] = None  # always written unverified
    collection_size: Optional[int] = None  # set for a collection NFT
    rule_set: Optional[Pubkey] = None

    def validate(self):
        if len(self.name.encode("utf-8")) > 32:
            raise ValidationError(f"Name longer than 32 bytes: {self.name}", {"name": self.name})
        if len(self.symbol.encode("utf-8")) > 10:
            raise ValidationError(f"Symbol longer than 10 bytes: {self.symbol}", {"symbol": self.symbol})
        if len(self.uri.encode("utf-8")) > 200:
            raise ValidationError(f"URI longer than 200 bytes: {self.uri}", {"uri": self.uri})
        if not 0 <= self.seller_fee_basis_points <= 10000:
            raise ValidationError(
                "seller_fee_basis_points must be between 0 and 10000",
                {"seller_fee_basis_points": self.seller_fee_basis_points}
            )

    def serialize(self) -> bytes:
        self.validate()
        creators = None
        if self.creators is not None:
            creators = struct.pack("<I", len(self.creators)) + b"".join(
                c.serialize() for c in self.creators
            )
        collection = None
        if self.collection is not None:
            collection = _bool(False) + bytes(self.collection)
        collection_details = None
        if self.collection_size is not None:
            # CollectionDetails::V1 { size }
            collection_details = b"\x00" + struct.pack("<Q", self.collection_size)

        return b"".join([
            _string(self.name),
            _string(self.symbol),
            _string(self.uri),
            struct.pack("<H", self.seller_fee_basis_points),
            _option(creators),
            _bool(self.primary_sale_happened),
            _bool(self.is_mutable),
            struct.pack("<B", int(self.token_standard)),
            _option(collection),
            _option(None),  # uses
            _option(collection_details),
            _option(bytes(self.rule_set) if self.rule_set else None),
        ])


# Instructions

def create_v1(
    mint: Pubkey,
    authority: Pubkey,
    payer: Pubkey,
    asset: AssetData,
) -> Instruction:
    """Create metadata and master edition for a new mint (mint must sign)."""
    # decimals: Some(0), print_supply: Some(PrintSupply::Zero)
    data = (
        struct.pack("<BB", CREATE_DISCRIMINATOR, 0)
        + asset.serialize()
        + _option(struct.pack("<B", 0))
        + _option(b"\x00")
    )
    accounts = [
        AccountMeta(pubkey=find_metadata_pda(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=find_master_edition_pda(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=True, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),  # update authority
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=TOKEN_METADATA_PROGRAM_ID, accounts=accounts, data=data)


def mint_v1(
    mint: Pubkey,
    owner: Pubkey,
    authority: Pubkey,
    payer: Pubkey,
    token_standard: TokenStandard = TokenStandard.PROGRAMMABLE_NON_FUNGIBLE,
    rule_set: Optional[Pubkey] = None,
    amount: int = 1,
) -> Instruction:
    """Mint `amount` tokens into the owner's associated token account."""
    token = find_associated_token_address(owner, mint)
    programmable = token_standard in (
        TokenStandard.PROGRAMMABLE_NON_FUNGIBLE,
        TokenStandard.PROGRAMMABLE_NON_FUNGIBLE_EDITION,
    )
    token_record = find_token_record_pda(mint, token) if programmable else None

    # MintArgs::V1 { amount, authorization_data: None }
    data = struct.pack("<BBQ", MINT_DISCRIMINATOR, 0, amount) + _option(None)
    accounts = [
        AccountMeta(pubkey=token, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=find_metadata_pda(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=find_master_edition_pda(mint), is_signer=False, is_writable=True),
        _optional_account(token_record, writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        _optional_account(None),  # delegate record
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        _optional_account(TOKEN_AUTH_RULES_PROGRAM_ID if rule_set else None),
        _optional_account(rule_set),
    ]
    return Instruction(program_id=TOKEN_METADATA_PROGRAM_ID, accounts=accounts, data=data)


def verify_collection_v1(
    mint: Pubkey,
    collection_mint: Pubkey,
    authority: Pubkey,
) -> Instruction:
    """Mark `mint` as a verified member of `collection_mint`."""
    data = struct.pack("<BB", VERIFY_DISCRIMINATOR, VERIFY_COLLECTION_V1)
    accounts = [
        AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        _optional_account(None),  # delegate record
        AccountMeta(pubkey=find_metadata_pda(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=collection_mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=find_metadata_pda(collection_mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=find_master_edition_pda(collection_mint), is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=TOKEN_METADATA_PROGRAM_ID, accounts=accounts, data=data)


def burn_v1(
    mint: Pubkey,
    owner: Pubkey,
    token_standard: TokenStandard = TokenStandard.PROGRAMMABLE_NON_FUNGIBLE,
    collection_mint: Optional[Pubkey] = None,
    amount: int = 1,
) -> Instruction:
    """Burn the owner's token, closing its metadata and edition accounts."""
    token = find_associated_token_address(owner, mint)
    programmable = token_standard in (
        TokenStandard.PROGRAMMABLE_NON_FUNGIBLE,
        TokenStandard.PROGRAMMABLE_NON_FUNGIBLE_EDITION,
    )
    token_record = find_token_record_pda(mint, token) if programmable else None
    collection_metadata = find_metadata_pda(collection_mint) if collection_mint else None

    data = struct.pack("<BBQ", BURN_DISCRIMINATOR, 0, amount)
    accounts = [
        AccountMeta(pubkey=owner, is_signer=True, is_writable=True),
        _optional_account(collection_metadata, writable=True),
        AccountMeta(pubkey=find_metadata_pda(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=find_master_edition_pda(mint), is_signer=False, is_writable=True),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=True),
        AccountMeta(pubkey=token, is_signer=False, is_writable=True),
        _optional_account(None),  # master edition (print editions only)
        _optional_account(None),  # master edition mint
        _optional_account(None),  # master edition token
        _optional_account(None),  # edition marker
        _optional_account(token_record, writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=TOKEN_METADATA_PROGRAM_ID, accounts=accounts, data=data)


# Account decoding

@dataclass
class MetadataAccount:
    """The leading fields of a Metadata account."""
    update_authority: str
    mint: str
    name: str
    symbol: str
    uri: str
    seller_fee_basis_points: int
    primary_sale_happened: bool
    is_mutable: bool
    token_standard: Optional[TokenStandard]
    collection_key: Optional[str]
    collection_verified: bool

    def is_verified_member_of(self, collection_mint: str) -> bool:
        return self.collection_verified and self.collection_key == collection_mint


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        if self.offset + size > len(self.data):
            raise ValidationError(
                "Metadata account data is truncated",
                {"offset": self.offset, "size": size, "length": len(self.data)}
            )
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self.take(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def pubkey(self) -> str:
        return str(Pubkey.from_bytes(self.take(32)))

    def string(self) -> str:
        return self.take(self.u32()).decode("utf-8").rstrip("\x00")

    def flag(self) -> bool:
        return self.u8() == 1


def decode_metadata(data: bytes) -> MetadataAccount:
    """Decode a Metadata account up to its collection field."""
    reader = _Reader(data)
    key = reader.u8()
    if key != METADATA_KEY_V1:
        raise ValidationError(f"Not a metadata account (key {key})", {"key": key})

    update_authority = reader.pubkey()
    mint = reader.pubkey()
    name = reader.string()
    symbol = reader.string()
    uri = reader.string()
    seller_fee = reader.u16()
    if reader.flag():
        count = reader.u32()
        reader.take(count * 34)  # creators: pubkey + verified + share
    primary_sale_happened = reader.flag()
    is_mutable = reader.flag()
    if reader.flag():
        reader.u8()  # edition nonce

    token_standard = None
    if reader.flag():
        token_standard = TokenStandard(reader.u8())

    collection_key, collection_verified = None, False
    if reader.flag():
        collection_verified = reader.flag()
        collection_key = reader.pubkey()

    return MetadataAccount(
        update_authority=update_authority,
        mint=mint,
        name=name,
        symbol=symbol,
        uri=uri,
        seller_fee_basis_points=seller_fee,
        primary_sale_happened=primary_sale_happened,
        is_mutable=is_mutable,
        token_standard=token_standard,
        collection_key=collection_key,
        collection_verified=collection_verified,
    )


def compute_budget_instructions(unit_limit: int, micro_lamports: int) -> Tuple[Instruction, Instruction]:
    """Compute unit limit and priority fee instructions, in that order."""
    return (
        set_compute_unit_limit(unit_limit),
        set_compute_unit_price(max(micro_lamports, 1)),
    )
