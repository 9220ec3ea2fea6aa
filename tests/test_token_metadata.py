"""
Tests for token metadata instruction building and account decoding.
"""

import struct

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from nft_forge.core.exceptions import ValidationError
from nft_forge.services.token_metadata import (
    TOKEN_METADATA_PROGRAM_ID,
    AssetData,
    Creator,
    TokenStandard,
    burn_v1,
    compute_budget_instructions,
    create_v1,
    decode_metadata,
    find_associated_token_address,
    find_master_edition_pda,
    find_metadata_pda,
    find_token_record_pda,
    mint_v1,
    verify_collection_v1,
)

from conftest import encode_metadata, parse_create_data


@pytest.fixture
def mint():
    return Keypair().pubkey()


@pytest.fixture
def authority():
    return Keypair().pubkey()


def test_pdas_are_distinct_and_deterministic(mint, authority):
    metadata = find_metadata_pda(mint)
    token = find_associated_token_address(authority, mint)

    assert metadata == find_metadata_pda(mint)
    assert metadata != find_master_edition_pda(mint)
    assert find_token_record_pda(mint, token) not in (metadata, token)


def test_asset_data_layout():
    asset = AssetData(name="A", symbol="S", uri="http://x", seller_fee_basis_points=500)

    assert asset.serialize() == b"".join([
        struct.pack("<I", 1) + b"A",
        struct.pack("<I", 1) + b"S",
        struct.pack("<I", 8) + b"http://x",
        struct.pack("<H", 500),
        b"\x00",  # creators
        b"\x00",  # primary sale
        b"\x01",  # mutable
        b"\x04",  # programmable non-fungible
        b"\x00",  # collection
        b"\x00",  # uses
        b"\x00",  # collection details
        b"\x00",  # rule set
    ])


def test_asset_data_rejects_long_name():
    with pytest.raises(ValidationError):
        AssetData(name="x" * 33, symbol="", uri="http://x", seller_fee_basis_points=0).serialize()


def test_create_v1_for_collection_member(mint, authority):
    collection = Keypair().pubkey()
    asset = AssetData(
        name="NFT #1",
        symbol="NFT",
        uri="https://node.test/1",
        seller_fee_basis_points=1000,
        creators=[Creator(address=authority, verified=True, share=100)],
        collection=collection,
    )

    instruction = create_v1(mint, authority, authority, asset)

    assert instruction.program_id == TOKEN_METADATA_PROGRAM_ID
    assert bytes(instruction.data)[:2] == bytes([42, 0])
    assert len(instruction.accounts) == 9
    assert instruction.accounts[0].pubkey == find_metadata_pda(mint)
    assert instruction.accounts[2].pubkey == mint
    assert instruction.accounts[2].is_signer

    parsed = parse_create_data(bytes(instruction.data))
    assert parsed["name"] == "NFT #1"
    assert parsed["collection"] == collection
    assert parsed["collection_size"] is None


def test_create_v1_for_sized_collection(mint, authority):
    asset = AssetData(name="C", symbol="", uri="https://node.test/c", seller_fee_basis_points=0, collection_size=0)

    data = bytes(create_v1(mint, authority, authority, asset).data)

    assert parse_create_data(data)["collection_size"] == 0
    # decimals Some(0), print supply Some(Zero)
    assert data.endswith(b"\x01\x00\x01\x00")


def test_mint_v1_programmable_uses_token_record(mint, authority):
    instruction = mint_v1(mint, authority, authority, authority)

    token = find_associated_token_address(authority, mint)
    assert bytes(instruction.data) == bytes([43, 0]) + struct.pack("<Q", 1) + b"\x00"
    assert len(instruction.accounts) == 15
    assert instruction.accounts[0].pubkey == token
    assert instruction.accounts[4].pubkey == find_token_record_pda(mint, token)
    assert instruction.accounts[13].pubkey == TOKEN_METADATA_PROGRAM_ID
    assert instruction.accounts[14].pubkey == TOKEN_METADATA_PROGRAM_ID


def test_mint_v1_non_programmable_skips_token_record(mint, authority):
    rule_set = Keypair().pubkey()
    instruction = mint_v1(mint, authority, authority, authority, TokenStandard.NON_FUNGIBLE, rule_set=rule_set)

    assert instruction.accounts[4].pubkey == TOKEN_METADATA_PROGRAM_ID
    assert instruction.accounts[14].pubkey == rule_set


def test_verify_collection_v1(mint, authority):
    collection = Keypair().pubkey()

    instruction = verify_collection_v1(mint, collection, authority)

    assert bytes(instruction.data) == bytes([52, 1])
    assert instruction.accounts[0].pubkey == authority
    assert instruction.accounts[0].is_signer
    assert instruction.accounts[2].pubkey == find_metadata_pda(mint)
    assert instruction.accounts[4].pubkey == find_metadata_pda(collection)


def test_burn_v1(mint, authority):
    collection = Keypair().pubkey()

    instruction = burn_v1(mint, authority, collection_mint=collection)

    assert bytes(instruction.data) == bytes([41, 0]) + struct.pack("<Q", 1)
    assert len(instruction.accounts) == 14
    assert instruction.accounts[1].pubkey == find_metadata_pda(collection)
    assert instruction.accounts[2].pubkey == find_metadata_pda(mint)


def test_compute_budget_price_has_floor():
    limit, price = compute_budget_instructions(250_000, 0)

    program = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
    assert limit.program_id == program
    assert price.program_id == program
    assert bytes(price.data)[1:] == struct.pack("<Q", 1)


def test_decode_metadata(mint, authority):
    collection = Keypair().pubkey()
    data = encode_metadata(
        mint, authority, name="NFT #7", uri="https://node.test/7",
        collection=collection, verified=True,
    )

    metadata = decode_metadata(data)

    assert metadata.mint == str(mint)
    assert metadata.update_authority == str(authority)
    assert metadata.name == "NFT #7"
    assert metadata.uri == "https://node.test/7"
    assert metadata.token_standard is TokenStandard.PROGRAMMABLE_NON_FUNGIBLE
    assert metadata.is_verified_member_of(str(collection))
    assert not metadata.is_verified_member_of(str(mint))


def test_decode_metadata_strips_padding(mint, authority):
    data = encode_metadata(mint, authority, name="Short" + "\x00" * 27, token_standard=None)

    metadata = decode_metadata(data)

    assert metadata.name == "Short"
    assert metadata.token_standard is None
    assert metadata.collection_key is None


def test_decode_rejects_other_accounts():
    with pytest.raises(ValidationError):
        decode_metadata(bytes([1]) + bytes(100))
    with pytest.raises(ValidationError):
        decode_metadata(bytes([4]) + bytes(10))
