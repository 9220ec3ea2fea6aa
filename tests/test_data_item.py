"""
Tests for ANS-104 data item encoding.
"""

import base64
import hashlib
import struct

import pytest
from solders.keypair import Keypair

from nft_forge.core.exceptions import ValidationError
from nft_forge.services.data_item import (
    ANCHOR_LENGTH,
    create_data_item,
    deep_hash,
    encode_tags,
    new_anchor,
    signing_payload,
)


@pytest.fixture
def signer():
    return Keypair.from_seed(bytes(range(32)))


def test_encode_single_tag():
    encoded = encode_tags([("Content-Type", "image/png")])

    assert encoded == b"\x02" + b"\x18Content-Type" + b"\x12image/png" + b"\x00"


def test_encode_no_tags():
    assert encode_tags([]) == b""


def test_encode_rejects_empty_tag_value():
    with pytest.raises(ValidationError):
        encode_tags([("Content-Type", "")])


def test_deep_hash_blob():
    expected = hashlib.sha384(
        hashlib.sha384(b"blob3").digest() + hashlib.sha384(b"abc").digest()
    ).digest()

    assert deep_hash(b"abc") == expected


def test_deep_hash_distinguishes_structure():
    assert deep_hash([b"a", b"b"]) != deep_hash([b"b", b"a"])
    assert deep_hash([b"a", [b"b"]]) != deep_hash([b"a", b"b"])
    assert deep_hash([]) == hashlib.sha384(b"list0").digest()


def test_anchor_is_32_ascii_bytes():
    anchor = new_anchor()

    assert len(anchor) == ANCHOR_LENGTH
    anchor.decode("ascii")


def test_data_item_layout(signer):
    data = b'{"name": "NFT"}'
    anchor = b"a" * 32
    item = create_data_item(data, signer, [("Content-Type", "application/json")], anchor=anchor)

    raw = item.to_bytes()
    assert struct.unpack_from("<H", raw, 0) == (2,)
    assert raw[2:66] == item.signature
    assert raw[66:98] == bytes(signer.pubkey())
    assert raw[98] == 0
    assert raw[99] == 1
    assert raw[100:132] == anchor
    assert struct.unpack_from("<QQ", raw, 132) == (1, len(item.raw_tags))
    assert raw[148:148 + len(item.raw_tags)] == item.raw_tags
    assert raw.endswith(data)


def test_data_item_signature_and_id(signer):
    anchor = b"b" * 32
    item = create_data_item(b"payload", signer, [("Content-Type", "image/png")], anchor=anchor)

    payload = signing_payload(bytes(signer.pubkey()), anchor, item.raw_tags, b"payload")
    assert item.signature == bytes(signer.sign_message(payload))

    expected_id = base64.urlsafe_b64encode(hashlib.sha256(item.signature).digest()).rstrip(b"=").decode()
    assert item.id == expected_id
    assert len(item.id) == 43


def test_data_item_rejects_bad_anchor(signer):
    with pytest.raises(ValidationError):
        create_data_item(b"x", signer, anchor=b"short")
