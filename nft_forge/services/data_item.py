"""
ANS-104 data items signed with a Solana (ed25519) key.

Layout: signature type, signature, owner, target flag, anchor flag and
anchor, tag count, tag byte length, Avro-encoded tags, then the data.
"""

import base64
import hashlib
import secrets
import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

from solders.keypair import Keypair

from ..core.exceptions import ValidationError


SIGNATURE_TYPE_ED25519 = 2
ANCHOR_LENGTH = 32

MAX_TAGS = 128
MAX_TAG_NAME_BYTES = 1024
MAX_TAG_VALUE_BYTES = 3072

Tag = Tuple[str, str]
DeepHashChunk = Union[bytes, Sequence["DeepHashChunk"]]


def deep_hash(chunk: DeepHashChunk) -> bytes:
    """Arweave deep hash (SHA-384) of a blob or a nested list of blobs."""
    if isinstance(chunk, (bytes, bytearray)):
        tag = b"blob" + str(len(chunk)).encode("ascii")
        return hashlib.sha384(
            hashlib.sha384(tag).digest() + hashlib.sha384(bytes(chunk)).digest()
        ).digest()

    items = list(chunk)
    acc = hashlib.sha384(b"list" + str(len(items)).encode("ascii")).digest()
    for item in items:
        acc = hashlib.sha384(acc + deep_hash(item)).digest()
    return acc


def _zigzag_varint(value: int) -> bytes:
    encoded = (value << 1) ^ (value >> 63)
    out = bytearray()
    while encoded & ~0x7F:
        out.append((encoded & 0x7F) | 0x80)
        encoded >>= 7
    out.append(encoded)
    return bytes(out)


def _avro_bytes(raw: bytes) -> bytes:
    return _zigzag_varint(len(raw)) + raw


def encode_tags(tags: Sequence[Tag]) -> bytes:
    """Avro array of {name: bytes, value: bytes} records."""
    if not tags:
        return b""
    if len(tags) > MAX_TAGS:
        raise ValidationError(f"Too many tags: {len(tags)}", {"tags": len(tags)})

    out = bytearray(_zigzag_varint(len(tags)))
    for name, value in tags:
        name_raw = name.encode("utf-8")
        value_raw = value.encode("utf-8")
        if not name_raw or len(name_raw) > MAX_TAG_NAME_BYTES:
            raise ValidationError(f"Invalid tag name: {name!r}", {"name": name})
        if not value_raw or len(value_raw) > MAX_TAG_VALUE_BYTES:
            raise ValidationError(f"Invalid tag value for {name!r}", {"name": name})
        out += _avro_bytes(name_raw) + _avro_bytes(value_raw)
    out += b"\x00"
    return bytes(out)


def base64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


@dataclass
class DataItem:
    """A signed data item ready to post to a bundler node."""
    signature: bytes
    owner: bytes
    anchor: bytes
    tags: List[Tag]
    data: bytes
    raw_tags: bytes

    @property
    def id(self) -> str:
        return base64url(hashlib.sha256(self.signature).digest())

    def to_bytes(self) -> bytes:
        return b"".join([
            struct.pack("<H", SIGNATURE_TYPE_ED25519),
            self.signature,
            self.owner,
            b"\x00",  # no target
            b"\x01" + self.anchor,
            struct.pack("<Q", len(self.tags)),
            struct.pack("<Q", len(self.raw_tags)),
            self.raw_tags,
            self.data,
        ])


def signing_payload(owner: bytes, anchor: bytes, raw_tags: bytes, data: bytes) -> bytes:
    return deep_hash([
        b"dataitem",
        b"1",
        str(SIGNATURE_TYPE_ED25519).encode("ascii"),
        owner,
        b"",  # target
        anchor,
        raw_tags,
        data,
    ])


def new_anchor() -> bytes:
    """32 random ASCII bytes."""
    return secrets.token_urlsafe(24).encode("ascii")


def create_data_item(
    data: bytes,
    signer: Keypair,
    tags: Sequence[Tag] = (),
    anchor: Optional[bytes] = None,
) -> DataItem:
    anchor = anchor if anchor is not None else new_anchor()
    if len(anchor) != ANCHOR_LENGTH:
        raise ValidationError(
            f"Anchor must be {ANCHOR_LENGTH} bytes",
            {"length": len(anchor)}
        )

    owner = bytes(signer.pubkey())
    raw_tags = encode_tags(tags)
    signature = bytes(signer.sign_message(signing_payload(owner, anchor, raw_tags, data)))

    return DataItem(
        signature=signature,
        owner=owner,
        anchor=anchor,
        tags=list(tags),
        data=data,
        raw_tags=raw_tags,
    )
