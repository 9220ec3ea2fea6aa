"""
Metaplex Token Auth Rules: rule set PDA, revision V2 serialization and the
CreateOrUpdate instruction.

A V2 revision is a flat little-endian layout: lib version, owner, the name
padded to 32 bytes, the operation count, every operation name padded to 32
bytes, then one rule per operation. Each rule starts with an 8-byte header
holding its type and payload length.
"""

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Optional, Union

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from ..core.exceptions import ValidationError
from .token_metadata import TOKEN_AUTH_RULES_PROGRAM_ID


RULE_SET_SEED = b"rule_set"
RULE_SET_LIB_VERSION = 2
NAME_LENGTH = 32

CREATE_OR_UPDATE_DISCRIMINATOR = 0
CREATE_OR_UPDATE_V1 = 0


class RuleType(IntEnum):
    UNINITIALIZED = 0
    ADDITIONAL_SIGNER = 1
    ALL = 2
    AMOUNT = 3
    ANY = 4
    NAMESPACE = 5
    NOT = 6
    PASS = 7


def find_rule_set_pda(owner: Pubkey, name: str) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [RULE_SET_SEED, bytes(owner), name.encode("utf-8")],
        TOKEN_AUTH_RULES_PROGRAM_ID
    )
    return pda


def _fixed_string(value: str, what: str) -> bytes:
    raw = value.encode("utf-8")
    if not raw or len(raw) > NAME_LENGTH:
        raise ValidationError(
            f"{what} must be 1 to {NAME_LENGTH} bytes: {value!r}",
            {what: value}
        )
    return raw.ljust(NAME_LENGTH, b"\x00")


def _rule_header(rule_type: RuleType, length: int) -> bytes:
    return struct.pack("<II", int(rule_type), length)


@dataclass(frozen=True)
class PassRule:
    """Always passes."""

    def serialize(self) -> bytes:
        return _rule_header(RuleType.PASS, 0)


@dataclass(frozen=True)
class AdditionalSignerRule:
    """Passes only when `account` signed the transaction."""
    account: Pubkey

    def serialize(self) -> bytes:
        return _rule_header(RuleType.ADDITIONAL_SIGNER, 32) + bytes(self.account)


Rule = Union[PassRule, AdditionalSignerRule]


@dataclass
class RuleSetRevision:
    name: str
    owner: Pubkey
    operations: Dict[str, Rule] = field(default_factory=dict)

    def serialize(self) -> bytes:
        if not self.operations:
            raise ValidationError("A rule set needs at least one operation", {"name": self.name})
        names = list(self.operations)
        return b"".join([
            struct.pack("<I", RULE_SET_LIB_VERSION),
            bytes(self.owner),
            _fixed_string(self.name, "name"),
            struct.pack("<I", len(names)),
            *(_fixed_string(op, "operation") for op in names),
            *(self.operations[op].serialize() for op in names),
        ])


def royalty_rule_set(owner: Pubkey, name: str) -> RuleSetRevision:
    """
    Let every transfer and delegation pass, except the plain `Transfer`
    operation, which also needs the owner's signature.
    """
    passing = [
        "Transfer:WalletToWallet",
        "Transfer:Owner",
        "Transfer:SaleDelegate",
        "Delegate:LockedTransfer",
        "Delegate:Update",
        "Delegate:Transfer",
        "Delegate:Sale",
        "Delegate:Authority",
        "Delegate:Collection",
        "Delegate:Use",
        "Transfer:MigrationDelegate",
        "Transfer:TransferDelegate",
    ]
    operations: Dict[str, Rule] = {op: PassRule() for op in passing}
    operations["Transfer"] = AdditionalSignerRule(owner)
    return RuleSetRevision(name=name, owner=owner, operations=operations)


def create_or_update_v1(
    payer: Pubkey,
    rule_set_pda: Pubkey,
    revision: RuleSetRevision,
    buffer_pda: Optional[Pubkey] = None,
) -> Instruction:
    """Create the rule set account, or append a revision to it."""
    serialized = revision.serialize()
    data = (
        struct.pack("<BB", CREATE_OR_UPDATE_DISCRIMINATOR, CREATE_OR_UPDATE_V1)
        + struct.pack("<I", len(serialized))
        + serialized
    )
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=rule_set_pda, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(
            pubkey=buffer_pda or TOKEN_AUTH_RULES_PROGRAM_ID,
            is_signer=False,
            is_writable=False
        ),
    ]
    return Instruction(program_id=TOKEN_AUTH_RULES_PROGRAM_ID, accounts=accounts, data=data)
