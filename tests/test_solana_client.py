"""
Tests for SolanaClient against a scripted RPC client.
"""

from types import SimpleNamespace
from typing import List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from nft_forge.core.exceptions import RetryExhaustedError, SolanaRPCError
from nft_forge.resilience import RetryPolicy
from nft_forge.services.solana_client import SolanaClient


def _value(value):
    return SimpleNamespace(value=value)


class FakeRPC:
    """Scripted stand-in for solana's AsyncClient."""

    def __init__(self):
        self.blockhashes: List[Hash] = []
        self.sent = []
        self.send_errors: List[Exception] = []
        self.confirm_error: Optional[Exception] = None
        self.status_err = None
        self.accounts = {}
        self.airdrop_error: Optional[Exception] = None
        self.closed = False

    async def get_latest_blockhash(self):
        blockhash = Hash.new_unique()
        self.blockhashes.append(blockhash)
        return _value(SimpleNamespace(blockhash=blockhash, last_valid_block_height=100))

    async def send_transaction(self, transaction, opts=None):
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(transaction)
        return _value(transaction.signatures[0])

    async def confirm_transaction(self, signature, commitment=None):
        if self.confirm_error is not None:
            raise self.confirm_error
        return _value([SimpleNamespace(err=self.status_err)])

    async def get_account_info(self, address, commitment=None):
        return _value(self.accounts.get(str(address)))

    async def get_balance(self, address, commitment=None):
        return _value(1_500_000_000)

    async def request_airdrop(self, address, lamports, commitment=None):
        if self.airdrop_error is not None:
            raise self.airdrop_error
        return _value("airdropsig")

    async def close(self):
        self.closed = True


@pytest.fixture
def rpc() -> FakeRPC:
    return FakeRPC()


@pytest.fixture
def client(rpc) -> SolanaClient:
    return SolanaClient(Keypair(), commitment="confirmed", client=rpc)


def _transfer(client: SolanaClient):
    return [transfer(TransferParams(
        from_pubkey=client.pubkey,
        to_pubkey=Pubkey.new_unique(),
        lamports=1000
    ))]


@pytest.mark.asyncio
async def test_every_attempt_signs_with_fresh_blockhash(client, rpc, sleeper):
    rpc.send_errors = [RuntimeError("Blockhash not found"), RuntimeError("Blockhash not found")]

    signature = await client.send_with_retry(
        lambda: _transfer(client),
        policy=RetryPolicy(3, 1.0),
        sleep=sleeper
    )

    assert len(rpc.blockhashes) == 3
    assert len(set(rpc.blockhashes)) == 3
    (sent,) = rpc.sent
    assert sent.message.recent_blockhash == rpc.blockhashes[-1]
    assert signature == str(sent.signatures[0])
    assert sleeper.delays == [1.0, 1.0]


@pytest.mark.asyncio
async def test_payer_passed_as_signer_signs_once(client, rpc):
    await client.send_instructions(_transfer(client), signers=[client.payer])

    (sent,) = rpc.sent
    assert len(sent.signatures) == 1


@pytest.mark.asyncio
async def test_on_chain_error_raises(client, rpc):
    rpc.status_err = "InstructionError(0, Custom(1))"

    with pytest.raises(SolanaRPCError) as exc_info:
        await client.send_instructions(_transfer(client))

    assert exc_info.value.details["error"] == "InstructionError(0, Custom(1))"
    assert exc_info.value.details["signature"] == str(rpc.sent[0].signatures[0])


@pytest.mark.asyncio
async def test_unconfirmed_send_keeps_signature(client, rpc):
    rpc.confirm_error = TimeoutError("not confirmed in time")

    with pytest.raises(SolanaRPCError) as exc_info:
        await client.send_instructions(_transfer(client))

    assert exc_info.value.details["signature"] == str(rpc.sent[0].signatures[0])


@pytest.mark.asyncio
async def test_rejected_send_has_no_signature(client, rpc, sleeper):
    rpc.send_errors = [RuntimeError("insufficient lamports")]

    with pytest.raises(RetryExhaustedError) as exc_info:
        await client.send_with_retry(lambda: _transfer(client), policy=RetryPolicy(1, 0), sleep=sleeper)

    assert isinstance(exc_info.value.last_error, SolanaRPCError)
    assert "signature" not in exc_info.value.last_error.details


@pytest.mark.asyncio
async def test_missing_account_is_none(client):
    assert await client.get_account_info(Pubkey.new_unique()) is None


@pytest.mark.asyncio
async def test_account_info_fields(client, rpc):
    address = Pubkey.new_unique()
    owner = Pubkey.new_unique()
    rpc.accounts[str(address)] = SimpleNamespace(
        lamports=5000, owner=owner, executable=False, data=b"\x04abc"
    )

    info = await client.get_account_info(str(address))

    assert info.pubkey == str(address)
    assert info.owner == str(owner)
    assert info.lamports == 5000
    assert info.data == b"\x04abc"


@pytest.mark.asyncio
async def test_balance_in_sol(client):
    assert await client.get_balance() == 1.5


@pytest.mark.asyncio
async def test_airdrop_failure_is_wrapped(client, rpc):
    rpc.airdrop_error = RuntimeError("429 Too Many Requests")

    with pytest.raises(SolanaRPCError) as exc_info:
        await client.request_airdrop(1.0)

    assert "429" in str(exc_info.value)
    assert exc_info.value.details["address"] == str(client.pubkey)


@pytest.mark.asyncio
async def test_airdrop_returns_signature(client):
    assert await client.request_airdrop(1.0) == "airdropsig"


@pytest.mark.asyncio
async def test_close_closes_rpc(rpc):
    async with SolanaClient(Keypair(), client=rpc):
        pass

    assert rpc.closed
