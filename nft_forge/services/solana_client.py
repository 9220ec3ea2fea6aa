"""
Solana RPC client service for the pipeline steps.
Provides balance queries, devnet airdrops, transaction submission and
account lookups as narrow async capabilities.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
import structlog

from ..core.config import settings
from ..core.exceptions import SolanaRPCError
from ..resilience.retry import RetryPolicy, Sleeper, retry_operation


logger = structlog.get_logger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

InstructionBuilder = Callable[[], Sequence[Instruction]]


def lamports_to_sol(lamports: int) -> float:
    return lamports / LAMPORTS_PER_SOL


def sol_to_lamports(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))


def explorer_link(kind: str, value: str, cluster: str = "devnet") -> str:
    """Solana Explorer URL for an address or transaction."""
    url = f"https://explorer.solana.com/{kind}/{value}"
    if cluster != "mainnet-beta":
        url += f"?cluster={cluster}"
    return url


@dataclass
class AccountInfo:
    """Account information from Solana blockchain."""
    pubkey: str
    lamports: int
    owner: str
    executable: bool
    data: bytes


class SolanaClient:
    """
    Async Solana RPC client bound to one paying wallet.

    Transactions are always signed against a blockhash fetched inside
    `send_instructions`, so a retried send never reuses an expired one.
    """

    def __init__(
        self,
        payer: Keypair,
        rpc_url: Optional[str] = None,
        commitment: Optional[str] = None,
        timeout: Optional[int] = None,
        client: Optional[AsyncClient] = None,
    ):
        self.payer = payer
        self.commitment = Commitment(commitment or settings.solana_commitment)
        self.client = client or AsyncClient(
            endpoint=rpc_url or settings.rpc_url,
            commitment=self.commitment,
            timeout=timeout or settings.rpc_timeout
        )
        self.logger = logger.bind(service="solana_client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Close the RPC client connection."""
        await self.client.close()

    @property
    def pubkey(self) -> Pubkey:
        return self.payer.pubkey()

    async def get_balance(self, address: Optional[Pubkey] = None) -> float:
        """Balance in SOL of `address` (the payer by default)."""
        address = address or self.pubkey
        try:
            response = await self.client.get_balance(address, commitment=self.commitment)
        except Exception as e:
            self.logger.error("Failed to get balance", address=str(address), error=str(e))
            raise SolanaRPCError(f"Failed to get balance: {e}", {"address": str(address)})
        return lamports_to_sol(response.value)

    async def request_airdrop(self, amount_sol: float, address: Optional[Pubkey] = None) -> str:
        """Request a devnet airdrop and wait for confirmation."""
        address = address or self.pubkey
        lamports = sol_to_lamports(amount_sol)
        try:
            response = await self.client.request_airdrop(address, lamports, commitment=self.commitment)
            signature = response.value
            await self.client.confirm_transaction(signature, commitment=self.commitment)
        except Exception as e:
            self.logger.warning("Airdrop failed", address=str(address), amount=amount_sol, error=str(e))
            raise SolanaRPCError(f"Airdrop failed: {e}", {"address": str(address)})

        self.logger.info("Airdrop confirmed", address=str(address), amount=amount_sol, signature=str(signature))
        return str(signature)

    async def send_instructions(
        self,
        instructions: Sequence[Instruction],
        signers: Sequence[Keypair] = (),
    ) -> str:
        """
        Sign `instructions` with a fresh blockhash, send and confirm.

        When sending succeeded but confirmation did not, the raised error
        carries the signature in its details.
        """
        signature = None
        try:
            blockhash_resp = await self.client.get_latest_blockhash()
            blockhash = blockhash_resp.value.blockhash

            message = Message.new_with_blockhash(list(instructions), self.pubkey, blockhash)
            transaction = Transaction(self._unique_signers(signers), message, blockhash)

            opts = TxOpts(skip_preflight=False, preflight_commitment=self.commitment)
            response = await self.client.send_transaction(transaction, opts=opts)
            signature = response.value

            confirmation = await self.client.confirm_transaction(signature, commitment=self.commitment)
        except Exception as e:
            self.logger.warning("Transaction failed", error=str(e), error_type=type(e).__name__)
            details = {"signature": str(signature)} if signature is not None else {}
            raise SolanaRPCError(f"Transaction failed: {e}", details)

        status = confirmation.value[0] if confirmation.value else None
        if status is not None and status.err is not None:
            raise SolanaRPCError(
                f"Transaction {signature} failed on-chain: {status.err}",
                {"signature": str(signature), "error": str(status.err)}
            )

        self.logger.debug("Transaction confirmed", signature=str(signature))
        return str(signature)

    async def send_with_retry(
        self,
        build_instructions: InstructionBuilder,
        signers: Sequence[Keypair] = (),
        policy: Optional[RetryPolicy] = None,
        name: str = "send transaction",
        sleep: Optional[Sleeper] = None,
    ) -> str:
        """Rebuild the instructions and the transaction on every attempt."""
        return await retry_operation(
            lambda: self.send_instructions(build_instructions(), signers),
            policy,
            name=name,
            sleep=sleep
        )

    async def transfer(self, to: Pubkey, lamports: int) -> str:
        """Plain SOL transfer from the payer."""
        instruction = transfer(TransferParams(
            from_pubkey=self.pubkey,
            to_pubkey=to,
            lamports=lamports
        ))
        return await self.send_instructions([instruction])

    async def get_account_info(self, address: Union[str, Pubkey]) -> Optional[AccountInfo]:
        """Account information, or None when the account does not exist (yet)."""
        if isinstance(address, str):
            address = Pubkey.from_string(address)
        try:
            response = await self.client.get_account_info(address, commitment=self.commitment)
        except Exception as e:
            self.logger.error("Failed to get account info", address=str(address), error=str(e))
            raise SolanaRPCError(f"Failed to get account info: {e}", {"address": str(address)})

        account = response.value
        if not account:
            return None

        return AccountInfo(
            pubkey=str(address),
            lamports=account.lamports,
            owner=str(account.owner),
            executable=account.executable,
            data=bytes(account.data)
        )

    def _unique_signers(self, signers: Sequence[Keypair]) -> List[Keypair]:
        unique = [self.payer]
        seen = {self.pubkey}
        for signer in signers:
            if signer.pubkey() not in seen:
                seen.add(signer.pubkey())
                unique.append(signer)
        return unique
