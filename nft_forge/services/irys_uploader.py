"""
Irys bundler node client for Solana-funded uploads.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

import httpx
import structlog
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from ..core.config import Settings, settings
from ..core.exceptions import StorageError, ValidationError
from .assets import mime_type_for
from .data_item import Tag, create_data_item
from .solana_client import lamports_to_sol, sol_to_lamports


logger = structlog.get_logger(__name__)

TOKEN = "solana"

# Sends `lamports` to the node's deposit address and returns the signature
Transfer = Callable[[Pubkey, int], Awaitable[str]]


@dataclass
class UploadReceipt:
    id: str
    size: int
    content_type: str


def gateway_urls(transaction_id: str, cfg: Settings = settings) -> Tuple[str, str]:
    """Irys and Arweave gateway URLs for an upload id."""
    return (
        f"{cfg.base_irys_url.rstrip('/')}/{transaction_id}",
        f"{cfg.base_arweave_url.rstrip('/')}/{transaction_id}",
    )


class IrysUploader:
    """
    Uploads files as signed data items and keeps the node balance funded.

    Node balance is reported in SOL; the node itself counts lamports.
    """

    supports_funding = True

    def __init__(
        self,
        signer: Keypair,
        transfer: Transfer,
        node_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.signer = signer
        self.transfer = transfer
        self.node_url = (node_url or settings.base_irys_url).rstrip("/")
        self.http = http_client or httpx.AsyncClient(timeout=timeout)
        self._deposit_address: Optional[Pubkey] = None
        self._pending_funding: Optional[str] = None
        self.logger = logger.bind(service="irys_uploader", node=self.node_url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.http.aclose()

    @property
    def address(self) -> str:
        return str(self.signer.pubkey())

    def urls(self, transaction_id: str, cfg: Settings = settings) -> Tuple[str, str]:
        return gateway_urls(transaction_id, cfg)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.node_url}{path}"
        try:
            response = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise StorageError(f"Request to {url} failed: {e}", {"url": url})

        if response.status_code >= 400:
            raise StorageError(
                f"Node returned {response.status_code} for {path}: {response.text[:200]}",
                {"url": url, "status": response.status_code}
            )
        return response

    async def deposit_address(self) -> Pubkey:
        """The node's Solana address that receives funding transfers."""
        if self._deposit_address is None:
            info = (await self._request("GET", "/info")).json()
            address = (info.get("addresses") or {}).get(TOKEN)
            if not address:
                raise StorageError("Node does not accept Solana funding", {"node": self.node_url})
            self._deposit_address = Pubkey.from_string(address)
        return self._deposit_address

    async def get_balance(self) -> float:
        """Loaded node balance in SOL."""
        response = await self._request(
            "GET", f"/account/balance/{TOKEN}", params={"address": self.address}
        )
        atomic = int(response.json().get("balance", 0))
        return lamports_to_sol(atomic)

    async def fund(self, amount: float) -> str:
        """
        Transfer `amount` SOL to the node and register the transaction.

        A transfer whose registration failed is kept pending; the next call
        registers it again instead of sending another transfer.
        """
        lamports = sol_to_lamports(amount)
        if lamports <= 0:
            raise ValidationError("Funding amount must be positive", {"amount": amount})

        if self._pending_funding is None:
            to = await self.deposit_address()
            self._pending_funding = await self.transfer(to, lamports)
        else:
            self.logger.info("Registering pending funding transfer", signature=self._pending_funding)

        signature = self._pending_funding
        await self.register_funding(signature)
        self._pending_funding = None

        self.logger.info("Node funded", amount=amount, signature=signature)
        return signature

    async def register_funding(self, signature: str):
        """Tell the node about a transfer to its deposit address."""
        await self._request("POST", f"/account/balance/{TOKEN}", json={"tx_id": signature})

    async def upload_bytes(self, data: bytes, tags: List[Tag]) -> UploadReceipt:
        item = create_data_item(data, self.signer, tags)
        response = await self._request(
            "POST",
            f"/tx/{TOKEN}",
            content=item.to_bytes(),
            headers={"Content-Type": "application/octet-stream"},
        )
        body: Dict = response.json() if response.content else {}
        upload_id = body.get("id") or item.id
        content_type = dict(tags).get("Content-Type", "application/octet-stream")
        return UploadReceipt(id=upload_id, size=len(data), content_type=content_type)

    async def upload_file(self, path: Union[str, Path]) -> UploadReceipt:
        path = Path(path)
        content_type = mime_type_for(path)
        if content_type is None:
            raise ValidationError(f"Unsupported file type: {path.name}", {"path": str(path)})
        if not path.is_file():
            raise ValidationError(f"File not found: {path}", {"path": str(path)})

        receipt = await self.upload_bytes(path.read_bytes(), [("Content-Type", content_type)])
        self.logger.info("File uploaded", file=str(path), id=receipt.id, size=receipt.size)
        return receipt
