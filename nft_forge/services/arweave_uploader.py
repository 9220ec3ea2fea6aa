"""
Direct Arweave uploads paid from an Arweave (JWK) wallet.

Files are posted as format 2 transactions: the data is split into chunks,
its merkle root is signed together with the transaction fields, and the
whole transaction (data included) is posted to the node.
"""

import base64
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import structlog
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..core.config import Settings, settings
from ..core.exceptions import StorageError, ValidationError
from .assets import mime_type_for
from .data_item import Tag, base64url, deep_hash
from .irys_uploader import UploadReceipt


logger = structlog.get_logger(__name__)

WINSTON_PER_AR = 10 ** 12

MAX_CHUNK_SIZE = 256 * 1024
MIN_CHUNK_SIZE = 32 * 1024
NOTE_SIZE = 32

JWK_FIELDS = ("n", "e", "d", "p", "q", "dp", "dq", "qi")


def winston_to_ar(winston: int) -> float:
    return winston / WINSTON_PER_AR


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _b64url_int(value: str) -> int:
    return int.from_bytes(b64url_decode(value), "big")


def arweave_urls(transaction_id: str, cfg: Settings = settings) -> Tuple[str, str]:
    """Both gateway URLs point at arweave for direct uploads."""
    url = f"{cfg.base_arweave_url.rstrip('/')}/{transaction_id}"
    return url, url


# Wallet

def load_jwk(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path).expanduser()
    if not path.is_file():
        raise ValidationError(f"Arweave wallet file not found at path: {path}", {"path": str(path)})
    try:
        jwk = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid Arweave wallet file {path}: {e}", {"path": str(path)})

    missing = [name for name in JWK_FIELDS if not isinstance(jwk, dict) or name not in jwk]
    if missing:
        raise ValidationError(
            f"Arweave wallet {path} is missing fields: {', '.join(missing)}",
            {"path": str(path), "missing": missing}
        )
    return jwk


def private_key_from_jwk(jwk: Dict[str, Any]) -> rsa.RSAPrivateKey:
    public = rsa.RSAPublicNumbers(_b64url_int(jwk["e"]), _b64url_int(jwk["n"]))
    numbers = rsa.RSAPrivateNumbers(
        p=_b64url_int(jwk["p"]),
        q=_b64url_int(jwk["q"]),
        d=_b64url_int(jwk["d"]),
        dmp1=_b64url_int(jwk["dp"]),
        dmq1=_b64url_int(jwk["dq"]),
        iqmp=_b64url_int(jwk["qi"]),
        public_numbers=public,
    )
    return numbers.private_key()


def wallet_address(owner: bytes) -> str:
    """Arweave address: SHA-256 of the RSA modulus."""
    return base64url(hashlib.sha256(owner).digest())


# Merkle data root

@dataclass
class Chunk:
    data_hash: bytes
    min_byte_range: int
    max_byte_range: int


def _note(value: int) -> bytes:
    return value.to_bytes(NOTE_SIZE, "big")


def _sha256(*parts: bytes) -> bytes:
    return hashlib.sha256(b"".join(parts)).digest()


def chunk_data(data: bytes) -> List[Chunk]:
    """
    Split into 256 KiB chunks. When the remainder after a full chunk would
    be smaller than 32 KiB, the last two chunks split the rest evenly.
    """
    chunks = []
    cursor = 0
    rest = data
    while len(rest) >= MAX_CHUNK_SIZE:
        size = MAX_CHUNK_SIZE
        next_size = len(rest) - MAX_CHUNK_SIZE
        if 0 < next_size < MIN_CHUNK_SIZE:
            size = -(-len(rest) // 2)
        chunk = rest[:size]
        chunks.append(Chunk(_sha256(chunk), cursor, cursor + len(chunk)))
        cursor += len(chunk)
        rest = rest[size:]

    chunks.append(Chunk(_sha256(rest), cursor, cursor + len(rest)))
    return chunks


def data_root(data: bytes) -> bytes:
    if not data:
        return b""

    # Nodes are (id, max byte range)
    layer = [
        (_sha256(_sha256(c.data_hash), _sha256(_note(c.max_byte_range))), c.max_byte_range)
        for c in chunk_data(data)
    ]
    while len(layer) > 1:
        paired = []
        for i in range(0, len(layer), 2):
            if i + 1 == len(layer):
                paired.append(layer[i])
                continue
            (left_id, left_max), (right_id, right_max) = layer[i], layer[i + 1]
            branch_id = _sha256(_sha256(left_id), _sha256(right_id), _sha256(_note(left_max)))
            paired.append((branch_id, right_max))
        layer = paired
    return layer[0][0]


# Transactions

@dataclass
class ArweaveTransaction:
    owner: bytes
    last_tx: str
    reward: str
    tags: List[Tag]
    data: bytes
    data_root: bytes
    signature: bytes = b""
    quantity: str = "0"
    target: str = ""

    @property
    def id(self) -> str:
        return base64url(hashlib.sha256(self.signature).digest())

    @property
    def data_size(self) -> str:
        return str(len(self.data))

    def signature_data(self) -> bytes:
        return deep_hash([
            b"2",
            self.owner,
            b64url_decode(self.target),
            self.quantity.encode("ascii"),
            self.reward.encode("ascii"),
            b64url_decode(self.last_tx),
            [[name.encode("utf-8"), value.encode("utf-8")] for name, value in self.tags],
            self.data_size.encode("ascii"),
            self.data_root,
        ])

    def to_json(self) -> Dict[str, Any]:
        return {
            "format": 2,
            "id": self.id,
            "last_tx": self.last_tx,
            "owner": base64url(self.owner),
            "tags": [
                {"name": base64url(name.encode("utf-8")), "value": base64url(value.encode("utf-8"))}
                for name, value in self.tags
            ],
            "target": self.target,
            "quantity": self.quantity,
            "data": base64url(self.data),
            "data_size": self.data_size,
            "data_root": base64url(self.data_root),
            "reward": self.reward,
            "signature": base64url(self.signature),
        }


def sign_transaction(transaction: ArweaveTransaction, key: rsa.RSAPrivateKey) -> ArweaveTransaction:
    """RSA-PSS over the deep hash, SHA-256 with a 32-byte salt."""
    transaction.signature = key.sign(
        transaction.signature_data(),
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=32),
        hashes.SHA256(),
    )
    return transaction


class ArweaveUploader:
    """
    Uploads files straight to an Arweave node.

    The wallet cannot be topped up from Solana, so its balance is only
    reported.
    """

    supports_funding = False

    def __init__(
        self,
        jwk: Dict[str, Any],
        node_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.key = private_key_from_jwk(jwk)
        self.owner = b64url_decode(jwk["n"])
        self.node_url = (node_url or settings.arweave_api_url).rstrip("/")
        self.http = http_client or httpx.AsyncClient(timeout=timeout)
        self.logger = logger.bind(service="arweave_uploader", node=self.node_url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.http.aclose()

    @property
    def address(self) -> str:
        return wallet_address(self.owner)

    def urls(self, transaction_id: str, cfg: Settings = settings) -> Tuple[str, str]:
        return arweave_urls(transaction_id, cfg)

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

    async def get_balance(self) -> float:
        """Wallet balance in AR."""
        response = await self._request("GET", f"/wallet/{self.address}/balance")
        return winston_to_ar(int(response.text.strip() or 0))

    async def fund(self, amount: float) -> str:
        raise StorageError(
            "Arweave wallets cannot be funded from here; top up the wallet directly",
            {"address": self.address, "amount": amount}
        )

    async def price(self, size: int) -> str:
        """Upload fee in winston for `size` bytes."""
        return (await self._request("GET", f"/price/{size}")).text.strip()

    async def anchor(self) -> str:
        return (await self._request("GET", "/tx_anchor")).text.strip()

    async def upload_bytes(self, data: bytes, tags: Sequence[Tag]) -> UploadReceipt:
        transaction = ArweaveTransaction(
            owner=self.owner,
            last_tx=await self.anchor(),
            reward=await self.price(len(data)),
            tags=list(tags),
            data=data,
            data_root=data_root(data),
        )
        sign_transaction(transaction, self.key)
        await self._request("POST", "/tx", json=transaction.to_json())

        content_type = dict(tags).get("Content-Type", "application/octet-stream")
        return UploadReceipt(id=transaction.id, size=len(data), content_type=content_type)

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
