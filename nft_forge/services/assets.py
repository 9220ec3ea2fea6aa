"""
Asset folder layout, metadata patching and the address cache files that
pass results from one pipeline step to the next.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import structlog

from ..core.exceptions import MismatchedAssetsError, ValidationError


logger = structlog.get_logger(__name__)

IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}

COLLECTION_ADDRESS_FILE = "collection-address.json"
NFT_ADDRESSES_FILE = "nft-addresses.json"
RULE_SET_ADDRESS_FILE = "ruleset-address.json"


def mime_type_for(path: Union[str, Path]) -> Optional[str]:
    """MIME type of a supported image or JSON file, None otherwise."""
    suffix = Path(path).suffix.lower()
    if suffix == ".json":
        return "application/json"
    return IMAGE_MIME_TYPES.get(suffix)


def is_image(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() in IMAGE_MIME_TYPES


def is_metadata(path: Union[str, Path]) -> bool:
    return Path(path).suffix.lower() == ".json"


@dataclass
class AssetLayout:
    """Folder structure under an assets root."""
    root: Path

    @property
    def collection_images(self) -> Path:
        return self.root / "images" / "collection"

    @property
    def collection_metadata(self) -> Path:
        return self.root / "metadata" / "collection"

    @property
    def nft_images(self) -> Path:
        return self.root / "images" / "nfts"

    @property
    def nft_metadata(self) -> Path:
        return self.root / "metadata" / "nfts"

    @property
    def cache(self) -> Path:
        return self.root / "cache"

    @staticmethod
    def _list(folder: Path, predicate) -> List[Path]:
        if not folder.is_dir():
            return []
        return sorted(p for p in folder.iterdir() if p.is_file() and predicate(p))

    def collection_image_files(self) -> List[Path]:
        return self._list(self.collection_images, is_image)

    def collection_metadata_files(self) -> List[Path]:
        return self._list(self.collection_metadata, is_metadata)

    def nft_image_files(self) -> List[Path]:
        return self._list(self.nft_images, is_image)

    def nft_metadata_files(self) -> List[Path]:
        return self._list(self.nft_metadata, is_metadata)


@dataclass
class UploadPlan:
    """
    Files to upload, checked for consistency before any network call.

    The collection files are None when a single-pair selection skips them.
    """
    collection_image: Optional[Path]
    collection_metadata: Optional[Path]
    nft_pairs: List[tuple] = field(default_factory=list)


def plan_uploads(layout: AssetLayout, single_pair: Optional[str] = None) -> UploadPlan:
    """
    Pair up collection and NFT files.

    With `single_pair`, only files whose name contains it are uploaded.

    Raises:
        ValidationError: when collection files are missing or the NFT image
            and metadata counts differ
    """
    images = layout.nft_image_files()
    metadata = layout.nft_metadata_files()
    if len(images) != len(metadata):
        raise MismatchedAssetsError(len(images), len(metadata))

    collection_images = layout.collection_image_files()
    collection_metadata = layout.collection_metadata_files()
    if not collection_images or not collection_metadata:
        raise ValidationError(
            "No collection image or metadata found. Please place them in the correct folders.",
            {
                "images_folder": str(layout.collection_images),
                "metadata_folder": str(layout.collection_metadata),
            }
        )

    pairs = list(zip(images, metadata))
    if not single_pair:
        return UploadPlan(
            collection_image=collection_images[0],
            collection_metadata=collection_metadata[0],
            nft_pairs=pairs,
        )

    selected_images = [p for p in collection_images if single_pair in p.name]
    selected_metadata = [p for p in collection_metadata if single_pair in p.name]
    plan = UploadPlan(
        collection_image=selected_images[0] if selected_images and selected_metadata else None,
        collection_metadata=selected_metadata[0] if selected_images and selected_metadata else None,
        nft_pairs=[
            (image, meta) for image, meta in pairs
            if single_pair in image.name or single_pair in meta.name
        ],
    )
    logger.info(
        "Single pair selected",
        identifier=single_pair,
        collection=plan.collection_image is not None,
        nfts=len(plan.nft_pairs)
    )
    return plan


def read_json(path: Union[str, Path]) -> Any:
    path = Path(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON in {path}: {e}", {"path": str(path)})


def write_json(path: Union[str, Path], data: Any) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def patch_metadata_image(metadata_file: Path, image_url: str, mime_type: str) -> Dict[str, Any]:
    """
    Point `.image`, a provisional `.uri` and `.properties.files` at the
    uploaded image. `.uri` is replaced once the metadata itself is uploaded.
    """
    content = read_json(metadata_file)
    content["image"] = image_url
    content["uri"] = image_url
    content["properties"] = {
        "files": [{"uri": image_url, "type": mime_type}],
        "category": "image",
    }
    write_json(metadata_file, content)
    logger.info("Metadata image patched", file=str(metadata_file), image=image_url)
    return content


def patch_metadata_creators(metadata_file: Path, creator: str) -> Dict[str, Any]:
    """Make `creator` the only top-level creator, with the full share."""
    content = read_json(metadata_file)
    properties = content.get("properties")
    if isinstance(properties, dict):
        properties.pop("creators", None)
    content["creators"] = [{"address": creator, "verified": True, "share": 100}]
    write_json(metadata_file, content)
    logger.info("Metadata creators patched", file=str(metadata_file), creator=creator)
    return content


def patch_metadata_uri(metadata_file: Path, uri: str) -> Dict[str, Any]:
    content = read_json(metadata_file)
    content["uri"] = uri
    write_json(metadata_file, content)
    logger.info("Metadata uri patched", file=str(metadata_file), uri=uri)
    return content


@dataclass
class TokenMetadata:
    """The fields of a metadata JSON file needed to mint."""
    name: str
    symbol: str
    uri: str
    source: Path

    @classmethod
    def from_file(cls, path: Path) -> "TokenMetadata":
        content = read_json(path)
        if not isinstance(content, dict):
            raise ValidationError(f"Metadata must be a JSON object: {path}", {"path": str(path)})
        name = content.get("name")
        uri = content.get("uri") or ""
        symbol = content.get("symbol") or ""
        if not name or not isinstance(name, str):
            raise ValidationError(f"Metadata has no name: {path}", {"path": str(path)})
        if not isinstance(symbol, str):
            raise ValidationError(f"metadata.symbol must be a string: {path}", {"path": str(path)})
        if not isinstance(uri, str) or not uri.startswith("http"):
            raise ValidationError(
                f"metadata.uri is not a valid URL: {uri}",
                {"path": str(path), "uri": uri}
            )
        return cls(name=name, symbol=symbol, uri=uri, source=path)


# Address cache files

def save_collection_address(cache_dir: Path, address: str) -> Path:
    path = cache_dir / COLLECTION_ADDRESS_FILE
    write_json(path, {"address": address})
    return path


def load_collection_address(cache_dir: Path) -> str:
    path = cache_dir / COLLECTION_ADDRESS_FILE
    if not path.exists():
        raise ValidationError(
            f"{COLLECTION_ADDRESS_FILE} not found at '{path}'. Run create-collection first.",
            {"path": str(path)}
        )
    data = read_json(path)
    address = None
    if isinstance(data, dict):
        address = data.get("address") or data.get("mintedCollectionAddress")
    if not address:
        raise ValidationError(f"No collection address in {path}", {"path": str(path)})
    return address


def save_nft_addresses(cache_dir: Path, addresses: List[str]) -> Path:
    path = cache_dir / NFT_ADDRESSES_FILE
    write_json(path, {"mintedNftAddresses": addresses})
    return path


def load_nft_addresses(cache_dir: Path) -> List[str]:
    """Accepts `{"mintedNftAddresses": [...]}`, `{"mintedNfts": [...]}` or a bare list."""
    path = cache_dir / NFT_ADDRESSES_FILE
    if not path.exists():
        raise ValidationError(
            f"{NFT_ADDRESSES_FILE} not found at '{path}'. Run mint first.",
            {"path": str(path)}
        )
    data = read_json(path)
    if isinstance(data, dict):
        data = data.get("mintedNftAddresses") or data.get("mintedNfts")
    if not isinstance(data, list) or not data:
        raise ValidationError(f"No NFT addresses found in {path}", {"path": str(path)})
    return [str(a) for a in data]


def save_rule_set_address(cache_dir: Path, address: str) -> Path:
    path = cache_dir / RULE_SET_ADDRESS_FILE
    write_json(path, {"ruleSetAddress": address})
    return path


def load_rule_set_address(cache_dir: Path) -> Optional[str]:
    """The cached rule set address, None when create-ruleset has not run."""
    path = cache_dir / RULE_SET_ADDRESS_FILE
    if not path.exists():
        return None
    data = read_json(path)
    address = data.get("ruleSetAddress") if isinstance(data, dict) else None
    if not address or not isinstance(address, str):
        raise ValidationError(f"No rule set address in {path}", {"path": str(path)})
    return address
