"""
Command line entry point for the NFT pipeline.
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .core.config import settings
from .core.exceptions import NftForgeException, ValidationError
from .core.logging import setup_logging, get_logger
from .pipeline import (
    burn_nft,
    convert_secret,
    create_collection,
    create_rule_set,
    mint_nfts,
    show_wallet,
    upload_assets,
    verify_nfts,
)
from .pipeline.wallet_setup import wallet_path_for
from .services.arweave_uploader import ArweaveUploader, load_jwk
from .services.irys_uploader import IrysUploader
from .services.solana_client import SolanaClient, explorer_link
from .services.wallet import load_keypair

console = Console()
logger = get_logger(__name__)
app = typer.Typer(help="Solana NFT collection pipeline")


def _client() -> SolanaClient:
    return SolanaClient(load_keypair(settings.wallet_path))


def _run(step):
    """Run an async step, turning pipeline errors into exit code 1."""
    setup_logging()
    console.print(f"Using network: [bold]{settings.cluster}[/bold]")
    try:
        return asyncio.run(step())
    except NftForgeException as e:
        console.print(f"[red]❌ {e.code}: {e.message}[/red]")
        raise typer.Exit(code=1)


@app.command("convert-secret")
def convert_secret_cmd(
    cluster: Optional[str] = typer.Option(None, help="devnet, testnet or mainnet-beta"),
    secret: Optional[str] = typer.Option(None, help="Base58 secret key (prompted when omitted)"),
):
    """Save a base58 secret key as a JSON keypair file."""
    setup_logging()
    cluster = cluster or settings.cluster
    if secret is None:
        secret = typer.prompt("Base58 secret key", hide_input=True)

    try:
        path = wallet_path_for(cluster)
        overwrite = False
        if path.exists():
            overwrite = typer.confirm(f"{path} already exists. Overwrite?")
            if not overwrite:
                console.print("Aborted.")
                raise typer.Exit()
        path = convert_secret(secret, cluster, overwrite=overwrite)
    except NftForgeException as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(code=1)

    console.print(f"✅ Keypair written to {path}")


@app.command("read-wallet")
def read_wallet_cmd(path: Optional[str] = typer.Option(None, help="Keypair file")):
    """Print the public key and base58 secret of a keypair file."""
    setup_logging()
    try:
        info = show_wallet(path)
    except NftForgeException as e:
        console.print(f"[red]❌ {e.message}[/red]")
        raise typer.Exit(code=1)

    console.print(f"Public key: [bold]{info.pubkey}[/bold]")
    console.print(f"Secret (base58): {info.secret_base58}")


@app.command()
def upload(
    reupload: Optional[bool] = typer.Option(None, help="Re-upload patched metadata"),
    backend: Optional[str] = typer.Option(None, help="irys or arweave (UPLOAD_BACKEND)"),
):
    """Upload collection and NFT assets to Irys or straight to Arweave."""
    backend = (backend or settings.upload_backend).lower()

    async def _upload():
        if backend == "arweave":
            if not settings.arweave_wallet:
                raise ValidationError("ARWEAVE_WALLET must point at a JWK keyfile for Arweave uploads")
            creator = str(load_keypair(settings.wallet_path).pubkey())
            async with ArweaveUploader(load_jwk(settings.arweave_wallet)) as uploader:
                return await upload_assets(uploader, reupload=reupload, creator=creator)

        async with _client() as client:
            async with IrysUploader(client.payer, client.transfer) as uploader:
                return await upload_assets(uploader, reupload=reupload)

    if backend not in ("irys", "arweave"):
        console.print(f"[red]❌ Unknown upload backend: {backend}[/red]")
        raise typer.Exit(code=1)

    report = _run(_upload)

    table = Table(title=f"Uploaded assets ({backend})")
    table.add_column("Metadata")
    table.add_column("URL")
    table.add_column("Arweave")
    for asset in report.assets:
        table.add_row(asset.metadata_file.name, asset.metadata_url, asset.arweave_url)
    console.print(table)
    console.print("✅ All assets uploaded successfully!")


@app.command("create-ruleset")
def create_ruleset_cmd():
    """Create the royalty rule set for programmable NFTs."""
    async def _create():
        async with _client() as client:
            return await create_rule_set(client)

    result = _run(_create)
    if result.created:
        console.print(f"✅ Rule set created: [bold]{result.address}[/bold]")
    else:
        console.print(f"Rule set already exists: [bold]{result.address}[/bold]")
    console.print(f"Explorer: {result.explorer_url}")
    console.print(f"Saved to {result.cache_file}")


@app.command("create-collection")
def create_collection_cmd():
    """Mint the collection NFT."""
    async def _create():
        async with _client() as client:
            return await create_collection(client)

    result = _run(_create)
    console.print(f"✅ Collection created: [bold]{result.minted.mint}[/bold]")
    console.print(f"Explorer: {result.explorer_url}")
    console.print(f"Saved to {result.cache_file}")


@app.command()
def mint():
    """Mint member NFTs into the collection."""
    async def _mint():
        async with _client() as client:
            return await mint_nfts(client)

    report = _run(_mint)
    for asset in report.minted:
        console.print(f"✅ {asset.name}: {explorer_link('address', asset.mint, settings.cluster)}")
    for path, error in report.failed:
        console.print(f"[red]❌ {path.name}: {error}[/red]")
    console.print(
        f"Minted {len(report.minted)}, failed {len(report.failed)}, skipped {len(report.skipped)}"
    )
    if report.cache_file:
        console.print(f"Saved minted addresses to {report.cache_file}")
    if report.failed:
        raise typer.Exit(code=1)


@app.command()
def verify():
    """Verify minted NFTs as collection members."""
    async def _verify():
        async with _client() as client:
            return await verify_nfts(client)

    report = _run(_verify)
    for address, error in report.failed:
        console.print(f"[red]❌ {address}: {error}[/red]")
    console.print(
        f"Verified {len(report.verified)}, already verified {len(report.already_verified)}, "
        f"failed {len(report.failed)}"
    )
    if report.failed:
        raise typer.Exit(code=1)


@app.command()
def burn(mint_address: str = typer.Argument(..., help="Mint address of the NFT to burn")):
    """Burn an NFT owned by the wallet."""
    async def _burn():
        async with _client() as client:
            return await burn_nft(client, mint_address)

    result = _run(_burn)
    console.print(f"🔥 Burned {result.mint}")
    console.print(f"Explorer: {result.explorer_url}")


if __name__ == "__main__":
    app()
