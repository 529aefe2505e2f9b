"""
rwa-mint operator CLI.

Usage:
    rwa-mint [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
import json

import click
import httpx
from rich.console import Console
from rich.table import Table

from .commitment import CommitmentBuilder, CommitmentTag, canonical_order, is_rwa_memo
from .config import load_settings
from .encoder import parse_collection_memo
from .exceptions import InvalidCommitmentTag, InvalidContentId, InvalidRecord
from .ledger import MirrorNodeClient
from .verifier import CommitmentVerifier, Match

console = Console()


@click.group()
@click.version_option(package_name="rwa-mint", message="%(prog)s %(version)s")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, verbose: bool):
    """rwa-mint - Commitments and verification for tokenized assets."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("cids", nargs=-1)
@click.option("--display", help="Display image content id")
@click.option("--evidence", multiple=True, help="Evidence content id (repeatable, upload order)")
@click.option("--legal", multiple=True, help="Legal document content id (repeatable, upload order)")
@click.pass_context
def commit(ctx, cids: tuple[str, ...], display: str | None, evidence: tuple[str, ...], legal: tuple[str, ...]):
    """Compute the commitment tag of an ordered list of content ids.

    Positional CIDS are hashed exactly as given. Otherwise --display,
    --evidence and --legal are arranged in canonical order.
    """
    ordered = list(cids) if cids else canonical_order(display, evidence, legal)

    try:
        tag = CommitmentBuilder().build(ordered)
    except InvalidContentId as e:
        console.print(f"[red]Error: {e.message}[/red]")
        ctx.exit(2)

    if ctx.obj.get("verbose"):
        console.print(f"[dim]{len(ordered)} content ids: {', '.join(ordered) or '(none)'}[/dim]")
    click.echo(tag.render())


@cli.command()
@click.argument("record", type=click.File("r"))
@click.argument("tag")
@click.pass_context
def verify(ctx, record, tag: str):
    """Check a metadata record JSON file against an on-chain TAG.

    Exits 0 on match, 1 on mismatch, 2 on a malformed record or tag.
    """
    try:
        data = json.load(record)
    except ValueError as e:
        console.print(f"[red]Error: record is not valid JSON: {e}[/red]")
        ctx.exit(2)

    try:
        result = CommitmentVerifier().verify(data, tag)
    except (InvalidCommitmentTag, InvalidRecord) as e:
        console.print(f"[red]Error: {e.message}[/red]")
        ctx.exit(2)

    if isinstance(result, Match):
        console.print(f"[green]✓ Match[/green] {result.tag.render()}")
    else:
        console.print("[red]✗ Mismatch[/red]")
        console.print(f"  On-chain:   [cyan]{result.expected.render()}[/cyan]")
        console.print(f"  Recomputed: [yellow]{result.recomputed.render()}[/yellow]")

    if not result.self_consistent:
        console.print("[yellow]Record's verification block does not match its evidence lists[/yellow]")

    ctx.exit(0 if result else 1)


@cli.command("decode-memo")
@click.argument("text")
@click.pass_context
def decode_memo(ctx, text: str):
    """Decode a collection memo or NFT metadata commitment."""
    if not is_rwa_memo(text):
        console.print("[yellow]Not an RWA memo[/yellow]")
        ctx.exit(1)

    table = Table(title="RWA Memo")
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    try:
        parsed = CommitmentTag.parse(text)
    except InvalidCommitmentTag:
        try:
            fields = parse_collection_memo(text)
        except ValueError as e:
            console.print(f"[red]Error: {e}[/red]")
            ctx.exit(1)
        table.add_row("Format", "collection memo")
        table.add_row("Asset ID", fields["asset_id"])
        table.add_row("Value", fields["value"])
        table.add_row("Custodian", fields["custodian"])
    else:
        table.add_row("Format", "commitment tag")
        table.add_row("Version", parsed.version)
        table.add_row("Algorithm", parsed.algorithm_id)
        table.add_row("Digest", parsed.digest_hex)

    console.print(table)


@cli.command()
@click.argument("account")
@click.option("--mirror-url", help="Mirror node base URL")
@click.option("--limit", default=100, show_default=True, help="Maximum NFTs to fetch")
@click.pass_context
def nfts(ctx, account: str, mirror_url: str | None, limit: int):
    """List RWA NFTs held by ACCOUNT."""
    base_url = mirror_url or load_settings().ledger.mirror_node_url
    client = MirrorNodeClient(base_url=base_url, transport=ctx.obj.get("mirror_transport"))

    async def fetch():
        try:
            return await client.list_account_nfts(account, limit=limit)
        finally:
            await client.close()

    try:
        records = asyncio.run(fetch())
    except httpx.HTTPError as e:
        console.print(f"[red]Error: mirror node request failed: {e}[/red]")
        ctx.exit(1)

    if not records:
        console.print("[dim]No RWA NFTs found[/dim]")
        return

    table = Table(title=f"RWA NFTs for {account}")
    table.add_column("NFT", style="cyan")
    table.add_column("Metadata")
    table.add_column("Created", style="dim")
    for nft in records:
        table.add_row(nft.nft_id, nft.metadata_text(), nft.created_at or "")
    console.print(table)


if __name__ == "__main__":
    cli()
