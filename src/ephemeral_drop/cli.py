"""CLI for ephemeral-drop.

Commands:
    serve                    - Run the HTTP server
    upload <path>            - Encrypt and upload a file, print the share link
    download <link>          - Fetch and decrypt a share link
    info <link|id>           - Show size and expiry without consuming
    delete <id> <token>      - Owner delete
    sweep                    - Run one expiry sweep against the local data dir
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from ephemeral_drop.client import DropClient
from ephemeral_drop.config import settings
from ephemeral_drop.db import create_engine, create_session_factory, init_db
from ephemeral_drop.errors import DropError
from ephemeral_drop.links import parse_share_link
from ephemeral_drop.storage import BlobStore, ObjectStore
from ephemeral_drop.tasks import Reaper

app = typer.Typer(
    name="ephemeral-drop",
    help="ephemeral-drop — end-to-end encrypted, expiring file drop",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def format_bytes(n: int) -> str:
    if n < 1024:
        return f"{n} B"
    if n < 1024 * 1024:
        return f"{n / 1024:.1f} KB"
    if n < 1024 * 1024 * 1024:
        return f"{n / 1024 / 1024:.1f} MB"
    return f"{n / 1024 / 1024 / 1024:.2f} GB"


def format_expiry(expires_at: int, now: int) -> str:
    secs = expires_at - now
    if secs < 60:
        return "expires in less than a minute"
    if secs < 3600:
        return f"expires in {secs // 60}m"
    if secs < 86400:
        return f"expires in {secs // 3600}h"
    return f"expires in {secs // 86400}d"


ServerOption = Annotated[
    str | None, typer.Option("--server", "-s", help="Server base URL (default: DROP_PUBLIC_URL)")
]


@app.command()
def serve(
    host: Annotated[str | None, typer.Option(help="Bind address")] = None,
    port: Annotated[int | None, typer.Option(help="Bind port")] = None,
):
    """Run the HTTP server."""
    import uvicorn

    from ephemeral_drop.app import create_app

    configure_logging()
    uvicorn.run(
        create_app(settings),
        host=host or settings.host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


@app.command()
def upload(
    path: Annotated[Path, typer.Argument(help="File to encrypt and upload")],
    expires: Annotated[
        str, typer.Option("--expires", "-e", help="Time to live, e.g. 30m, 24h, 7d")
    ] = "24h",
    burn: Annotated[
        bool, typer.Option("--burn", "-b", help="Delete after the first download")
    ] = False,
    server: ServerOption = None,
):
    """Encrypt a file locally and upload the ciphertext."""
    if not path.is_file():
        console.print(f"[red]Error:[/red] Not a file: {path}")
        raise typer.Exit(1)

    async def _upload():
        async with DropClient(server) as client:
            return await client.upload(path.name, path.read_bytes(), expires, burn)

    try:
        result = run_async(_upload())
    except DropError as e:
        console.print(f"[red]Upload failed:[/red] {e.message}")
        raise typer.Exit(1) from None

    console.print(f"[green]Uploaded[/green] {path.name}")
    console.print(f"  Link:         [cyan]{result.link}[/cyan]")
    console.print(f"  Delete token: {result.delete_token}")
    if burn:
        console.print("  [yellow]Burn after read:[/yellow] the first download deletes it")


@app.command()
def download(
    link: Annotated[str, typer.Argument(help="Share link including the #key fragment")],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Output path (default: original name)")
    ] = None,
):
    """Fetch and decrypt a share link."""

    async def _download():
        async with DropClient(parse_share_link(link).base_url) as client:
            return await client.download(link)

    try:
        result = run_async(_download())
    except DropError as e:
        console.print(f"[red]Download failed:[/red] {e.message}")
        raise typer.Exit(1) from None

    target = output or Path(Path(result.filename).name or "download.bin")
    target.write_bytes(result.content)
    console.print(f"[green]Saved[/green] {target} ({format_bytes(len(result.content))})")


@app.command()
def info(
    target: Annotated[str, typer.Argument(help="Share link or object id")],
    server: ServerOption = None,
):
    """Show size and expiry without consuming a burn-after-read object."""
    async def _info():
        async with DropClient(server) as client:
            return await client.info(object_id)

    try:
        if "://" in target:
            share = parse_share_link(target)
            server, object_id = share.base_url, share.id
        else:
            object_id = target
        meta = run_async(_info())
    except DropError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1) from None

    now = int(datetime.now(tz=timezone.utc).timestamp())
    table = Table(title=f"Object {object_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Size", format_bytes(meta.size))
    table.add_row("Expiry", format_expiry(meta.expires_at, now))
    table.add_row("Burn after read", "yes" if meta.burn_after_read else "no")
    console.print(table)


@app.command()
def delete(
    object_id: Annotated[str, typer.Argument(help="Object id")],
    token: Annotated[str, typer.Argument(help="Delete token returned at upload")],
    server: ServerOption = None,
):
    """Delete an object with its owner token."""

    async def _delete():
        async with DropClient(server) as client:
            await client.delete(object_id, token)

    try:
        run_async(_delete())
    except DropError as e:
        console.print(f"[red]Delete failed:[/red] {e.message}")
        raise typer.Exit(1) from None
    console.print(f"[green]Deleted[/green] {object_id}")


@app.command()
def sweep(
    orphans: Annotated[
        bool, typer.Option("--orphans", help="Also remove blobs that have no record")
    ] = False,
):
    """Run one expiry sweep against the local data directory."""
    configure_logging()

    async def _sweep():
        engine = create_engine(settings.resolved_database_url, echo=settings.database_echo)
        try:
            await init_db(engine)
            store = ObjectStore(create_session_factory(engine), BlobStore(settings.files_dir))
            return await Reaper(store, reconcile_orphans=orphans).tick()
        finally:
            await engine.dispose()

    report = run_async(_sweep())
    console.print(
        f"[bold]Summary:[/bold] {len(report.expired)} expired, "
        f"{len(report.orphans_removed)} orphan blob(s), {report.blob_failures} failure(s)"
    )
    if report.blob_failures:
        raise typer.Exit(1)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
