"""Cache commands: ``push``, ``fetch`` and ``status`` against the filesystem cache.

Every command addresses a repository by the four identity values; the
cache root defaults to ``settings.cache_path``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from bundleforge.config import settings
from bundleforge.core.cache import FilesystemCache
from bundleforge.core.errors import BundleforgeError
from bundleforge.models.identity import Identity

console = Console()

_COMPONENT = typer.Option(..., "--component", "-c", help="Component name.")
_COMPONENT_VERSION = typer.Option(..., "--component-version", help="Component version.")
_RESOURCE = typer.Option(..., "--resource", "-r", help="Resource name.")
_RESOURCE_VERSION = typer.Option("", "--resource-version", help="Resource version.")
_CACHE = typer.Option(None, "--cache", help="Cache root (default: BUNDLEFORGE_CACHE_PATH).")


def _open_cache(path: Path | None) -> FilesystemCache:
    return FilesystemCache(path or settings.cache_path)


def _fail(action: str, exc: Exception) -> typer.Exit:
    console.print(f"[bold red]{action} failed:[/bold red] {exc}")
    return typer.Exit(code=1)


def push_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Blob to push."),
    component: str = _COMPONENT,
    component_version: str = _COMPONENT_VERSION,
    resource: str = _RESOURCE,
    resource_version: str = _RESOURCE_VERSION,
    tag: str = typer.Option("latest", "--tag", "-t", help="Tag to bind."),
    cache_path: Path = _CACHE,
) -> None:
    """Push FILE under an identity and bind TAG to its digest."""
    identity = Identity(
        component_name=component,
        component_version=component_version,
        resource_name=resource,
        resource_version=resource_version,
    )
    cache = _open_cache(cache_path)
    try:
        with file.open("rb") as handle:
            digest = cache.push_data(handle, identity, tag)
    except BundleforgeError as exc:
        raise _fail("Push", exc) from exc
    console.print(
        Panel(
            f"[bold]Digest:[/bold] {digest}\n"
            f"[bold]Repository:[/bold] {identity.storage_name()}\n"
            f"[bold]Tag:[/bold] {tag}",
            title="Pushed",
            border_style="green",
        )
    )


def fetch_cmd(
    component: str = _COMPONENT,
    component_version: str = _COMPONENT_VERSION,
    resource: str = _RESOURCE,
    resource_version: str = _RESOURCE_VERSION,
    tag: str = typer.Option(None, "--tag", "-t", help="Fetch by tag."),
    digest: str = typer.Option(None, "--digest", "-d", help="Fetch by digest."),
    output: Path = typer.Option(..., "--output", "-o", help="Where to write the blob."),
    cache_path: Path = _CACHE,
) -> None:
    """Fetch a blob by tag or digest."""
    if bool(tag) == bool(digest):
        console.print("[bold red]Pass exactly one of --tag or --digest.[/bold red]")
        raise typer.Exit(code=1)
    identity = Identity(
        component_name=component,
        component_version=component_version,
        resource_name=resource,
        resource_version=resource_version,
    )
    cache = _open_cache(cache_path)
    try:
        if digest:
            blob = cache.fetch_data_by_digest(identity, digest)
        else:
            blob = cache.fetch_data_by_identity(identity, tag)
        with blob:
            data = blob.read()
    except BundleforgeError as exc:
        raise _fail("Fetch", exc) from exc
    output.write_bytes(data)
    console.print(f"[bold green]Wrote[/bold green] {output} ({len(data)} bytes)")


def status_cmd(
    component: str = _COMPONENT,
    component_version: str = _COMPONENT_VERSION,
    resource: str = _RESOURCE,
    resource_version: str = _RESOURCE_VERSION,
    tag: str = typer.Option("latest", "--tag", "-t", help="Tag to inspect."),
    cache_path: Path = _CACHE,
) -> None:
    """Show whether TAG is bound for an identity, and to which digest."""
    identity = Identity(
        component_name=component,
        component_version=component_version,
        resource_name=resource,
        resource_version=resource_version,
    )
    cache = _open_cache(cache_path)
    try:
        cached = cache.is_cached(identity, tag)
        digest = cache.tag_digest(identity, tag) if cached else ""
    except BundleforgeError as exc:
        raise _fail("Status", exc) from exc

    state = "[green]cached[/green]" if cached else "[yellow]not cached[/yellow]"
    body = (
        f"[bold]Identity:[/bold] {identity}\n"
        f"[bold]Repository:[/bold] {identity.storage_name()}\n"
        f"[bold]Tag:[/bold] {tag} ({state})"
    )
    if digest:
        body += f"\n[bold]Digest:[/bold] {digest}"
    console.print(Panel(body, title="Cache Status", border_style="blue"))
