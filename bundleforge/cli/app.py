"""Main Typer application: imports and registers all CLI commands.

Entry point: ``bundleforge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from bundleforge.cli.commands.cache_cmds import fetch_cmd, push_cmd, status_cmd
from bundleforge.cli.commands.render import render_cmd
from bundleforge.config import settings

app = typer.Typer(
    name="bundleforge",
    help="bundleforge: deterministic mutation of versioned manifest bundles.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure_logging(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    level = logging.DEBUG if verbose else settings.log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="render", help="Apply configuration rules to a local archive.")(render_cmd)
app.command(name="push", help="Push a file into the cache.")(push_cmd)
app.command(name="fetch", help="Fetch a blob from the cache.")(fetch_cmd)
app.command(name="status", help="Show the cache binding of a tag.")(status_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
