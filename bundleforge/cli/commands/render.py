"""``bundleforge render ARCHIVE CONFIG``: apply configuration to a local archive.

Compiles the configuration rules of CONFIG against optional override
values, applies them to the files inside ARCHIVE, and writes the
re-archived result.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.table import Table

from bundleforge.config import settings
from bundleforge.core.compiler import compile_configuration, parse_config_data
from bundleforge.core.compression import auto_decompress
from bundleforge.core.errors import BundleforgeError, DocumentParseError
from bundleforge.core.substitute import FilesystemMutationEngine
from bundleforge.core.workspace import WorkingTree, archive_directory
from bundleforge.models.substitutions import RuleSet

console = Console()


def _load_values(path: Path | None) -> dict[str, Any]:
    if path is None:
        return {}
    try:
        values = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise DocumentParseError(f"cannot unmarshal values: {exc}") from exc
    if values is None:
        return {}
    if not isinstance(values, dict):
        raise DocumentParseError("cannot unmarshal values: expected a mapping")
    return values


def _rules_table(rules: RuleSet) -> Table:
    table = Table(title="Substitutions")
    table.add_column("Id", style="cyan")
    table.add_column("File")
    table.add_column("Path")
    table.add_column("Value", style="green")
    for rule in rules:
        table.add_row(rule.id, rule.file, rule.path, str(rule.value))
    return table


def render_cmd(
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, help="Source tar archive."),
    config: Path = typer.Argument(..., exists=True, dir_okay=False, help="ConfigData YAML document."),
    values: Path = typer.Option(
        None, "--values", "-f", exists=True, dir_okay=False, help="YAML/JSON override values."
    ),
    output: Path = typer.Option(
        None, "--output", "-o", help="Result archive (default: <archive>.rendered.tar.gz)."
    ),
) -> None:
    """Render configuration rules into a copy of ARCHIVE."""
    target = output or archive.with_name(f"{archive.name.split('.')[0]}.rendered.tar.gz")
    try:
        document = parse_config_data(config.read_bytes())
        rules = compile_configuration(
            document.configuration,
            _load_values(values),
            reject_unknown=settings.reject_unknown_values,
        )
        data = auto_decompress(archive.read_bytes())
        with WorkingTree.create(settings.workdir_root) as tree:
            FilesystemMutationEngine().apply(data, rules, tree)
            result = archive_directory(tree.content, settings.archive_compression)
    except BundleforgeError as exc:
        console.print(f"[bold red]Render failed:[/bold red] {exc}")
        raise typer.Exit(code=1) from exc

    target.write_bytes(result)
    if rules:
        console.print(_rules_table(rules))
    else:
        console.print("[dim]No rules generated; the archive is unchanged.[/dim]")
    console.print(f"[bold green]Wrote[/bold green] {target} ({len(result)} bytes)")
