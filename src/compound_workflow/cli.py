"""Compound CLI — inspect and convert workflows from the terminal.

Commands:
    paths       Show the precedence roots and whether they exist
    list        Show resolved workflows and agents
    show        Print one capability with its metadata
    validate    Check every document for parse errors and missing fields
    convert     Project the resolved set into Claude, Cursor or Qoder files
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .adapters import PROJECTORS, convert as run_conversion
from .config import CompoundConfig, fallback_log_dir, load_config
from .errors import CompoundError
from .frontmatter import REQUIRED_FIELDS, validate_required_fields
from .guard import ErrorLog
from .models import UNCATEGORIZED
from .resolver import CapabilityResolver

console = Console()

TOOL_CHOICES = sorted(PROJECTORS) + ["all"]


def _fail(exc: CompoundError) -> None:
    """Print a non-recoverable error with its suggestion and exit 1."""
    console.print(f"[red]Error:[/red] {escape(exc.user_message())}", soft_wrap=True)
    hint = exc.suggestion()
    if hint:
        console.print(f"[dim]Hint: {hint}[/dim]", soft_wrap=True)
    sys.exit(1)


def _warn_recoverable(error_log: ErrorLog) -> None:
    for rec in error_log.records:
        if rec.recoverable:
            where = rec.context.get("path") or rec.context.get("source") or ""
            suffix = f" ({where})" if where else ""
            console.print(f"[yellow]Warning:[/yellow] {escape(rec.message + suffix)}", soft_wrap=True)


def _setup(ctx: click.Context) -> tuple[CompoundConfig, ErrorLog]:
    """Load the configuration and open the run's error log."""
    try:
        config = load_config(ctx.obj.get("project"))
    except CompoundError as exc:
        ErrorLog(fallback_log_dir(ctx.obj.get("project"))).record(exc)
        _fail(exc)
    return config, ErrorLog(config.error_log_dir)


@click.group()
@click.version_option(__version__, prog_name="compound")
@click.option("--project", type=click.Path(file_okay=False), default=None, help="Project directory (default: cwd).")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output.")
@click.pass_context
def main(ctx: click.Context, project: Optional[str], verbose: bool) -> None:
    """Compound — Plan, Work, Review, Compound workflows for AI coding tools.

    Resolves workflows and agents from the project, user and package
    roots and converts them for Claude, Cursor and Qoder.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["project"] = Path(project) if project else None


@main.command()
@click.pass_context
def paths(ctx: click.Context) -> None:
    """Show the precedence roots, highest first."""
    config, error_log = _setup(ctx)
    resolver = CapabilityResolver.from_config(config, error_log)

    table = Table(title="Search Paths")
    table.add_column("Priority", justify="right")
    table.add_column("Tier", style="green")
    table.add_column("Path", style="cyan")
    table.add_column("Exists")
    for entry in resolver.search_paths():
        exists = "[green]yes[/green]" if entry["exists"] else "[red]no[/red]"
        table.add_row(str(entry["priority"]), entry["tier"], entry["path"], exists)
    console.print(table)


@main.command("list")
@click.option("--category", default=None, help="Only show this category.")
@click.pass_context
def list_capabilities(ctx: click.Context, category: Optional[str]) -> None:
    """Show resolved workflows and agents."""
    config, error_log = _setup(ctx)
    resolver = CapabilityResolver.from_config(config, error_log)
    try:
        resolved = resolver.resolve(category)
    except CompoundError as exc:
        _fail(exc)

    _warn_recoverable(error_log)
    if not resolved:
        console.print("[dim]No workflows or agents found.[/dim]")
        return

    table = Table(title="Capabilities" if category is None else f"Capabilities: {category}")
    table.add_column("Name", style="cyan")
    table.add_column("Kind")
    table.add_column("Category", style="green")
    table.add_column("Tier", style="magenta")
    table.add_column("Description")

    for key, doc in resolved.items():
        desc = doc.description
        table.add_row(
            key,
            doc.kind.value,
            doc.category or UNCATEGORIZED,
            doc.source_tier.value,
            desc[:60] + ("..." if len(desc) > 60 else ""),
        )

    console.print(table)


@main.command()
@click.argument("name")
@click.option("--category", default=None, help="Prefer a capability of this category.")
@click.pass_context
def show(ctx: click.Context, name: str, category: Optional[str]) -> None:
    """Print one capability with its metadata."""
    config, error_log = _setup(ctx)
    resolver = CapabilityResolver.from_config(config, error_log)
    try:
        doc = resolver.lookup(name, category=category)
    except CompoundError as exc:
        _fail(exc)

    console.print(f"\n[cyan bold]{doc.display_name}[/cyan bold] ({doc.kind.value})")
    if doc.description:
        console.print(f"  {escape(doc.description)}")
    console.print(f"  Category: {doc.category or UNCATEGORIZED}")
    console.print(f"  Tier:     {doc.source_tier.value}")
    console.print(f"  Path:     {doc.source_path}", soft_wrap=True)
    if doc.header.globs:
        console.print(f"  Globs:    {', '.join(doc.header.globs)}")
    if doc.header.extra:
        console.print("\n  [bold]Other metadata:[/bold]")
        for key, value in sorted(doc.header.extra.items()):
            console.print(f"    {key}: {escape(str(value))}")
    console.print()
    console.print(doc.body.strip(), markup=False, highlight=False)


@main.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Check every document for parse errors and missing fields."""
    config, error_log = _setup(ctx)
    resolver = CapabilityResolver.from_config(config, error_log)
    try:
        resolved = resolver.resolve()
    except CompoundError as exc:
        _fail(exc)

    problems: list[tuple[str, str]] = []
    for rec in error_log.records:
        where = rec.context.get("source") or rec.context.get("path") or "-"
        line = rec.context.get("line")
        problems.append((f"{where}:{line}" if line else where, rec.message))

    for doc in resolved.values():
        check = validate_required_fields(doc.metadata, REQUIRED_FIELDS[doc.kind.value])
        if not check.valid:
            problems.append((doc.source_path, f"missing field(s): {', '.join(check.missing)}"))

    if not problems:
        console.print(f"[green]All {len(resolved)} documents are valid.[/green]")
        return

    console.print("[bold]Validation problems:[/bold]")
    for where, message in problems:
        console.print(f"  [cyan]{escape(where)}[/cyan]: {escape(message)}", soft_wrap=True, highlight=False)
    console.print(f"[red]{len(problems)} problem(s)[/red] in {len(resolved)} resolved documents")
    sys.exit(1)


@main.command("convert")
@click.option(
    "--tool",
    "tool",
    type=click.Choice(TOOL_CHOICES),
    default="all",
    show_default=True,
    help="Target tool.",
)
@click.option("--legacy", is_flag=True, help="Cursor: write a single .cursorrules file.")
@click.option("--force", is_flag=True, help="Overwrite existing files that differ.")
@click.option("--output", type=click.Path(file_okay=False), default=None, help="Custom output directory.")
@click.pass_context
def convert(ctx: click.Context, tool: str, legacy: bool, force: bool, output: Optional[str]) -> None:
    """Convert the resolved workflows and agents for a target tool."""
    config, error_log = _setup(ctx)
    tools = sorted(PROJECTORS) if tool == "all" else [tool]
    try:
        summary = run_conversion(config, tools, legacy=legacy, force=force, output=output, error_log=error_log)
    except CompoundError as exc:
        _fail(exc)

    _warn_recoverable(error_log)
    for outcome in summary.outcomes:
        if outcome.error is None:
            console.print(
                f"[green]{outcome.tool}:[/green] {outcome.artifacts} artifacts in {outcome.output_dir}"
                f" ({len(outcome.written)} written, {len(outcome.unchanged)} unchanged)",
                soft_wrap=True,
            )
        else:
            console.print(f"[red]{outcome.tool} failed:[/red] {escape(outcome.error)}", soft_wrap=True)
            if outcome.suggestion:
                console.print(f"[dim]Hint: {outcome.suggestion}[/dim]", soft_wrap=True)

    console.print(summary.summary_line(), highlight=False)
    if summary.failed:
        sys.exit(1)
