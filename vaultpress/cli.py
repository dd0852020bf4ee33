"""CLI entry point for vaultpress."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Annotated

import typer
import yaml
from rich import print as rprint
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from vaultpress.config import VaultpressConfig, load_config
from vaultpress.config.loader import DEFAULT_CONFIG_TEMPLATE
from vaultpress.content.frontmatter import FrontmatterError, is_unpublished, parse_frontmatter
from vaultpress.interfaces.plugin import CapabilityKind
from vaultpress.issues import IssueReport
from vaultpress.logs import configure_logging
from vaultpress.plugins.loader import PluginLoader, PluginNotFoundError
from vaultpress.plugins.manager import PluginCycleError, PluginInitializationError
from vaultpress.processor import BuildProcessor
from vaultpress.publish import create_store
from vaultpress.publish.optimizer import UploadOptimizer
from vaultpress.schema.inference import SchemaInferenceEngine
from vaultpress.schema.models import InferredSchema

app = typer.Typer(
    name="vaultpress",
    help="Build and publish a markdown vault as a deployable content bundle.",
)

config_app = typer.Typer(help="Manage vaultpress configuration.")
app.add_typer(config_app, name="config")

# Global state
_config: VaultpressConfig | None = None


def _get_config() -> VaultpressConfig:
    if _config is None:
        return load_config()
    return _config


@app.callback()
def main(
    config: Annotated[
        str | None, typer.Option("--config", "-c", help="Path to vaultpress.yaml")
    ] = None,
) -> None:
    """Global options."""
    global _config
    try:
        _config = load_config(config)
    except (ValueError, FileNotFoundError) as e:
        rprint(f"[red]Config error:[/red] {e}")
        raise typer.Exit(1)
    configure_logging(_config.log_level, _config.log_format)


def _display_issues(report: IssueReport) -> None:
    s = report.summary
    if not s.total:
        rprint("[green]No issues.[/green]")
        return
    table = Table(title=f"Issues ({s.total})")
    table.add_column("Category", style="cyan")
    table.add_column("Count", justify="right")
    for category, count in sorted(s.by_category.items()):
        table.add_row(category, str(count))
    rprint(table)


def _display_schema(schema: InferredSchema) -> None:
    table = Table(title=f"Frontmatter schema ({schema.total_posts} posts)")
    table.add_column("Column", style="cyan")
    table.add_column("Key")
    table.add_column("Type", style="green")
    table.add_column("Seen", justify="right")
    table.add_column("Shapes", style="dim")
    for col in schema.columns:
        name = f"{col.name} [yellow](reserved)[/yellow]" if col.is_reserved_word else col.name
        table.add_row(
            name,
            col.source_key,
            col.inferred_type.value,
            str(col.occurrences),
            ", ".join(s.value for s in col.observed),
        )
    rprint(table)
    for w in schema.warnings:
        rprint(f"[yellow]{w.kind}:[/yellow] {w.message}")


@app.command()
def build(
    source: str = typer.Argument(..., help="Markdown source directory"),
    out: Annotated[str, typer.Option("--out", "-o", help="Bundle output directory")] = "dist",
) -> None:
    """Run a full build: content, media, embeddings, schema and database."""
    cfg = _get_config()
    source_dir = Path(source)
    if not source_dir.is_dir():
        rprint(f"[red]Error:[/red] '{source}' is not a directory")
        raise typer.Exit(1)

    rprint(f"[bold]Building[/bold] {source_dir} -> {out}")
    try:
        result = asyncio.run(BuildProcessor(cfg).run(source_dir, Path(out)))
    except (PluginNotFoundError, PluginCycleError, PluginInitializationError) as e:
        rprint(f"[red]Plugin error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        rprint(f"[red]Build failed:[/red] {e}")
        raise typer.Exit(1)

    rprint(
        Panel(
            f"[dim]Posts:[/dim]      {result.posts} ({result.skipped} skipped)\n"
            f"[dim]Media:[/dim]      {result.media}\n"
            f"[dim]Embeddings:[/dim] {result.embeddings}\n"
            f"[dim]Columns:[/dim]    {result.schema_columns}\n"
            f"[dim]Database:[/dim]   {result.database.database_path or '-'}\n"
            f"[dim]Plugins:[/dim]    {', '.join(result.plugins) or '-'}\n"
            f"[dim]Duration:[/dim]   {result.duration:.2f}s",
            title="Build Result",
            border_style="green",
        )
    )
    _display_issues(result.issues)


def _read_frontmatter(source_dir: Path, include_drafts: bool) -> list[dict]:
    found: list[dict] = []
    for path in sorted(source_dir.rglob("*.md")):
        if any(part.startswith(".") for part in path.relative_to(source_dir).parts):
            continue
        try:
            fm, _ = parse_frontmatter(path.read_text(encoding="utf-8-sig"))
        except (FrontmatterError, UnicodeDecodeError, OSError) as e:
            rprint(f"[yellow]Skipping[/yellow] {path}: {e}")
            continue
        if include_drafts or not is_unpublished(fm):
            found.append(fm)
    return found


@app.command()
def schema(
    source: str = typer.Argument(..., help="Markdown source directory"),
    as_json: bool = typer.Option(False, "--json", help="Print the schema as JSON"),
) -> None:
    """Infer and print the SQL columns derived from frontmatter."""
    cfg = _get_config()
    source_dir = Path(source)
    if not source_dir.is_dir():
        rprint(f"[red]Error:[/red] '{source}' is not a directory")
        raise typer.Exit(1)
    inferred = SchemaInferenceEngine().infer(
        _read_frontmatter(source_dir, cfg.content.process_all_files)
    )
    if as_json:
        sys.stdout.write(inferred.model_dump_json(indent=2) + "\n")
        return
    _display_schema(inferred)


@app.command()
def publish(
    build_dir: str = typer.Argument(..., help="Bundle directory produced by `build`"),
    project: str = typer.Option(..., "--project", "-p", help="Project id"),
    job: Annotated[str, typer.Option("--job", help="Job id for non-shared files")] = "manual",
) -> None:
    """Upload a bundle, skipping content already in storage."""
    cfg = _get_config()
    path = Path(build_dir)
    if not path.is_dir():
        rprint(f"[red]Error:[/red] '{build_dir}' is not a directory")
        raise typer.Exit(1)
    try:
        store = create_store(cfg.storage)
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    optimizer = UploadOptimizer(store, prefix=cfg.storage.prefix, max_keys=cfg.storage.max_keys)
    try:
        report = asyncio.run(optimizer.publish(path, project, job))
    except ValueError as e:
        rprint(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"Publish {project}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in report.summary().items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        table.add_row(key, str(value))
    rprint(table)
    for failed in report.failed:
        rprint(f"[red]Failed:[/red] {failed.key}: {failed.error}")
    if report.failed:
        raise typer.Exit(1)


@app.command()
def serve(
    host: Annotated[str | None, typer.Option("--host", help="Bind address")] = None,
    port: Annotated[int | None, typer.Option("--port", help="Bind port")] = None,
) -> None:
    """Run the HTTP build worker."""
    import uvicorn

    from vaultpress.worker.server import create_app

    cfg = _get_config()
    uvicorn.run(
        create_app(cfg),
        host=host or cfg.worker.host,
        port=port or cfg.worker.port,
        log_config=None,
    )


@app.command()
def plugins() -> None:
    """List available plugins per capability and which one is configured."""
    cfg = _get_config()
    loader = PluginLoader(cfg)
    table = Table(title="Plugins")
    table.add_column("Capability", style="cyan")
    table.add_column("Available")
    table.add_column("Configured", style="green")
    for kind, names in loader.discover().items():
        settings = loader.settings_for(CapabilityKind(kind))
        configured = (settings.name or "default") if settings.enabled else "[dim]disabled[/dim]"
        table.add_row(kind, ", ".join(names) or "-", configured)
    rprint(table)


@config_app.command("show")
def config_show() -> None:
    """Show current resolved configuration."""
    cfg = _get_config()
    rprint(Syntax(yaml.dump(cfg.model_dump(mode="json"), default_flow_style=False), "yaml"))


@config_app.command("init")
def config_init(
    force: bool = typer.Option(False, "--force", help="Overwrite existing config"),
) -> None:
    """Create default vaultpress.yaml in current directory."""
    target = Path("vaultpress.yaml")
    if target.exists() and not force:
        rprint("[yellow]vaultpress.yaml already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE)
    rprint(f"[green]Created[/green] {target}")
