from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import ConfigError, ModmgrConfig, load_config
from .download import DownloadOrchestrator
from .exceptions import CatalogError
from .logs import setup_logging
from .majority import select_majority
from .reconcile import ReleaseReconciler
from .records import Catalog, load_catalog, save_catalog
from .resolver import RecordResolver
from .validation import RESULTS_FILENAME, validate_catalog, write_results_csv

app = typer.Typer(help="Minecraft mod catalog manager (modmgr)")

_rich_console = Console()


def _fail(message: str, code: int = 1) -> None:
    typer.secho(message, err=True, fg="red")
    raise typer.Exit(code=code)


def _get_config(ctx: typer.Context) -> ModmgrConfig:
    if ctx.obj is None:
        ctx.obj = {}
    cfg = ctx.obj.get("config")
    if cfg is None:
        try:
            cfg = load_config(root=ctx.obj.get("root"))
        except ConfigError as exc:
            _fail(str(exc), code=2)
        ctx.obj["config"] = cfg
    return cfg


def _load_catalog_or_exit(cfg: ModmgrConfig) -> Catalog:
    try:
        return load_catalog(cfg.catalog_path)
    except CatalogError as exc:
        _fail(str(exc), code=2)


@app.callback()
def main(
    ctx: typer.Context,
    root: Path = typer.Option(None, "--root", help="Project root containing modlist.csv and .modmgr.json"),
    log_level: str = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    ctx.obj = ctx.obj or {}
    ctx.obj["root"] = root
    setup_logging(log_level)


@app.command("verify")
def verify_command(ctx: typer.Context):
    """Check every record's integrity fingerprint."""
    cfg = _get_config(ctx)
    catalog = _load_catalog_or_exit(cfg)
    warnings = catalog.integrity_warnings()
    unfingerprinted = catalog.unfingerprinted()

    table = Table(title="Catalog integrity", box=box.SIMPLE_HEAVY)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Records", str(len(catalog)))
    table.add_row("Modified outside modmgr", str(len(warnings)))
    table.add_row("Never fingerprinted", str(len(unfingerprinted)))
    _rich_console.print(table)

    for warning in warnings:
        typer.secho(str(warning), fg="yellow")


@app.command("validate")
def validate_command(
    ctx: typer.Context,
    update: bool = typer.Option(False, "--update", help="Promote each record to its latest version"),
    cached: bool = typer.Option(False, "--cached", help="Serve registry responses from the API cache"),
):
    """Resolve every record against its registry and save the results."""
    cfg = _get_config(ctx)
    if cached:
        cfg = cfg.model_copy(update={"use_cached_responses": True})
    catalog = _load_catalog_or_exit(cfg)

    summary = validate_catalog(catalog, RecordResolver(cfg), update=update)
    try:
        backup = save_catalog(catalog, backup_dir=cfg.backup_dir, check_concurrent=True)
    except CatalogError as exc:
        _fail(str(exc), code=2)
    write_results_csv(summary, cfg.api_cache_dir / RESULTS_FILENAME)

    table = Table(title="Validation", box=box.SIMPLE_HEAVY)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Records", str(len(summary.results)))
    table.add_row("Found", str(summary.found))
    table.add_row("Not found", str(summary.not_found))
    table.add_row("Errors", str(len(summary.errors)))
    table.add_row("Updates available", str(len(summary.updates_available)))
    table.add_row("Records changed", str(len(summary.changed)))
    _rich_console.print(table)

    if summary.errors:
        error_table = Table(title="Errors", box=box.MINIMAL)
        error_table.add_column("ID", style="cyan")
        error_table.add_column("Error")
        for result in summary.errors:
            error_table.add_row(result.record_id, result.error or "")
        _rich_console.print(error_table)
    if backup:
        typer.secho(f"Previous catalog saved to {backup}", fg="cyan")


@app.command("majority")
def majority_command(ctx: typer.Context):
    """Show which game version most records target."""
    cfg = _get_config(ctx)
    catalog = _load_catalog_or_exit(cfg)
    majority = select_majority(catalog, cfg.default_game_version)

    table = Table(title="Latest game version distribution", box=box.MINIMAL_DOUBLE_HEAD)
    table.add_column("Game version", style="cyan")
    table.add_column("Records", justify="right")
    table.add_column("Share", justify="right")
    for share in majority.distribution:
        style = "bold green" if share.version == majority.version else ""
        table.add_row(Text(share.version, style=style), str(share.count), f"{share.percentage:.1f}%")
    _rich_console.print(table)

    if majority.is_default:
        typer.secho(f"No record reports a latest game version; using default {majority.version}", fg="yellow")
    else:
        typer.secho(f"Majority version: {majority.version}", fg="green")
    if majority.tied:
        typer.secho(f"Tied with {', '.join(majority.tied)}; picked the first seen", fg="yellow")


@app.command("download")
def download_command(
    ctx: typer.Context,
    game_version: Optional[str] = typer.Option(None, "--game-version", help="Only records for this game version"),
    latest: bool = typer.Option(False, "--latest", help="Download latest versions into the majority version folder"),
    force: bool = typer.Option(False, "--force", help="Re-download files that already exist"),
):
    """Download resolved artifacts into the cache."""
    cfg = _get_config(ctx)
    catalog = _load_catalog_or_exit(cfg)
    majority = select_majority(catalog, cfg.default_game_version)
    orchestrator = DownloadOrchestrator(cfg, majority_version=majority.version, use_latest=latest, force=force)
    summary = orchestrator.run(catalog, game_version=game_version)
    results_path = orchestrator.write_results_csv(summary)

    table = Table(title="Downloads", box=box.SIMPLE_HEAVY)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Downloaded", str(len(summary.downloaded)))
    table.add_row("Already present", str(len(summary.skipped)))
    table.add_row("Failed", str(summary.error_count))
    table.add_row("Without URL", str(len(summary.unresolved)))
    _rich_console.print(table)
    typer.secho(f"Results written to {results_path}", fg="cyan")

    if summary.error_count:
        for failure in summary.failed:
            typer.secho(f"{failure.record_id}: {failure.error}", fg="red")
        raise typer.Exit(code=1)


@app.command("reconcile")
def reconcile_command(
    ctx: typer.Context,
    game_version: str = typer.Argument(..., help="Game version folder in the cache to check"),
    relaxed: bool = typer.Option(False, "--relaxed", help="Pair files that differ only by version"),
    cache_root: Path = typer.Option(None, "--cache-root", help="Override the download cache root"),
):
    """Compare the expected release file set with the download cache."""
    cfg = _get_config(ctx)
    catalog = _load_catalog_or_exit(cfg)
    reconciler = ReleaseReconciler(cfg)
    report = reconciler.reconcile(catalog, game_version, cache_root, relaxed=relaxed)
    output_dir = reconciler.write(report)

    table = Table(title=f"Release {game_version}", box=box.SIMPLE_HEAVY)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    for name, count in report.summary.items():
        table.add_row(name.replace("_", " ").capitalize(), str(count))
    _rich_console.print(table)

    if report.paired_by_version:
        pair_table = Table(title="Version-only differences", box=box.MINIMAL)
        pair_table.add_column("Folder")
        pair_table.add_column("Mod", style="cyan")
        pair_table.add_column("Expected")
        pair_table.add_column("Actual")
        for pair in report.paired_by_version:
            pair_table.add_row(pair.folder, pair.base, "\n".join(pair.expected), "\n".join(pair.actual))
        _rich_console.print(pair_table)

    for warning in report.warnings:
        typer.secho(warning, fg="yellow")
    typer.secho(f"Report written to {output_dir}", fg="cyan")
    if not report.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover
    app()
