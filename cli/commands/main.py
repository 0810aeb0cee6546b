"""Main CLI interface using Typer."""

import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from linguacache import __version__
from linguacache.core.engine import TranslationEngine
from linguacache.core.exceptions import LinguaCacheError
from linguacache.core.fingerprint import fingerprint as make_fingerprint, content_hash, is_translatable, normalize_text
from linguacache.core.models import TranslateOptions
from linguacache.utils.cache import StorageManager, create_storage
from linguacache.utils.config_loader import EngineConfig, load_config
from linguacache.utils.logger import setup_logger

app = typer.Typer(
    name="linguacache",
    help="LinguaCache: cached, batched translation from the command line",
    add_completion=False
)
cache_app = typer.Typer(help="Inspect and manage the persistent translation cache")
app.add_typer(cache_app, name="cache")

console = Console()


def _load(config_path: Optional[Path], source: Optional[str] = None, debug: bool = False) -> EngineConfig:
    try:
        config = load_config(str(config_path) if config_path else None)
    except (FileNotFoundError, LinguaCacheError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if source:
        config.source_language = source
    if debug:
        config.debug = True
        config.log_level = "DEBUG"
    # persist between CLI runs
    config.use_disk_cache = True

    issues = config.validate()
    if issues:
        for issue in issues:
            console.print(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)

    setup_logger(level=config.log_level, log_file=config.log_file)
    return config


def _storage(config: EngineConfig) -> StorageManager:
    return StorageManager(create_storage(use_disk=True, cache_dir=config.cache_dir))


def _exit_with_notifier(engine: TranslationEngine) -> None:
    if engine.notifier.exit_code:
        raise typer.Exit(engine.notifier.exit_code)


@app.command()
def translate(
    text: str = typer.Argument(..., help="Text to translate"),
    target: str = typer.Option(..., "-t", "--target", help="Target locale (e.g. es, pt-BR)"),
    source: Optional[str] = typer.Option(None, "-s", "--source", help="Source locale"),
    use_cache: bool = typer.Option(True, "--cache/--no-cache", help="Use the persistent cache"),
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
    debug_mode: bool = typer.Option(False, "--debug/--no-debug", help="Enable debug logging"),
):
    """Translate a single string."""
    config = _load(config_path, source, debug_mode)

    async def run() -> str:
        async with TranslationEngine(config) as engine:
            result = await engine.translate(text, target, TranslateOptions(cache=use_cache))
            _exit_with_notifier(engine)
            return result

    try:
        result = asyncio.run(run())
    except LinguaCacheError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(result)


@app.command()
def batch(
    input_file: Path = typer.Argument(..., help="JSON file: list of {id, text} or {id: text} mapping"),
    target: str = typer.Option(..., "-t", "--target", help="Target locale"),
    source: Optional[str] = typer.Option(None, "-s", "--source", help="Source locale"),
    output: Optional[Path] = typer.Option(None, "-o", "--output", help="Write results to this JSON file"),
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
):
    """Translate a JSON file of entries in one batch."""
    if not input_file.exists():
        console.print(f"[red]Error: Input file not found: {input_file}[/red]")
        raise typer.Exit(1)

    try:
        data = json.loads(input_file.read_text(encoding="utf-8"))
    except ValueError as e:
        console.print(f"[red]Error: Invalid JSON in {input_file}: {e}[/red]")
        raise typer.Exit(1)

    if isinstance(data, dict):
        entries = [{"id": str(k), "text": v} for k, v in data.items()]
    elif isinstance(data, list):
        entries = data
    else:
        console.print("[red]Error: Expected a JSON list or object[/red]")
        raise typer.Exit(1)

    config = _load(config_path, source)

    async def run():
        async with TranslationEngine(config) as engine:
            results = await engine.translate_batch(entries, target)
            _exit_with_notifier(engine)
            return results

    try:
        results = asyncio.run(run())
    except LinguaCacheError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if output:
        output.write_text(json.dumps(results, ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"[green]Wrote {len(results)} translations to {output}[/green]")
        return

    table = Table(title=f"Translations ({config.source_language} → {target})")
    table.add_column("ID", style="cyan")
    table.add_column("Translation")
    for entry_id, translation in results.items():
        table.add_row(entry_id, translation)
    console.print(table)


@app.command()
def fingerprint(
    texts: List[str] = typer.Argument(..., help="Texts to fingerprint"),
):
    """Show fingerprints and translatability for texts."""
    table = Table(title="Fingerprints")
    table.add_column("Text")
    table.add_column("Normalized", style="dim")
    table.add_column("Fingerprint", style="cyan")
    table.add_column("Content hash", style="cyan")
    table.add_column("Translatable")

    for text in texts:
        table.add_row(
            text,
            normalize_text(text),
            make_fingerprint(text),
            content_hash(text),
            "[green]yes[/green]" if is_translatable(text) else "[yellow]no[/yellow]",
        )
    console.print(table)


@app.command()
def check(
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
):
    """Check connectivity to the translation API."""
    config = _load(config_path)
    if not config.api_key:
        console.print("[red]Error: No API key configured (set LINGUACACHE_API_KEY)[/red]")
        raise typer.Exit(1)

    async def run():
        async with TranslationEngine(config) as engine:
            health = await engine.backend.health_check()
            models = await engine.backend.get_supported_models()
            return health, models

    try:
        health, models = asyncio.run(run())
    except LinguaCacheError as e:
        console.print(f"[red]✗ API check failed: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓ API reachable[/green] ({health.get('status', 'unknown')})")
    if models.get("models"):
        console.print(f"Models: {', '.join(models['models'])}")
    if models.get("languages"):
        console.print(f"Languages: {', '.join(models['languages'])}")


@app.command()
def version():
    """Show version."""
    console.print(f"linguacache {__version__}")


@cache_app.command("stats")
def cache_stats(
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
):
    """Show cache statistics."""
    config = _load(config_path)
    stats = _storage(config).get_stats()

    table = Table(title="Cache statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key in ("type", "total_items", "translations", "locales", "total_size", "schema_version", "errors"):
        table.add_row(key, str(stats.get(key)))
    console.print(table)


@cache_app.command("clear")
def cache_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
):
    """Remove every cached record."""
    if not yes and not typer.confirm("Clear the translation cache?"):
        raise typer.Exit(0)
    config = _load(config_path)
    removed = _storage(config).clear_cache()
    console.print(f"[green]Removed {removed} records[/green]")


@cache_app.command("export")
def cache_export(
    output: Path = typer.Argument(..., help="Destination JSON file"),
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
):
    """Export cached translations to a JSON file."""
    config = _load(config_path)
    data = _storage(config).export_cache()
    output.write_text(data, encoding="utf-8")
    console.print(f"[green]Exported {len(json.loads(data))} records to {output}[/green]")


@cache_app.command("import")
def cache_import(
    input_file: Path = typer.Argument(..., help="JSON file produced by 'cache export'"),
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
):
    """Import cached translations from a JSON file."""
    if not input_file.exists():
        console.print(f"[red]Error: Input file not found: {input_file}[/red]")
        raise typer.Exit(1)

    config = _load(config_path)
    try:
        count = _storage(config).import_cache(input_file.read_text(encoding="utf-8"))
    except LinguaCacheError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Imported {count} records[/green]")


@cache_app.command("cleanup")
def cache_cleanup(
    max_age_days: float = typer.Option(7.0, "--max-age-days", help="Drop records older than this"),
    config_path: Optional[Path] = typer.Option(None, "-c", "--config", help="YAML config file"),
):
    """Drop expired and outdated cache records."""
    config = _load(config_path)
    removed = _storage(config).cleanup_old_cache(int(max_age_days * 24 * 60 * 60 * 1000))
    console.print(f"[green]Removed {removed} stale records[/green]")


def cli():
    """Main CLI entry point."""
    if len(sys.argv) == 1:
        console.print(f"[bold blue]LinguaCache {__version__}[/bold blue]")
        console.print("\n[dim]Type 'linguacache --help' for usage information[/dim]\n")
        return

    app()


if __name__ == "__main__":
    cli()
