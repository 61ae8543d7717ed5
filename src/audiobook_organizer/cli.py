"""CLI entry point for the audiobook organizer."""

import asyncio
import json
from pathlib import Path

import click
from loguru import logger

from .api.audnexus import AudnexusClient
from .config import OrganizerConfig
from .errors import ConfigError, ScanError
from .models import BatchResult, BookStatus
from .orchestrator import Orchestrator

log = logger.bind(stage="cli")


def _find_config_file() -> Path | None:
    """Look for .env next to the package or in cwd."""
    pkg_dir = Path(__file__).resolve().parent
    for candidate in [
        pkg_dir.parent.parent / ".env",  # dev: src/../.env
        Path.cwd() / ".env",
    ]:
        if candidate.is_file():
            return candidate
    return None


async def _run(config: OrganizerConfig, source: Path, dest: Path | None) -> BatchResult:
    async with AudnexusClient(
        base_url=config.audnexus_base_url,
        region=config.audnexus_region,
        timeout=config.provider_timeout,
    ) as client:
        orchestrator = Orchestrator(config, client)
        return await orchestrator.process_directory(source, dest)


_STATUS_LABELS = {
    BookStatus.PROCESSED: "OK",
    BookStatus.METADATA_ONLY: "NO MATCH",
    BookStatus.SKIPPED: "SKIPPED",
    BookStatus.FAILED: "FAILED",
}


def _display_results(result: BatchResult) -> None:
    for book in result.books:
        label = _STATUS_LABELS[book.status]
        score = f" ({book.score:.2f})" if book.score is not None else ""
        line = f"  [{label:<8}] {book.name}{score}"
        if book.error:
            line += f" -- {book.error}"
        click.echo(line)
        for target in book.targets:
            click.echo(f"             -> {target}")

    click.echo(
        f"\nBatch complete: {result.processed} processed, "
        f"{result.metadata_only} metadata-only, {result.skipped} skipped, "
        f"{result.failed} failed ({result.total} total)"
    )


@click.command()
@click.argument("source_path", type=click.Path())
@click.option(
    "-d",
    "--dest",
    "dest_dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Library root to organize into. Identification only if omitted.",
)
@click.option(
    "--dry-run", is_flag=True, help="Show what would happen without doing it."
)
@click.option("--move", is_flag=True, help="Move files instead of copying them.")
@click.option("--overwrite", is_flag=True, help="Replace existing files at the destination.")
@click.option("--write-tags", is_flag=True, help="Write matched metadata into the files.")
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Books looked up concurrently.",
)
@click.option(
    "--max-depth",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum directory depth to scan (root is 1).",
)
@click.option("--json", "as_json", is_flag=True, help="Print the batch result as JSON.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "-c",
    "--config",
    "config_file",
    type=click.Path(exists=True),
    default=None,
    help="Path to .env file.",
)
def main(
    source_path: str,
    dest_dir: str | None,
    dry_run: bool,
    move: bool,
    overwrite: bool,
    write_tags: bool,
    concurrency: int | None,
    max_depth: int | None,
    as_json: bool,
    verbose: bool,
    config_file: str | None,
) -> None:
    """Identify audiobooks under SOURCE_PATH and organize them into a library."""
    source = Path(source_path).resolve()
    dest = Path(dest_dir).resolve() if dest_dir else None

    env_file = Path(config_file) if config_file else _find_config_file()

    # Pass CLI flags as kwargs so they win over env and .env values
    config_kwargs: dict = {"verbose": verbose}
    if dry_run:
        config_kwargs["dry_run"] = True
    if move:
        config_kwargs["move_files"] = True
    if overwrite:
        config_kwargs["overwrite_existing"] = True
    if write_tags:
        config_kwargs["write_tags"] = True
    if concurrency is not None:
        config_kwargs["concurrency"] = concurrency
    if max_depth is not None:
        config_kwargs["max_scan_depth"] = max_depth
    if verbose:
        config_kwargs["log_level"] = "DEBUG"

    config = OrganizerConfig(_env_file=env_file, **config_kwargs)
    config.setup_logging()

    log.info(
        f"Starting organizer: source={source} dest={dest} "
        f"dry_run={config.dry_run} move={config.move_files}"
    )

    try:
        result = asyncio.run(_run(config, source, dest))
    except (ConfigError, ScanError) as e:
        click.echo(f"ERROR: {e}", err=True)
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        _display_results(result)
