"""
RiverMask command line
======================
Installed as the ``rivermask`` command via ``pyproject.toml``.

Usage:
    rivermask run config.json --archive archive/ --out results/
    rivermask composite config.json --archive archive/ --out composites/
    rivermask check config.json
"""

import logging
from pathlib import Path

import click

from .core.config import load_config
from .core.engine import load_archive
from .core.export import FolderSink
from .core.orchestrator import plan_runs, run_batch, run_composites
from .domain.errors import ConfigurationError, RiverMaskError


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )


@click.group(help="Seasonal river water masks and their validation.")
def main() -> None:
    pass


@main.command(help="Run every configured region, year and season.")
@click.argument(
    "config_path",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--archive", "-a",
    "archive_path",
    required=True,
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    help="Directory holding manifest.json and the scene files.",
)
@click.option(
    "--out", "-o",
    "output_path",
    required=True,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Directory for masks, sample tables and summary metrics.",
)
@click.option("--workers", "-w", type=int, default=None,
              help="Concurrent windows (overrides max_workers).")
@click.option("--xlsx", is_flag=True, default=False,
              help="Write tables as XLSX instead of CSV.")
@click.option("--no-masks", is_flag=True, default=False,
              help="Skip GeoTIFF mask export.")
@click.option("--verbose", "-v", is_flag=True, default=False,
              help="Enable debug-level logging output.")
def run(config_path, archive_path, output_path, workers, xlsx, no_masks, verbose):
    _setup_logging(verbose)
    try:
        overrides = {"export_masks": False} if no_masks else None
        config = load_config(str(config_path), overrides)
        engine = load_archive(str(archive_path))
        sink = FolderSink(str(output_path), table_format="xlsx" if xlsx else "csv")
        summary = run_batch(config, engine, sink, max_workers=workers)
    except ConfigurationError as exc:
        click.secho(f"Configuration error: {exc}", fg="red", err=True)
        raise SystemExit(1) from exc
    except (RiverMaskError, OSError, RuntimeError) as exc:
        click.secho(f"Error: {exc}", fg="red", err=True)
        raise SystemExit(2) from exc

    click.echo(
        f"{len(summary.rows)} windows: {summary.n_ok} with metrics, "
        f"{summary.n_failed} without"
    )
    for row in summary.rows:
        if not row.has_metrics:
            click.echo(f"  {row.region} {row.year} {row.season}: {row.status} ({row.message})")


@main.command(help="Export the configured reflectance composites for every region.")
@click.argument(
    "config_path",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--archive", "-a",
    "archive_path",
    required=True,
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
    help="Directory holding manifest.json and the scene files.",
)
@click.option(
    "--out", "-o",
    "output_path",
    required=True,
    type=click.Path(file_okay=False, dir_okay=True, path_type=Path),
    help="Directory for composite GeoTIFFs and the inventory tables.",
)
@click.option("--xlsx", is_flag=True, default=False,
              help="Write inventory tables as XLSX instead of CSV.")
@click.option("--verbose", "-v", is_flag=True, default=False,
              help="Enable debug-level logging output.")
def composite(config_path, archive_path, output_path, xlsx, verbose):
    _setup_logging(verbose)
    try:
        config = load_config(str(config_path))
        if not config.composites:
            raise ConfigurationError("Configuration lists no composites")
        engine = load_archive(str(archive_path))
        sink = FolderSink(str(output_path), table_format="xlsx" if xlsx else "csv")
        rows = run_composites(config, engine, sink)
    except ConfigurationError as exc:
        click.secho(f"Configuration error: {exc}", fg="red", err=True)
        raise SystemExit(1) from exc
    except (RiverMaskError, OSError, RuntimeError) as exc:
        click.secho(f"Error: {exc}", fg="red", err=True)
        raise SystemExit(2) from exc

    exported = [r for r in rows if r.exported]
    click.echo(f"{len(rows)} composites: {len(exported)} built")
    for row in rows:
        if row.exported:
            click.echo(f"  {row.description}: {row.composite_source}, {row.n_images} images")
        else:
            click.echo(f"  {row.region} {row.sensor} {row.year}: {row.status} ({row.message})")


@main.command(help="Validate a configuration file without running it.")
@click.argument(
    "config_path",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
)
def check(config_path):
    try:
        config = load_config(str(config_path))
    except ConfigurationError as exc:
        click.secho(str(exc), fg="red", err=True)
        raise SystemExit(1) from exc
    click.echo(f"OK: {len(plan_runs(config))} windows planned")


if __name__ == "__main__":
    main()
