"""
Command-line interface for Sales Warehouse ETL operations.

Provides commands for creating the schema, running each layer of the ETL,
running the quality checks and inspecting the audit tables.
"""

import sys
from pathlib import Path
from typing import Optional

import click
from loguru import logger

from .batch_log import LogEntry, fetch_load_log
from .config import get_settings
from .db import count_rows, get_engine
from .loaders import run_raw_load
from .pipeline import run_pipeline
from .qc import QualityReport, run_quality_checks, summarize_results
from .schema import LAYERS, create_schema, drop_schema
from .staging import run_staging_transform
from .warehouse import run_warehouse_load


def setup_logging() -> None:
    """Configure logging for CLI operations."""
    settings = get_settings()

    # Remove default handler
    logger.remove()

    # Add console handler
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
    )

    # Add file handler if configured
    if settings.log_file:
        logger.add(
            settings.log_file,
            level=settings.log_level,
            rotation="10 MB",
            retention="30 days",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
        )


def _echo_entries(entries: list) -> None:
    for entry in entries:
        mark = "OK  " if entry.succeeded else "FAIL"
        click.echo(f"  [{mark}] {entry.table_name:<18} {entry.message}")


def _exit_on_failed_tables(entries: list, step: str) -> None:
    failed = [entry.table_name for entry in entries if not entry.succeeded]
    if failed:
        logger.error(f"{step} failed for: {', '.join(failed)}")
        sys.exit(1)


def _echo_quality_report(report: QualityReport) -> None:
    summary = summarize_results(report.results)
    overall = summary['overall']

    click.echo(f"\nQuality Checks - {report.layer} ({report.batch_tag})")
    click.echo("=" * 60)
    click.echo(f"Checks:     {overall['total_checks']}")
    click.echo(f"Passed:     {overall['passed']}")
    click.echo(f"Failed:     {overall['failed']}")
    click.echo(f"Warnings:   {overall['warnings']}")
    click.echo(f"Pass Rate:  {overall['pass_rate']:.1f}%")
    click.echo(f"Status:     {overall['status']}")

    click.echo("\nBy table:")
    for row in summary['by_table']:
        click.echo(f"  {row['table_name']:<28} {row['passed']:>3} pass {row['failed']:>3} fail "
                   f"{row['warnings']:>3} warn  {row['status']}")

    issues = [r for r in report.results if not r.passed]
    if issues:
        click.echo("\nIssues:")
        for result in issues:
            click.echo(f"  {result.test_result:<8} {result.check_name} ({result.table_name}): {result.message}")


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
def main(verbose: bool) -> None:
    """Sales Warehouse ETL Command Line Interface."""
    if verbose:
        # Override log level for verbose mode
        settings = get_settings()
        settings.log_level = "DEBUG"

    setup_logging()
    logger.debug("Sales Warehouse ETL CLI started")


@main.command('init-db')
@click.option('--drop', is_flag=True, help='Drop every table first (destroys all data)')
def init_db(drop: bool) -> None:
    """Create the raw, staging, warehouse and audit tables."""
    try:
        engine = get_engine()
        if drop:
            drop_schema(engine)
        create_schema(engine)
        logger.success("Database schema initialised")

    except Exception as e:
        logger.error(f"Schema creation failed: {e}")
        sys.exit(1)


@main.command('load-raw')
@click.argument('source_dir', required=False, type=click.Path(path_type=Path))
def load_raw(source_dir: Optional[Path]) -> None:
    """
    Load every raw table from CSV files.

    SOURCE_DIR: Directory with one CSV per entity (default: DATA_SOURCE_PATH)
    """
    try:
        engine = get_engine()
        create_schema(engine)
        entries = run_raw_load(source_dir, engine=engine)
        _echo_entries(entries)

    except Exception as e:
        logger.error(f"Raw load failed: {e}")
        sys.exit(1)

    _exit_on_failed_tables(entries, "Raw load")


@main.command()
def stage() -> None:
    """Rebuild the staging layer from the raw layer."""
    try:
        result = run_staging_transform()
        _echo_entries(result.entries)

        duplicates = [check for check in result.duplicate_checks if check.duplicate_count]
        for check in duplicates:
            click.echo(f"  {check.table_name}: {check.duplicate_count} duplicate source rows removed")

    except Exception as e:
        logger.error(f"Staging transform failed: {e}")
        sys.exit(1)

    _exit_on_failed_tables(result.entries, "Staging transform")


@main.command('load-dw')
def load_dw() -> None:
    """Rebuild the warehouse (star schema) from the staging layer."""
    try:
        entries = run_warehouse_load()
        _echo_entries(entries)

    except Exception as e:
        logger.error(f"Warehouse load failed: {e}")
        sys.exit(1)

    _exit_on_failed_tables(entries, "Warehouse load")


@main.command()
@click.argument('layer', type=click.Choice(['staging', 'warehouse']))
def check(layer: str) -> None:
    """
    Run the quality checks of one layer.

    Exits with status 1 when any check FAILs.
    """
    try:
        report = run_quality_checks(layer)
        _echo_quality_report(report)

    except Exception as e:
        logger.error(f"Quality checks failed to run: {e}")
        sys.exit(1)

    if report.has_failures:
        sys.exit(1)


@main.command()
@click.argument('source_dir', required=False, type=click.Path(path_type=Path))
@click.option('--skip-checks', is_flag=True, help='Do not run the quality checks')
def run(source_dir: Optional[Path], skip_checks: bool) -> None:
    """
    Run the whole pipeline: raw, staging, checks, warehouse, checks.

    SOURCE_DIR: Directory with one CSV per entity (default: DATA_SOURCE_PATH)
    """
    try:
        report = run_pipeline(source_dir, with_checks=not skip_checks)

        click.echo("\nLoad log")
        click.echo("=" * 60)
        _echo_entries(report.entries)

        for quality in (report.staging_checks, report.warehouse_checks):
            if quality is not None:
                _echo_quality_report(quality)

    except Exception as e:
        logger.error(f"ETL pipeline failed: {e}")
        sys.exit(1)

    _exit_on_failed_tables(report.entries, "ETL pipeline")


@main.command()
@click.option('--batch', 'batch_tag', help='Only show this batch tag')
@click.option('--limit', default=50, show_default=True, help='Number of most recent rows to show')
def logs(batch_tag: Optional[str], limit: int) -> None:
    """Show the load log."""
    try:
        df = fetch_load_log(get_engine(), batch_tag)

        if df.empty:
            click.echo("No load log entries")
            return

        click.echo(f"\nLoad Log{f' - {batch_tag}' if batch_tag else ''}")
        click.echo("=" * 60)
        for row in df.tail(limit).itertuples(index=False):
            entry = LogEntry(row.table_name, row.load_status, row.message, row.batch_tag, row.load_time)
            click.echo(f"{entry.load_time:%Y-%m-%d %H:%M:%S}  {entry.batch_tag:<24} "
                       f"{entry.load_status:<8} {entry.table_name:<18} {entry.message}")

    except Exception as e:
        logger.error(f"Failed to read load log: {e}")
        sys.exit(1)


@main.command()
def status() -> None:
    """Show row counts of every table, by layer."""
    try:
        engine = get_engine()

        click.echo("\nWarehouse Status")
        click.echo("=" * 50)
        for layer, tables in LAYERS.items():
            click.echo(f"\n{layer.capitalize()}:")
            for table in tables:
                try:
                    click.echo(f"  {table:<24} {count_rows(engine, table):>10,}")
                except Exception as e:
                    logger.debug(f"Could not count {table}: {e}")
                    click.echo(f"  {table:<24} {'missing':>10}")

    except Exception as e:
        logger.error(f"Status check failed: {e}")
        sys.exit(1)


@main.command()
@click.option('--reload', is_flag=True, help='Reload on code changes (development)')
def serve(reload: bool) -> None:
    """Start the read-only inspection API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sales_api.fastapi_server:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=1 if reload else settings.api_workers,
        reload=reload,
    )


if __name__ == '__main__':
    main()
