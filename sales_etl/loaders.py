"""
Raw layer loader.

Bulk-loads one delimited flat file per source entity into the matching raw
table. Each table is truncated and reloaded on every run and one load log row
is recorded per table.
"""

import re
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import Engine

from .batch_log import BatchLog, LogEntry
from .config import get_settings
from .db import append_frame, get_engine, truncate_table
from .schema import RAW_TABLES, get_table

RAW_BATCH_PREFIX = "RawBatch"

# Source file name (without extension) for each raw table
SOURCE_FILES: Dict[str, str] = {table: table[len("raw_"):] for table in RAW_TABLES}

# Header spellings seen in source extracts that differ from the raw column names
COLUMN_ALIASES: Dict[str, str] = {
    'zipcode': 'zip_code',
    'zip': 'zip_code',
    'active_': 'active',
}


def copy_csv_to_raw(engine: Engine, csv_path: Path, table: str) -> int:
    """
    Bulk-load one CSV file into a raw table (truncate, then append).

    The header row is skipped; its names are normalised to snake case and
    projected onto the raw table's columns. Columns the table does not have
    are dropped and missing ones are left null.

    Args:
        engine: SQLAlchemy engine
        csv_path: Path to CSV file to load
        table: Target raw table name

    Returns:
        int: Number of rows loaded

    Raises:
        FileNotFoundError: If CSV file doesn't exist
        ValueError: If the table is not a raw table or the CSV cannot be parsed
    """
    if table not in RAW_TABLES:
        raise ValueError(f"Not a raw table: {table}")

    # A missing or unreadable file still leaves the table empty
    truncate_table(engine, table)

    if not csv_path.exists():
        raise FileNotFoundError(f"CSV file not found: {csv_path}")

    logger.info(f"Loading CSV {csv_path} into raw table {table}")

    try:
        # Read everything as strings; types are applied against the table schema
        df = pd.read_csv(csv_path, dtype=str, skipinitialspace=False)
    except Exception as e:
        raise ValueError(f"Invalid CSV format: {e}")

    df = _standardize_columns(df, table)
    rows_loaded = append_frame(engine, df, table)

    logger.info(f"Loaded {rows_loaded} rows into {table}")
    return rows_loaded


def _standardize_columns(df: pd.DataFrame, table: str) -> pd.DataFrame:
    """
    Normalise header names and keep only the columns the raw table defines.

    Args:
        df: Frame read from the CSV file
        table: Target raw table name

    Returns:
        A DataFrame whose columns are a subset of the table's columns
    """
    df.columns = [_normalize_header(col) for col in df.columns]
    df = df.rename(columns=COLUMN_ALIASES)

    expected = [column.name for column in get_table(table).columns]
    missing = [col for col in expected if col not in df.columns]
    unknown = [col for col in df.columns if col not in expected]

    if missing:
        logger.warning(f"{table}: source has no column(s) {missing}; they will be loaded as NULL")
    if unknown:
        logger.debug(f"{table}: ignoring source column(s) {unknown}")

    return df[[col for col in expected if col in df.columns]]


def _normalize_header(name: str) -> str:
    """Lower-case a header and turn spaces and dashes into underscores."""
    return re.sub(r'[\s\-]+', '_', str(name).strip().lower())


def run_raw_load(source_dir: Optional[Path] = None, engine: Optional[Engine] = None,
                 batch_tag: Optional[str] = None) -> List[LogEntry]:
    """
    Load every raw table from ``<source_dir>/<entity>.csv``.

    A failing table is logged as FAILED and the run moves on to the next one.

    Args:
        source_dir: Directory holding the source files (default: settings)
        engine: SQLAlchemy engine (default: from settings)
        batch_tag: Batch tag to log under (default: generated)

    Returns:
        List[LogEntry]: One entry per raw table

    Raises:
        FileNotFoundError: If the source directory does not exist
    """
    settings = get_settings()
    source_dir = Path(source_dir or settings.data_source_path)
    engine = engine or get_engine()

    if not source_dir.is_dir():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")

    batch = BatchLog(RAW_BATCH_PREFIX, batch_tag)
    logger.info(f"Starting raw load {batch.batch_tag} from {source_dir}")

    for table in RAW_TABLES:
        csv_path = source_dir / f"{SOURCE_FILES[table]}.csv"
        try:
            rows = copy_csv_to_raw(engine, csv_path, table)
            batch.success(table, f"Loaded successfully ({rows} rows)")
        except Exception as e:
            batch.failure(table, f"Load failed - check file path and format: {e}")

    batch.flush(engine)

    failed = [entry.table_name for entry in batch.entries if not entry.succeeded]
    if failed:
        logger.warning(f"Raw load {batch.batch_tag} finished with {len(failed)} failed table(s): {failed}")
    else:
        logger.success(f"Raw load {batch.batch_tag} completed for {len(batch.entries)} tables")

    return batch.entries
