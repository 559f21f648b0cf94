"""
Batch tracking for ETL runs.

Every run is identified by a timestamp-derived batch tag. Per-table outcomes
are collected in memory while the run proceeds and appended to ``load_log``
once at the end; duplicate counts found by the staging transform go to
``duplicate_checker``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import Engine, select

from .schema import duplicate_checker, load_log

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"

DUPLICATE_FOUND = "DUPLICATE FOUND"
NO_DUPLICATE = "NO DUPLICATE"


def make_batch_tag(prefix: str, now: Optional[datetime] = None) -> str:
    """
    Build a batch tag such as ``StgBatch_20240131_0915``.

    Args:
        prefix: Layer prefix (RawBatch, StgBatch, DWBatch, ...)
        now: Timestamp to derive the tag from (default: current time)
    """
    now = now or datetime.now()
    return f"{prefix}_{now:%Y%m%d_%H%M}"


@dataclass
class LogEntry:
    """Outcome of loading or transforming one table within a batch."""
    table_name: str
    load_status: str
    message: str
    batch_tag: str
    load_time: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.load_status == STATUS_SUCCESS


@dataclass
class DuplicateCheck:
    """Duplicate count found in a raw table before staging it."""
    table_name: str
    duplicate_count: int
    batch_tag: str
    last_checked: datetime = field(default_factory=datetime.now)

    @property
    def duplicate_status(self) -> str:
        return DUPLICATE_FOUND if self.duplicate_count > 0 else NO_DUPLICATE


class BatchLog:
    """
    In-memory log for one run, flushed to ``load_log`` when the run ends.
    """

    def __init__(self, prefix: str, batch_tag: Optional[str] = None):
        self.batch_tag = batch_tag or make_batch_tag(prefix)
        self.entries: List[LogEntry] = []

    def success(self, table_name: str, message: str) -> LogEntry:
        entry = LogEntry(table_name, STATUS_SUCCESS, message, self.batch_tag)
        self.entries.append(entry)
        logger.success(f"[{self.batch_tag}] {table_name}: {message}")
        return entry

    def failure(self, table_name: str, message: str) -> LogEntry:
        entry = LogEntry(table_name, STATUS_FAILED, message, self.batch_tag)
        self.entries.append(entry)
        logger.error(f"[{self.batch_tag}] {table_name}: {message}")
        return entry

    @property
    def has_errors(self) -> bool:
        return any(not entry.succeeded for entry in self.entries)

    def flush(self, engine: Engine) -> int:
        """
        Append every collected entry to ``load_log``.

        Returns:
            int: Number of log rows written
        """
        if not self.entries:
            return 0

        try:
            with engine.begin() as conn:
                conn.execute(load_log.insert(), [
                    {
                        'table_name': entry.table_name,
                        'batch_tag': entry.batch_tag,
                        'load_status': entry.load_status,
                        'message': entry.message,
                        'load_time': entry.load_time,
                    }
                    for entry in self.entries
                ])
        except Exception as e:
            logger.error(f"Failed to write load log for batch {self.batch_tag}: {e}")
            raise

        logger.info(f"Wrote {len(self.entries)} load log rows for batch {self.batch_tag}")
        return len(self.entries)


def record_duplicate_check(engine: Engine, check: DuplicateCheck) -> None:
    """
    Append one duplicate checker row.

    Args:
        engine: SQLAlchemy engine
        check: Duplicate count for one table
    """
    try:
        with engine.begin() as conn:
            conn.execute(duplicate_checker.insert().values(
                table_name=check.table_name,
                batch_tag=check.batch_tag,
                duplicate_status=check.duplicate_status,
                duplicate_count=check.duplicate_count,
                last_checked=check.last_checked,
            ))
    except Exception as e:
        logger.error(f"Failed to record duplicate check for {check.table_name}: {e}")
        raise

    if check.duplicate_count > 0:
        logger.warning(f"{check.table_name}: {check.duplicate_count} duplicate rows in source")


def fetch_load_log(engine: Engine, batch_tag: Optional[str] = None) -> pd.DataFrame:
    """
    Read load log rows, optionally for one batch only.

    Returns:
        pd.DataFrame: Log rows ordered by load_id
    """
    query = select(load_log).order_by(load_log.c.load_id)
    if batch_tag:
        query = query.where(load_log.c.batch_tag == batch_tag)

    with engine.connect() as conn:
        return pd.read_sql(query, conn)


def fetch_duplicate_checks(engine: Engine, batch_tag: Optional[str] = None) -> pd.DataFrame:
    """
    Read duplicate checker rows, optionally for one batch only.

    Returns:
        pd.DataFrame: Duplicate checker rows ordered by id
    """
    query = select(duplicate_checker).order_by(duplicate_checker.c.id)
    if batch_tag:
        query = query.where(duplicate_checker.c.batch_tag == batch_tag)

    with engine.connect() as conn:
        return pd.read_sql(query, conn)
