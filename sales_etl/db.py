"""
Database helpers shared by every layer.

Wraps engine creation and the table-level primitives the pipeline is built
from: truncate, read into a DataFrame, append a DataFrame, count rows.
"""

from typing import Dict, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import Date, DateTime, Engine, Integer, Numeric, Table, create_engine, text

from .config import get_settings
from .schema import get_table

_engines: Dict[str, Engine] = {}


def get_engine(database_url: Optional[str] = None) -> Engine:
    """
    Return a (cached) SQLAlchemy engine.

    Args:
        database_url: Connection string. If None, uses settings from config.
    """
    if database_url is None:
        database_url = get_settings().database_url

    engine = _engines.get(database_url)
    if engine is None:
        engine = create_engine(database_url, echo=False)
        _engines[database_url] = engine
        logger.debug(f"Created engine for {engine.url.render_as_string(hide_password=True)}")
    return engine


def dispose_engines() -> None:
    """Dispose and forget every cached engine (useful for testing)."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()


def truncate_table(engine: Engine, table: str) -> None:
    """
    Empty a table in its own transaction.

    SQLite has no TRUNCATE, so it gets a plain DELETE; PostgreSQL also
    restarts the identity so surrogate keys start from 1 on every reload.
    """
    get_table(table)
    dialect = engine.dialect.name

    if dialect == "sqlite":
        statement = f"DELETE FROM {table}"
    elif dialect == "postgresql":
        statement = f"TRUNCATE TABLE {table} RESTART IDENTITY"
    else:
        statement = f"TRUNCATE TABLE {table}"

    try:
        with engine.begin() as conn:
            conn.execute(text(statement))
        logger.debug(f"Truncated table {table}")
    except Exception as e:
        logger.error(f"Failed to truncate table {table}: {e}")
        raise


def conform_frame(df: pd.DataFrame, table: Table) -> pd.DataFrame:
    """
    Project a DataFrame onto a table's columns and coerce each column to the
    pandas dtype matching its SQL type.

    Columns missing from the frame are filled with nulls, except generated
    surrogate keys which are left to the database. Extra columns are dropped.
    Date columns come back as normalised ``datetime64`` values.
    """
    conformed = pd.DataFrame(index=df.index)

    for column in table.columns:
        if column.primary_key and column.autoincrement is True and column.name not in df.columns:
            continue

        values = df[column.name] if column.name in df.columns else pd.Series(None, index=df.index, dtype=object)

        if isinstance(column.type, Integer):
            conformed[column.name] = pd.to_numeric(values, errors="coerce").round().astype("Int64")
        elif isinstance(column.type, Numeric):
            conformed[column.name] = pd.to_numeric(values, errors="coerce").astype(float)
        elif isinstance(column.type, DateTime):
            conformed[column.name] = pd.to_datetime(values, errors="coerce")
        elif isinstance(column.type, Date):
            conformed[column.name] = pd.to_datetime(values, errors="coerce").dt.normalize()
        else:
            conformed[column.name] = values.astype(object).where(values.notna(), None)

    return conformed.reset_index(drop=True)


def read_table(engine: Engine, table: str) -> pd.DataFrame:
    """
    Read a whole table into a DataFrame with schema-consistent dtypes.

    Args:
        engine: SQLAlchemy engine
        table: Table name

    Returns:
        pd.DataFrame: Table contents
    """
    definition = get_table(table)

    try:
        with engine.connect() as conn:
            df = pd.read_sql(text(f"SELECT * FROM {table}"), conn, coerce_float=True)
    except Exception as e:
        logger.error(f"Failed to read table {table}: {e}")
        raise

    logger.debug(f"Read {len(df)} rows from {table}")
    return conform_frame(df, definition)


def append_frame(engine: Engine, df: pd.DataFrame, table: str) -> int:
    """
    Append a DataFrame to an existing table.

    Args:
        engine: SQLAlchemy engine
        df: Rows to insert; columns are matched by name
        table: Target table name

    Returns:
        int: Number of rows inserted
    """
    definition = get_table(table)

    if df.empty:
        logger.debug(f"No rows to insert into {table}")
        return 0

    rows = conform_frame(df, definition)

    # Date columns go in as python dates so SQLite stores plain ISO dates
    for column in definition.columns:
        if column.name in rows.columns and isinstance(column.type, Date):
            dates = rows[column.name]
            rows[column.name] = dates.dt.date.astype(object).where(dates.notna(), None)

    settings = get_settings()

    try:
        with engine.begin() as conn:
            rows.to_sql(
                table,
                conn,
                if_exists="append",
                index=False,
                method="multi",
                chunksize=settings.batch_size,
            )
    except Exception as e:
        logger.error(f"Failed to insert {len(rows)} rows into {table}: {e}")
        raise

    logger.debug(f"Inserted {len(rows)} rows into {table}")
    return len(rows)


def count_rows(engine: Engine, table: str) -> int:
    """Return the number of rows currently in a table."""
    get_table(table)
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar() or 0
