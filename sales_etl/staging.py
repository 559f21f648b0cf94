"""
Staging layer transform.

For every source table: count duplicates against the natural key, record the
count, truncate the staging table and repopulate it with one cleaned row per
key. Each table's outcome is logged; a failing table does not stop the run.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import pandas as pd
from loguru import logger
from sqlalchemy import Engine

from .batch_log import BatchLog, DuplicateCheck, LogEntry, record_duplicate_check
from .cleaning import full_name, line_sales, standardize_state, to_date, trim
from .db import append_frame, get_engine, read_table, truncate_table

STAGING_BATCH_PREFIX = "StgBatch"


@dataclass(frozen=True)
class StagingTable:
    """How one staging table is derived from its raw source."""
    name: str
    source: str
    key: Tuple[str, ...]
    required: Tuple[str, ...]
    transform: Callable[[pd.DataFrame], pd.DataFrame]


@dataclass
class StagingResult:
    """Everything one staging run produced for inspection."""
    batch_tag: str
    entries: List[LogEntry] = field(default_factory=list)
    duplicate_checks: List[DuplicateCheck] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(not entry.succeeded for entry in self.entries)


def _stage_brands(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'brand_id': raw['brand_id'],
        'brand_name': trim(raw['brand_name']),
    })


def _stage_categories(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'category_id': raw['category_id'],
        'category_name': trim(raw['category_name']),
    })


def _stage_products(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'product_id': raw['product_id'],
        'product_name': trim(raw['product_name']),
        'brand_id': raw['brand_id'],
        'category_id': raw['category_id'],
        'list_price': raw['list_price'],
    })


def _stage_customers(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'customer_id': raw['customer_id'],
        'customer_name': full_name(raw['first_name'], raw['last_name']),
        'city': trim(raw['city']),
        'state': standardize_state(raw['state']),
    })


def _stage_orders(raw: pd.DataFrame) -> pd.DataFrame:
    # Orders not shipped yet fall back to the required date
    shipped = to_date(raw['shipped_date']).fillna(to_date(raw['required_date']))
    return pd.DataFrame({
        'order_id': raw['order_id'],
        'customer_id': raw['customer_id'],
        'order_date': to_date(raw['order_date']),
        'shipped_date': shipped,
        'store_id': raw['store_id'],
        'staff_id': raw['staff_id'],
    })


def _stage_order_items(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'order_id': raw['order_id'],
        'item_id': raw['item_id'],
        'product_id': raw['product_id'],
        'quantity': raw['quantity'],
        'list_price': raw['list_price'],
        'discount': raw['discount'],
        'sales': line_sales(raw['list_price'], raw['quantity'], raw['discount']),
    })


def _stage_stores(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'store_id': raw['store_id'],
        'store_name': trim(raw['store_name']),
        'city': trim(raw['city']),
        'state': standardize_state(raw['state']),
    })


def _stage_staffs(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'staff_id': raw['staff_id'],
        'staff_name': full_name(raw['first_name'], raw['last_name']),
        'store_id': raw['store_id'],
        # top-level managers have no manager
        'manager_id': raw['manager_id'].fillna(0),
    })


def _stage_stocks(raw: pd.DataFrame) -> pd.DataFrame:
    return pd.DataFrame({
        'store_id': raw['store_id'],
        'product_id': raw['product_id'],
        'quantity': raw['quantity'],
    })


STAGING_TABLES: List[StagingTable] = [
    StagingTable('stg_brands', 'raw_brands', ('brand_id',), ('brand_id',), _stage_brands),
    StagingTable('stg_categories', 'raw_categories', ('category_id',), ('category_id',), _stage_categories),
    StagingTable('stg_products', 'raw_products', ('product_id',), ('product_id',), _stage_products),
    StagingTable('stg_customers', 'raw_customers', ('customer_id',), ('customer_id',), _stage_customers),
    StagingTable('stg_orders', 'raw_orders', ('order_id',), ('order_id',), _stage_orders),
    StagingTable('stg_order_items', 'raw_order_items', ('order_id', 'item_id', 'product_id'),
                 ('order_id', 'item_id'), _stage_order_items),
    StagingTable('stg_stores', 'raw_stores', ('store_id',), ('store_id',), _stage_stores),
    StagingTable('stg_staffs', 'raw_staffs', ('staff_id',), ('staff_id',), _stage_staffs),
    StagingTable('stg_stocks', 'raw_stocks', ('store_id', 'product_id'), ('store_id', 'product_id'), _stage_stocks),
]


def get_staging_table(name: str) -> StagingTable:
    """Look up a staging table definition by name."""
    for staged in STAGING_TABLES:
        if staged.name == name:
            return staged
    raise ValueError(f"Not a staging table: {name}")


def filter_required(raw: pd.DataFrame, staged: StagingTable) -> pd.DataFrame:
    """Drop raw rows with a null in any of the table's required key columns."""
    return raw.dropna(subset=list(staged.required)).reset_index(drop=True)


def count_duplicates(df: pd.DataFrame, key: Tuple[str, ...]) -> int:
    """Rows minus distinct key combinations."""
    if df.empty:
        return 0
    return int(len(df) - len(df.drop_duplicates(subset=list(key))))


def dedupe_raw(raw: pd.DataFrame, staged: StagingTable) -> pd.DataFrame:
    """
    Turn raw rows into staging rows: filter null keys, clean, keep the first
    row of each natural key.

    Args:
        raw: Raw table contents
        staged: Staging table definition

    Returns:
        pd.DataFrame: One cleaned row per natural key
    """
    filtered = filter_required(raw, staged)
    if filtered.empty:
        return staged.transform(filtered).iloc[0:0]

    cleaned = staged.transform(filtered)
    return cleaned.drop_duplicates(subset=list(staged.key), keep='first').reset_index(drop=True)


def stage_table(engine: Engine, staged: StagingTable, batch_tag: str) -> Tuple[DuplicateCheck, int]:
    """
    Run the duplicate check, truncate and reload for one staging table.

    Returns:
        Tuple[DuplicateCheck, int]: The recorded duplicate count and rows staged
    """
    raw = read_table(engine, staged.source)

    check = DuplicateCheck(
        table_name=staged.name,
        duplicate_count=count_duplicates(filter_required(raw, staged), staged.key),
        batch_tag=batch_tag,
    )
    record_duplicate_check(engine, check)

    truncate_table(engine, staged.name)
    frame = dedupe_raw(raw, staged)
    rows = append_frame(engine, frame, staged.name)

    logger.debug(f"{staged.name}: {len(raw)} raw rows -> {rows} staged rows")
    return check, rows


def run_staging_transform(engine: Optional[Engine] = None,
                          batch_tag: Optional[str] = None) -> StagingResult:
    """
    Rebuild every staging table from the raw layer.

    Args:
        engine: SQLAlchemy engine (default: from settings)
        batch_tag: Batch tag to log under (default: generated)

    Returns:
        StagingResult: Log entries and duplicate counts of this run
    """
    engine = engine or get_engine()
    batch = BatchLog(STAGING_BATCH_PREFIX, batch_tag)
    result = StagingResult(batch_tag=batch.batch_tag)

    logger.info(f"Starting staging transform {batch.batch_tag}")

    for staged in STAGING_TABLES:
        try:
            check, rows = stage_table(engine, staged, batch.batch_tag)
            result.duplicate_checks.append(check)
            batch.success(staged.name, f"Transformed successfully ({rows} rows)")
        except Exception as e:
            batch.failure(staged.name, f"Transformation failed: {e}")

    batch.flush(engine)
    result.entries = batch.entries

    if result.has_errors:
        logger.warning(f"Staging transform {batch.batch_tag} finished with errors")
    else:
        logger.success(f"Staging transform {batch.batch_tag} completed for {len(result.entries)} tables")

    return result
