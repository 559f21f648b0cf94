"""
Warehouse (star schema) load from the staging layer.

Dimensions are loaded first, then the date dimension derived from order
dates, then the two fact tables. Every table is truncated and rebuilt; each
table's outcome is logged and a failing table does not stop the run.
"""

from datetime import date
from typing import Callable, Dict, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import Engine

from .batch_log import BatchLog, LogEntry
from .db import append_frame, get_engine, read_table, truncate_table
from .schema import WAREHOUSE_TABLES

DW_BATCH_PREFIX = "DWBatch"


def build_dim_products(products: pd.DataFrame, brands: pd.DataFrame,
                       categories: pd.DataFrame) -> pd.DataFrame:
    """
    Denormalise products with their brand and category names.

    Left joins: a product whose brand or category is unknown keeps a null name.
    """
    dim = products.merge(brands[['brand_id', 'brand_name']], on='brand_id', how='left')
    dim = dim.merge(categories[['category_id', 'category_name']], on='category_id', how='left')
    return dim[['product_id', 'product_name', 'brand_name', 'category_name', 'list_price']]


def build_dim_customers(customers: pd.DataFrame) -> pd.DataFrame:
    return customers[['customer_id', 'customer_name', 'city', 'state']].copy()


def build_dim_stores(stores: pd.DataFrame) -> pd.DataFrame:
    return stores[['store_id', 'store_name', 'city', 'state']].copy()


def build_dim_staffs(staffs: pd.DataFrame) -> pd.DataFrame:
    return staffs[['staff_id', 'staff_name', 'store_id', 'manager_id']].copy()


def build_dim_dates(orders: pd.DataFrame) -> pd.DataFrame:
    """
    Build the date dimension from order dates.

    One row per distinct non-null order date, sorted ascending, with a dense
    ``date_id`` starting at 1. ``week_of_year`` counts weeks starting on
    Sunday (0-53; days before the first Sunday are week 0).

    Args:
        orders: Staged orders with an ``order_date`` column

    Returns:
        pd.DataFrame: Rows for ``dim_dates``
    """
    dates = pd.to_datetime(orders['order_date'], errors='coerce').dropna().dt.normalize()
    dates = dates.drop_duplicates().sort_values().reset_index(drop=True)

    return pd.DataFrame({
        'date_id': range(1, len(dates) + 1),
        'full_date': dates,
        'day': dates.dt.day,
        'month': dates.dt.month,
        'month_name': dates.dt.month_name(),
        'quarter': dates.dt.quarter,
        'year': dates.dt.year,
        'week_of_year': dates.dt.strftime('%U').astype(int),
    })


def compute_total_amount(quantity: pd.Series, list_price: pd.Series, discount: pd.Series) -> pd.Series:
    """``quantity*list_price - discount*quantity*list_price`` rounded to 2 dp."""
    gross = quantity.astype(float) * list_price.astype(float)
    return (gross - discount.astype(float) * gross).round(2)


def build_fact_sales(order_items: pd.DataFrame, orders: pd.DataFrame,
                     dim_dates: pd.DataFrame) -> pd.DataFrame:
    """
    Build sales facts at order line grain.

    Items are inner-joined to their order and the order's calendar date to
    ``dim_dates``: items without a known order, or whose order date is not in
    the date dimension, are left out.

    Args:
        order_items: Staged order items
        orders: Staged orders
        dim_dates: Loaded date dimension (``date_id``, ``full_date``)

    Returns:
        pd.DataFrame: Rows for ``fact_sales`` (without the surrogate key)
    """
    header = orders[['order_id', 'customer_id', 'store_id', 'staff_id', 'order_date']].copy()
    header['full_date'] = pd.to_datetime(header['order_date'], errors='coerce').dt.normalize()

    calendar = dim_dates[['date_id', 'full_date']].copy()
    calendar['full_date'] = pd.to_datetime(calendar['full_date'], errors='coerce').dt.normalize()

    facts = order_items.merge(header, on='order_id', how='inner')
    facts = facts.merge(calendar, on='full_date', how='inner')

    facts['total_amount'] = compute_total_amount(facts['quantity'], facts['list_price'], facts['discount'])

    return facts[[
        'order_id', 'item_id', 'customer_id', 'product_id', 'store_id', 'staff_id', 'date_id',
        'quantity', 'list_price', 'sales', 'discount', 'total_amount',
    ]].sort_values(['order_id', 'item_id']).reset_index(drop=True)


def build_fact_inventory(stocks: pd.DataFrame, load_date: Optional[date] = None) -> pd.DataFrame:
    """
    Build inventory facts: one row per (store, product) stamped with the load date.

    Args:
        stocks: Staged stocks
        load_date: Snapshot date (default: today)
    """
    load_date = load_date or date.today()
    return pd.DataFrame({
        'store_id': stocks['store_id'],
        'product_id': stocks['product_id'],
        'stock_quantity': stocks['quantity'],
        'last_updated': pd.Series([load_date] * len(stocks), index=stocks.index, dtype=object),
    })


def _builders(engine: Engine, load_date: Optional[date]) -> Dict[str, Callable[[], pd.DataFrame]]:
    """Zero-argument builders per warehouse table, reading their inputs lazily."""
    return {
        'dim_products': lambda: build_dim_products(
            read_table(engine, 'stg_products'),
            read_table(engine, 'stg_brands'),
            read_table(engine, 'stg_categories'),
        ),
        'dim_customers': lambda: build_dim_customers(read_table(engine, 'stg_customers')),
        'dim_stores': lambda: build_dim_stores(read_table(engine, 'stg_stores')),
        'dim_staffs': lambda: build_dim_staffs(read_table(engine, 'stg_staffs')),
        'dim_dates': lambda: build_dim_dates(read_table(engine, 'stg_orders')),
        # reads back the date dimension loaded just before
        'fact_sales': lambda: build_fact_sales(
            read_table(engine, 'stg_order_items'),
            read_table(engine, 'stg_orders'),
            read_table(engine, 'dim_dates'),
        ),
        'fact_inventory': lambda: build_fact_inventory(read_table(engine, 'stg_stocks'), load_date),
    }


def load_warehouse_table(engine: Engine, table: str, build: Callable[[], pd.DataFrame]) -> int:
    """
    Truncate one warehouse table and reload it from its builder.

    Returns:
        int: Number of rows loaded
    """
    truncate_table(engine, table)
    rows = append_frame(engine, build(), table)
    logger.debug(f"{table}: loaded {rows} rows")
    return rows


def run_warehouse_load(engine: Optional[Engine] = None, batch_tag: Optional[str] = None,
                       load_date: Optional[date] = None) -> List[LogEntry]:
    """
    Rebuild every warehouse table from the staging layer.

    Args:
        engine: SQLAlchemy engine (default: from settings)
        batch_tag: Batch tag to log under (default: generated)
        load_date: Inventory snapshot date (default: today)

    Returns:
        List[LogEntry]: One entry per warehouse table
    """
    engine = engine or get_engine()
    batch = BatchLog(DW_BATCH_PREFIX, batch_tag)
    builders = _builders(engine, load_date)

    logger.info(f"Starting warehouse load {batch.batch_tag}")

    for table in WAREHOUSE_TABLES:
        try:
            rows = load_warehouse_table(engine, table, builders[table])
            batch.success(table, f"Loaded into DW ({rows} rows)")
        except Exception as e:
            batch.failure(table, f"Load failed: {e}")

    batch.flush(engine)

    if batch.has_errors:
        logger.warning(f"Warehouse load {batch.batch_tag} finished with errors")
    else:
        logger.success(f"Warehouse load {batch.batch_tag} completed for {len(batch.entries)} tables")

    return batch.entries
