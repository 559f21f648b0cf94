"""
Table definitions for the sales warehouse.

All three layers share one database and are told apart by table-name prefix:
``raw_`` for verbatim source mirrors, ``stg_`` for cleaned and deduplicated
staging tables, ``dim_``/``fact_`` for the star schema. The audit tables
(load log, duplicate checker, quality check results) are append-only.
"""

from typing import Dict, List

from loguru import logger
from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Engine,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

metadata = MetaData()


# ---------------------------------------------------------------------------
# Raw layer: no keys, duplicates and nulls allowed
# ---------------------------------------------------------------------------

raw_brands = Table(
    "raw_brands", metadata,
    Column("brand_id", Integer),
    Column("brand_name", String(50)),
)

raw_categories = Table(
    "raw_categories", metadata,
    Column("category_id", Integer),
    Column("category_name", String(50)),
)

raw_customers = Table(
    "raw_customers", metadata,
    Column("customer_id", Integer),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("phone", String(50)),
    Column("email", String(100)),
    Column("street", String(100)),
    Column("city", String(50)),
    Column("state", String(50)),
    Column("zip_code", Integer),
)

raw_stores = Table(
    "raw_stores", metadata,
    Column("store_id", Integer),
    Column("store_name", String(50)),
    Column("phone", String(50)),
    Column("email", String(100)),
    Column("street", String(100)),
    Column("city", String(50)),
    Column("state", String(50)),
    Column("zip_code", Integer),
)

raw_orders = Table(
    "raw_orders", metadata,
    Column("order_id", Integer),
    Column("customer_id", Integer),
    Column("order_status", Integer),
    Column("order_date", Date),
    Column("required_date", Date),
    Column("shipped_date", Date),
    Column("store_id", Integer),
    Column("staff_id", Integer),
)

raw_staffs = Table(
    "raw_staffs", metadata,
    Column("staff_id", Integer),
    Column("first_name", String(50)),
    Column("last_name", String(50)),
    Column("email", String(100)),
    Column("phone", String(50)),
    Column("active", Integer),
    Column("store_id", Integer),
    Column("manager_id", Integer),
)

raw_products = Table(
    "raw_products", metadata,
    Column("product_id", Integer),
    Column("product_name", String(255)),
    Column("brand_id", Integer),
    Column("category_id", Integer),
    Column("model_year", Integer),
    Column("list_price", Numeric(10, 2)),
)

raw_order_items = Table(
    "raw_order_items", metadata,
    Column("order_id", Integer),
    Column("item_id", Integer),
    Column("product_id", Integer),
    Column("quantity", Integer),
    Column("list_price", Numeric(10, 2)),
    Column("discount", Numeric(10, 2)),
)

raw_stocks = Table(
    "raw_stocks", metadata,
    Column("store_id", Integer),
    Column("product_id", Integer),
    Column("quantity", Integer),
)


# ---------------------------------------------------------------------------
# Staging layer: one cleaned row per natural key (uniqueness is validated by
# the quality checks, not enforced by constraints)
# ---------------------------------------------------------------------------

stg_brands = Table(
    "stg_brands", metadata,
    Column("brand_id", Integer),
    Column("brand_name", String(50)),
)

stg_categories = Table(
    "stg_categories", metadata,
    Column("category_id", Integer),
    Column("category_name", String(50)),
)

stg_products = Table(
    "stg_products", metadata,
    Column("product_id", Integer),
    Column("product_name", String(255)),
    Column("brand_id", Integer),
    Column("category_id", Integer),
    Column("list_price", Numeric(10, 2)),
)

stg_customers = Table(
    "stg_customers", metadata,
    Column("customer_id", Integer),
    Column("customer_name", String(101)),
    Column("city", String(50)),
    Column("state", String(50)),
)

stg_orders = Table(
    "stg_orders", metadata,
    Column("order_id", Integer),
    Column("customer_id", Integer),
    Column("order_date", Date),
    Column("shipped_date", Date),
    Column("store_id", Integer),
    Column("staff_id", Integer),
)

stg_order_items = Table(
    "stg_order_items", metadata,
    Column("order_id", Integer),
    Column("item_id", Integer),
    Column("product_id", Integer),
    Column("quantity", Integer),
    Column("list_price", Numeric(10, 2)),
    Column("discount", Numeric(10, 2)),
    Column("sales", Numeric(12, 2)),
)

stg_stores = Table(
    "stg_stores", metadata,
    Column("store_id", Integer),
    Column("store_name", String(50)),
    Column("city", String(50)),
    Column("state", String(50)),
)

stg_staffs = Table(
    "stg_staffs", metadata,
    Column("staff_id", Integer),
    Column("staff_name", String(101)),
    Column("store_id", Integer),
    Column("manager_id", Integer),
)

stg_stocks = Table(
    "stg_stocks", metadata,
    Column("store_id", Integer),
    Column("product_id", Integer),
    Column("quantity", Integer),
)


# ---------------------------------------------------------------------------
# Warehouse layer: star schema
# ---------------------------------------------------------------------------

dim_customers = Table(
    "dim_customers", metadata,
    Column("customer_id", Integer, primary_key=True, autoincrement=False),
    Column("customer_name", String(101)),
    Column("city", String(50)),
    Column("state", String(50)),
)

# combines products, brands & categories
dim_products = Table(
    "dim_products", metadata,
    Column("product_id", Integer, primary_key=True, autoincrement=False),
    Column("product_name", String(255)),
    Column("brand_name", String(50)),
    Column("category_name", String(50)),
    Column("list_price", Numeric(10, 2)),
)

dim_stores = Table(
    "dim_stores", metadata,
    Column("store_id", Integer, primary_key=True, autoincrement=False),
    Column("store_name", String(50)),
    Column("city", String(50)),
    Column("state", String(50)),
)

dim_staffs = Table(
    "dim_staffs", metadata,
    Column("staff_id", Integer, primary_key=True, autoincrement=False),
    Column("staff_name", String(101)),
    Column("store_id", Integer),
    Column("manager_id", Integer),
)

dim_dates = Table(
    "dim_dates", metadata,
    Column("date_id", Integer, primary_key=True, autoincrement=False),
    Column("full_date", Date),
    Column("day", Integer),
    Column("month", Integer),
    Column("month_name", String(20)),
    Column("quarter", Integer),
    Column("year", Integer),
    Column("week_of_year", Integer),
)

fact_sales = Table(
    "fact_sales", metadata,
    Column("sales_id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", Integer),
    Column("item_id", Integer),
    Column("customer_id", Integer),
    Column("product_id", Integer),
    Column("store_id", Integer),
    Column("staff_id", Integer),
    Column("date_id", Integer),
    Column("quantity", Integer),
    Column("list_price", Numeric(10, 2)),
    Column("sales", Numeric(12, 2)),
    Column("discount", Numeric(10, 2)),
    Column("total_amount", Numeric(12, 2)),
)

fact_inventory = Table(
    "fact_inventory", metadata,
    Column("inventory_id", Integer, primary_key=True, autoincrement=True),
    Column("store_id", Integer),
    Column("product_id", Integer),
    Column("stock_quantity", Integer),
    Column("last_updated", Date),
)


# ---------------------------------------------------------------------------
# Audit tables
# ---------------------------------------------------------------------------

load_log = Table(
    "load_log", metadata,
    Column("load_id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(50), nullable=False),
    Column("batch_tag", String(50), nullable=False),
    Column("load_status", String(20), nullable=False),
    Column("message", Text),
    Column("load_time", DateTime, nullable=False),
)

duplicate_checker = Table(
    "duplicate_checker", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(50), nullable=False),
    Column("batch_tag", String(50), nullable=False),
    Column("duplicate_status", String(50), nullable=False),
    Column("duplicate_count", Integer, nullable=False, default=0),
    Column("last_checked", DateTime, nullable=False),
)

quality_check_results = Table(
    "quality_check_results", metadata,
    Column("check_id", Integer, primary_key=True, autoincrement=True),
    Column("layer", String(20), nullable=False),
    Column("check_category", String(50), nullable=False),
    Column("check_name", String(100), nullable=False),
    Column("table_name", String(100), nullable=False),
    Column("test_result", String(20), nullable=False),
    Column("total_rows", Integer),
    Column("issue_count", Integer),
    Column("issue_percentage", Numeric(5, 2)),
    Column("message", Text),
    Column("batch_tag", String(50), nullable=False),
    Column("checked_at", DateTime, nullable=False),
)


RAW_TABLES: List[str] = [
    "raw_brands", "raw_categories", "raw_products", "raw_customers",
    "raw_orders", "raw_order_items", "raw_stores", "raw_staffs", "raw_stocks",
]

STAGING_TABLES: List[str] = [
    "stg_brands", "stg_categories", "stg_products", "stg_customers",
    "stg_orders", "stg_order_items", "stg_stores", "stg_staffs", "stg_stocks",
]

WAREHOUSE_TABLES: List[str] = [
    "dim_products", "dim_customers", "dim_stores", "dim_staffs", "dim_dates",
    "fact_sales", "fact_inventory",
]

AUDIT_TABLES: List[str] = ["load_log", "duplicate_checker", "quality_check_results"]

LAYERS: Dict[str, List[str]] = {
    "raw": RAW_TABLES,
    "staging": STAGING_TABLES,
    "warehouse": WAREHOUSE_TABLES,
    "audit": AUDIT_TABLES,
}


def get_table(name: str) -> Table:
    """
    Look up a table definition by name.

    Raises:
        ValueError: If the name is not one of the warehouse's tables
    """
    if name not in metadata.tables:
        raise ValueError(f"Invalid table name: {name}")
    return metadata.tables[name]


def create_schema(engine: Engine) -> None:
    """Create every table that does not exist yet."""
    metadata.create_all(engine)
    logger.info(f"Schema ready: {len(metadata.tables)} tables on {engine.url.render_as_string(hide_password=True)}")


def drop_schema(engine: Engine) -> None:
    """Drop every table of the warehouse (all layers and audit tables)."""
    metadata.drop_all(engine)
    logger.warning("Dropped all warehouse tables")
