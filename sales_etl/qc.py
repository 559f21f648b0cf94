"""
Data Quality Control module.

Declarative check batteries for the staging and warehouse layers. Each check
runs its own query, classifies the issue count as PASS, FAIL or WARNING and
never raises: a check whose query errors is recorded as FAIL. Results are
appended to ``quality_check_results`` under one batch tag per run.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from loguru import logger
from sqlalchemy import Connection, Engine, select, text

from .batch_log import make_batch_tag
from .config import get_settings
from .db import get_engine
from .schema import quality_check_results
from .staging import STAGING_TABLES

PASS = "PASS"
FAIL = "FAIL"
WARNING = "WARNING"

HEALTHY = "HEALTHY"
NEEDS_ATTENTION = "NEEDS ATTENTION"
CRITICAL = "CRITICAL"

LAYER_PREFIXES: Dict[str, str] = {
    'staging': "StgQualityCheck",
    'warehouse': "DWQualityCheck",
}


@dataclass
class QualityCheckResult:
    """Outcome of one check."""
    check_category: str
    check_name: str
    table_name: str
    test_result: str
    total_rows: Optional[int]
    issue_count: Optional[int]
    issue_percentage: Optional[float]
    message: str

    @property
    def passed(self) -> bool:
        return self.test_result == PASS

    @property
    def failed(self) -> bool:
        return self.test_result == FAIL


@dataclass
class QualityReport:
    """All results of one battery run."""
    layer: str
    batch_tag: str
    results: List[QualityCheckResult] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return any(result.failed for result in self.results)

    @property
    def has_warnings(self) -> bool:
        return any(result.test_result == WARNING for result in self.results)


def classify(issue_count: int, fail_status: str = FAIL) -> str:
    """PASS when there are no issues, otherwise the check's failure status."""
    return PASS if issue_count == 0 else fail_status


def issue_percentage(issues: Optional[int], total: Optional[int]) -> Optional[float]:
    """Issues as a percentage of total rows; None for an empty table."""
    if not total or issues is None:
        return None
    return round(100.0 * issues / total, 2)


def _count(conn: Connection, sql: str, **params) -> int:
    return int(conn.execute(text(sql), params).scalar() or 0)


def _columns(columns: Sequence[str]) -> str:
    return ", ".join(columns)


# ---------------------------------------------------------------------------
# Check kinds
# ---------------------------------------------------------------------------

@dataclass
class QualityCheck:
    """
    Base class for checks.

    Subclasses implement ``evaluate``; ``run`` turns any error raised while
    evaluating into a FAIL result so the rest of the battery still runs.
    """
    category: str
    name: str
    table: str

    def run(self, conn: Connection) -> QualityCheckResult:
        try:
            return self.evaluate(conn)
        except Exception as e:
            logger.error(f"Quality check '{self.name}' on {self.table} could not run: {e}")
            return self.result(FAIL, None, None, f"Check could not run: {e}")

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        raise NotImplementedError

    def result(self, status: str, total: Optional[int], issues: Optional[int],
               message: str) -> QualityCheckResult:
        return QualityCheckResult(
            check_category=self.category,
            check_name=self.name,
            table_name=self.table,
            test_result=status,
            total_rows=total,
            issue_count=issues,
            issue_percentage=issue_percentage(issues, total),
            message=message,
        )


@dataclass
class KeyUniquenessCheck(QualityCheck):
    """Issues = rows minus distinct key combinations."""
    key: Sequence[str] = ()
    fail_status: str = FAIL

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        cols = _columns(self.key)
        total = _count(conn, f"SELECT COUNT(*) FROM {self.table}")
        distinct = _count(conn, f"SELECT COUNT(*) FROM (SELECT DISTINCT {cols} FROM {self.table}) keys")
        issues = total - distinct

        status = classify(issues, self.fail_status)
        if status == PASS:
            message = f"All {cols} values are unique"
        else:
            message = f"Found {issues} duplicate {cols} values"
        return self.result(status, total, issues, message)


@dataclass
class NullCheck(QualityCheck):
    """Issues = rows with a null in any of the listed columns."""
    columns: Sequence[str] = ()
    fail_status: str = FAIL

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        predicate = " OR ".join(f"{col} IS NULL" for col in self.columns)
        total = _count(conn, f"SELECT COUNT(*) FROM {self.table}")
        issues = _count(conn, f"SELECT COUNT(*) FROM {self.table} WHERE {predicate}")

        status = classify(issues, self.fail_status)
        if status == PASS:
            message = f"No NULL values in ({_columns(self.columns)})"
        else:
            message = f"Found {issues} rows with NULL in ({_columns(self.columns)})"
        return self.result(status, total, issues, message)


@dataclass
class RowCountReconciliation(QualityCheck):
    """
    Compare raw rows having a non-null key with staged rows.

    Issues = absolute difference; PASS while it stays within the allowed
    variance percentage of the raw count, WARNING beyond it.
    """
    source: str = ""
    required: Sequence[str] = ()
    variance_pct: Optional[float] = None

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        variance_pct = self.variance_pct
        if variance_pct is None:
            variance_pct = get_settings().qc_count_variance_pct

        not_null = " AND ".join(f"{col} IS NOT NULL" for col in self.required)
        raw_count = _count(conn, f"SELECT COUNT(*) FROM {self.source} WHERE {not_null}")
        stg_count = _count(conn, f"SELECT COUNT(*) FROM {self.table}")
        issues = abs(raw_count - stg_count)

        status = PASS if issues <= raw_count * variance_pct / 100.0 else WARNING
        return self.result(status, raw_count, issues, f"Raw count: {raw_count}, Staging count: {stg_count}")


def _today() -> str:
    return date.today().isoformat()


def _amount_tolerance() -> float:
    return get_settings().qc_amount_tolerance


@dataclass
class RuleCheck(QualityCheck):
    """
    Issues = rows matching a SQL predicate.

    Parameter values may be zero-argument callables, resolved when the check
    runs (e.g. today's date or a configured tolerance).
    """
    predicate: str = ""
    description: str = ""
    fail_status: str = FAIL
    params: Dict[str, Any] = field(default_factory=dict)

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        params = {key: value() if callable(value) else value for key, value in self.params.items()}
        total = _count(conn, f"SELECT COUNT(*) FROM {self.table}")
        issues = _count(conn, f"SELECT COUNT(*) FROM {self.table} WHERE {self.predicate}", **params)

        status = classify(issues, self.fail_status)
        if status == PASS:
            message = f"No records with {self.description}"
        else:
            message = f"Found {issues} records with {self.description}"
        return self.result(status, total, issues, message)


@dataclass
class OrphanCheck(QualityCheck):
    """Issues = rows whose non-null foreign key has no row in the referenced table."""
    column: str = ""
    dimension: str = ""
    fail_status: str = FAIL

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        total = _count(conn, f"SELECT COUNT(*) FROM {self.table}")
        issues = _count(conn, f"""
            SELECT COUNT(*)
            FROM {self.table} f
            LEFT JOIN {self.dimension} d ON f.{self.column} = d.{self.column}
            WHERE d.{self.column} IS NULL AND f.{self.column} IS NOT NULL
        """)

        status = classify(issues, self.fail_status)
        if status == PASS:
            message = f"All {self.column} values have matching records in {self.dimension}"
        else:
            message = f"Found {issues} records with {self.column} not in {self.dimension}"
        return self.result(status, total, issues, message)


@dataclass
class NullForeignKeyCheck(QualityCheck):
    """Issues = rows with any null foreign key; the message lists per-key counts."""
    foreign_keys: Dict[str, str] = field(default_factory=dict)
    fail_status: str = WARNING

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        any_null = " OR ".join(f"{col} IS NULL" for col in self.foreign_keys.values())
        total = _count(conn, f"SELECT COUNT(*) FROM {self.table}")
        issues = _count(conn, f"SELECT COUNT(*) FROM {self.table} WHERE {any_null}")

        counts = [
            f"{label}: {_count(conn, f'SELECT COUNT(*) FROM {self.table} WHERE {col} IS NULL')}"
            for label, col in self.foreign_keys.items()
        ]
        return self.result(classify(issues, self.fail_status), total, issues,
                           "NULL FKs - " + ", ".join(counts))


@dataclass
class CardinalityCheck(QualityCheck):
    """
    Many-to-one check between a fact and a dimension key.

    PASS when facts outnumber distinct keys, WARNING when every key appears
    exactly once, FAIL otherwise. No issue count is recorded.
    """
    column: str = ""
    fact: str = ""

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        facts = _count(conn, f"SELECT COUNT(*) FROM {self.fact} WHERE {self.column} IS NOT NULL")
        keys = _count(conn, f"SELECT COUNT(DISTINCT {self.column}) FROM {self.fact} WHERE {self.column} IS NOT NULL")

        if facts > keys:
            status = PASS
        elif facts == keys:
            status = WARNING
        else:
            status = FAIL

        average = round(facts / keys, 2) if keys else None
        message = f"Many-to-One relationship confirmed. Avg facts per {self.column}: {average}"

        return QualityCheckResult(
            check_category=self.category,
            check_name=self.name,
            table_name=self.table,
            test_result=status,
            total_rows=facts,
            issue_count=None,
            issue_percentage=None,
            message=message,
        )


@dataclass
class MissingChildCheck(QualityCheck):
    """Issues = parent keys with no row in the child table."""
    key: str = ""
    child: str = ""
    description: str = ""
    fail_status: str = WARNING

    def count_missing(self, conn: Connection):
        total = _count(conn, f"SELECT COUNT(DISTINCT {self.key}) FROM {self.table}")
        issues = _count(conn, f"""
            SELECT COUNT(DISTINCT p.{self.key})
            FROM {self.table} p
            LEFT JOIN {self.child} c ON p.{self.key} = c.{self.key}
            WHERE c.{self.key} IS NULL
        """)
        return total, issues

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        total, issues = self.count_missing(conn)
        return self.result(classify(issues, self.fail_status), total, issues,
                           f"{self.description}: {issues} out of {total}")


@dataclass
class UnusedDimensionCheck(MissingChildCheck):
    """Issues = dimension keys never referenced by the fact table."""

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        total, issues = self.count_missing(conn)
        return self.result(classify(issues, self.fail_status), total, issues,
                           f"{issues} {self.description} have no sales transactions")


@dataclass
class GrainCheck(QualityCheck):
    """Issues = grain combinations occurring more than once."""
    grain: Sequence[str] = ()
    fail_status: str = FAIL

    def evaluate(self, conn: Connection) -> QualityCheckResult:
        cols = _columns(self.grain)
        total = _count(conn, f"SELECT COUNT(*) FROM {self.table}")
        issues = _count(conn, f"""
            SELECT COUNT(*) FROM (
                SELECT {cols} FROM {self.table} GROUP BY {cols} HAVING COUNT(*) > 1
            ) repeated
        """)

        status = classify(issues, self.fail_status)
        if status == PASS:
            message = f"Grain ({cols}) is unique"
        else:
            message = f"Found {issues} ({cols}) combinations occurring more than once"
        return self.result(status, total, issues, message)


# ---------------------------------------------------------------------------
# Batteries
# ---------------------------------------------------------------------------

# Columns that must be populated in each staging table
STAGING_REQUIRED_FIELDS: Dict[str, Sequence[str]] = {
    'stg_brands': ('brand_id', 'brand_name'),
    'stg_categories': ('category_id', 'category_name'),
    'stg_products': ('product_id', 'product_name', 'brand_id', 'category_id'),
    'stg_customers': ('customer_id', 'customer_name'),
    'stg_orders': ('order_id', 'customer_id', 'order_date'),
    'stg_order_items': ('order_id', 'product_id', 'quantity', 'list_price'),
    'stg_stores': ('store_id', 'store_name'),
    'stg_staffs': ('staff_id', 'staff_name', 'store_id'),
    'stg_stocks': ('store_id', 'product_id', 'quantity'),
}


def _staging_checks() -> List[QualityCheck]:
    checks: List[QualityCheck] = []

    for staged in STAGING_TABLES:
        required = STAGING_REQUIRED_FIELDS[staged.name]
        checks.append(NullCheck('NULL_CHECK', f"Check for NULL in required fields ({_columns(required)})",
                                staged.name, columns=required))
        checks.append(KeyUniquenessCheck('DUPLICATE_CHECK', f"Check for duplicate ({_columns(staged.key)})",
                                         staged.name, key=staged.key))
        checks.append(RowCountReconciliation('COUNT_VALIDATION', "Compare record counts between raw and staging",
                                             staged.name, source=staged.source, required=staged.required))

        if staged.name == 'stg_orders':
            checks.append(RuleCheck('INVALID_DATE_RANGE', "Check shipped_date is not before order_date",
                                    'stg_orders', predicate="shipped_date < order_date",
                                    description="shipped_date before order_date"))
            checks.append(RuleCheck('INVALID_DATE_RANGE', "Check for future order/shipped dates",
                                    'stg_orders', predicate="order_date > :today OR shipped_date > :today",
                                    description="order or shipped date in the future",
                                    params={'today': _today}))

    checks.extend([
        MissingChildCheck('COMPLETENESS_CHECK', "Products without stock information", 'stg_products',
                          key='product_id', child='stg_stocks', description="Products without stock info"),
        MissingChildCheck('COMPLETENESS_CHECK', "Orders without order items", 'stg_orders',
                          key='order_id', child='stg_order_items', description="Orders without order items"),
        MissingChildCheck('COMPLETENESS_CHECK', "Stores without staff", 'stg_stores',
                          key='store_id', child='stg_staffs', description="Stores without staff"),
    ])
    return checks


def _warehouse_checks() -> List[QualityCheck]:
    keys = "Surrogate Keys"
    integrity = "Referential Integrity"
    relationships = "Relationships"
    data_quality = "Data Quality"

    return [
        KeyUniquenessCheck(keys, "Primary Key Uniqueness", 'dim_customers', key=('customer_id',)),
        KeyUniquenessCheck(keys, "Primary Key Uniqueness", 'dim_products', key=('product_id',)),
        KeyUniquenessCheck(keys, "Primary Key Uniqueness", 'dim_stores', key=('store_id',)),
        KeyUniquenessCheck(keys, "Primary Key Uniqueness", 'dim_staffs', key=('staff_id',)),
        KeyUniquenessCheck(keys, "Primary Key Uniqueness", 'dim_dates', key=('date_id',)),
        NullCheck(keys, "NULL Primary Key Check", 'dim_customers', columns=('customer_id',)),

        OrphanCheck(integrity, "Orphaned Customer Records", 'fact_sales', column='customer_id', dimension='dim_customers'),
        OrphanCheck(integrity, "Orphaned Product Records", 'fact_sales', column='product_id', dimension='dim_products'),
        OrphanCheck(integrity, "Orphaned Store Records", 'fact_sales', column='store_id', dimension='dim_stores'),
        OrphanCheck(integrity, "Orphaned Staff Records", 'fact_sales', column='staff_id', dimension='dim_staffs'),
        OrphanCheck(integrity, "Orphaned Date Records", 'fact_sales', column='date_id', dimension='dim_dates'),
        OrphanCheck(integrity, "Orphaned Product Records", 'fact_inventory', column='product_id', dimension='dim_products'),
        OrphanCheck(integrity, "Orphaned Store Records", 'fact_inventory', column='store_id', dimension='dim_stores'),
        NullForeignKeyCheck(integrity, "NULL Foreign Keys", 'fact_sales', foreign_keys={
            'Customer': 'customer_id',
            'Product': 'product_id',
            'Store': 'store_id',
            'Staff': 'staff_id',
            'Date': 'date_id',
        }),

        CardinalityCheck(relationships, "Cardinality Check", 'fact_sales -> dim_customers',
                         column='customer_id', fact='fact_sales'),
        UnusedDimensionCheck(relationships, "Unused Dimension Records", 'dim_customers',
                             key='customer_id', child='fact_sales', description="customers"),
        UnusedDimensionCheck(relationships, "Unused Products in Sales", 'dim_products',
                             key='product_id', child='fact_sales', description="products"),
        KeyUniquenessCheck(relationships, "Date Dimension Continuity", 'dim_dates', key=('full_date',)),
        OrphanCheck(relationships, "Staff-Store Relationship", 'dim_staffs', column='store_id', dimension='dim_stores'),

        RuleCheck(data_quality, "Negative Quantities", 'fact_sales',
                  predicate="quantity < 0", description="negative quantities"),
        RuleCheck(data_quality, "Negative Prices", 'fact_sales',
                  predicate="list_price < 0", description="negative list_price"),
        RuleCheck(data_quality, "Invalid Discount Values", 'fact_sales',
                  predicate="discount < 0 OR discount > 1", description="discount outside 0-1 range"),
        RuleCheck(data_quality, "Total Amount Calculation", 'fact_sales',
                  predicate="ABS(total_amount - ((quantity * list_price) - (discount * quantity * list_price))) > :tolerance",
                  description="total_amount calculation variance above tolerance",
                  fail_status=WARNING, params={'tolerance': _amount_tolerance}),
        RuleCheck(data_quality, "Negative Stock Quantities", 'fact_inventory',
                  predicate="stock_quantity < 0", description="negative stock_quantity", fail_status=WARNING),
        GrainCheck(data_quality, "Fact Grain Validation", 'fact_sales', grain=('order_id', 'product_id')),
        GrainCheck(data_quality, "Fact Grain Validation", 'fact_inventory', grain=('store_id', 'product_id')),
    ]


STAGING_CHECKS: List[QualityCheck] = _staging_checks()
WAREHOUSE_CHECKS: List[QualityCheck] = _warehouse_checks()

BATTERIES: Dict[str, List[QualityCheck]] = {
    'staging': STAGING_CHECKS,
    'warehouse': WAREHOUSE_CHECKS,
}


# ---------------------------------------------------------------------------
# Running and reporting
# ---------------------------------------------------------------------------

def run_checks(engine: Engine, checks: Sequence[QualityCheck]) -> List[QualityCheckResult]:
    """
    Run checks one after another, each on its own connection.

    Args:
        engine: SQLAlchemy engine
        checks: Checks to run

    Returns:
        List[QualityCheckResult]: One result per check, in order
    """
    results = []
    for check in checks:
        with engine.connect() as conn:
            result = check.run(conn)
        results.append(result)

        if result.test_result == FAIL:
            logger.error(f"[{result.check_category}] {result.check_name} on {result.table_name}: {result.message}")
        elif result.test_result == WARNING:
            logger.warning(f"[{result.check_category}] {result.check_name} on {result.table_name}: {result.message}")
        else:
            logger.debug(f"[{result.check_category}] {result.check_name} on {result.table_name}: PASS")

    return results


def save_results(engine: Engine, layer: str, batch_tag: str,
                 results: Sequence[QualityCheckResult]) -> int:
    """
    Append results to ``quality_check_results``.

    Returns:
        int: Number of rows written
    """
    if not results:
        return 0

    checked_at = datetime.now()
    try:
        with engine.begin() as conn:
            conn.execute(quality_check_results.insert(), [
                {
                    'layer': layer,
                    'check_category': result.check_category,
                    'check_name': result.check_name,
                    'table_name': result.table_name,
                    'test_result': result.test_result,
                    'total_rows': result.total_rows,
                    'issue_count': result.issue_count,
                    'issue_percentage': result.issue_percentage,
                    'message': result.message,
                    'batch_tag': batch_tag,
                    'checked_at': checked_at,
                }
                for result in results
            ])
    except Exception as e:
        logger.error(f"Failed to store quality check results for {batch_tag}: {e}")
        raise

    return len(results)


def run_quality_checks(layer: str, engine: Optional[Engine] = None,
                       batch_tag: Optional[str] = None) -> QualityReport:
    """
    Run the check battery of one layer and store its results.

    Args:
        layer: 'staging' or 'warehouse'
        engine: SQLAlchemy engine (default: from settings)
        batch_tag: Batch tag to store results under (default: generated)

    Returns:
        QualityReport: Results of every check in the battery

    Raises:
        ValueError: If the layer has no check battery
    """
    if layer not in BATTERIES:
        raise ValueError(f"Unknown quality check layer: {layer}")

    engine = engine or get_engine()
    report = QualityReport(layer=layer, batch_tag=batch_tag or make_batch_tag(LAYER_PREFIXES[layer]))

    logger.info(f"Running {len(BATTERIES[layer])} {layer} quality checks ({report.batch_tag})")
    report.results = run_checks(engine, BATTERIES[layer])
    save_results(engine, layer, report.batch_tag, report.results)

    summary = summarize_results(report.results)['overall']
    message = (f"{layer.capitalize()} quality checks {report.batch_tag}: "
               f"{summary['passed']} passed, {summary['failed']} failed, {summary['warnings']} warnings "
               f"({summary['status']})")
    if report.has_failures:
        logger.error(message)
    elif report.has_warnings:
        logger.warning(message)
    else:
        logger.success(message)

    return report


def quality_status(failed: int) -> str:
    """HEALTHY with no failures, NEEDS ATTENTION with one or two, CRITICAL beyond."""
    if failed == 0:
        return HEALTHY
    if failed <= 2:
        return NEEDS_ATTENTION
    return CRITICAL


def _tally(results: Sequence[QualityCheckResult]) -> Dict[str, Any]:
    total = len(results)
    passed = sum(1 for r in results if r.test_result == PASS)
    failed = sum(1 for r in results if r.test_result == FAIL)
    warnings = sum(1 for r in results if r.test_result == WARNING)
    return {
        'total_checks': total,
        'passed': passed,
        'failed': failed,
        'warnings': warnings,
        'pass_rate': round(100.0 * passed / total, 1) if total else 0.0,
        'status': quality_status(failed),
    }


def summarize_results(results: Sequence[QualityCheckResult]) -> Dict[str, Any]:
    """
    Summarise results overall, per table and per category.

    Tables are ordered by failures (most first), then by name.

    Returns:
        Dict with 'overall', 'by_table' and 'by_category' entries
    """
    by_table: Dict[str, List[QualityCheckResult]] = {}
    by_category: Dict[str, List[QualityCheckResult]] = {}
    for result in results:
        by_table.setdefault(result.table_name, []).append(result)
        by_category.setdefault(result.check_category, []).append(result)

    tables = [{'table_name': name, **_tally(group)} for name, group in by_table.items()]
    tables.sort(key=lambda row: (-row['failed'], row['table_name']))

    categories = [{'check_category': name, **_tally(group)} for name, group in sorted(by_category.items())]

    return {
        'overall': _tally(results),
        'by_table': tables,
        'by_category': categories,
    }


def fetch_quality_results(engine: Engine, layer: Optional[str] = None,
                          batch_tag: Optional[str] = None) -> pd.DataFrame:
    """
    Read stored quality check results.

    Args:
        engine: SQLAlchemy engine
        layer: Only this layer's results
        batch_tag: Only this batch's results

    Returns:
        pd.DataFrame: Result rows ordered by check_id
    """
    query = select(quality_check_results).order_by(quality_check_results.c.check_id)
    if layer:
        query = query.where(quality_check_results.c.layer == layer)
    if batch_tag:
        query = query.where(quality_check_results.c.batch_tag == batch_tag)

    with engine.connect() as conn:
        return pd.read_sql(query, conn)


def results_from_frame(df: pd.DataFrame) -> List[QualityCheckResult]:
    """Rebuild result objects from stored rows (for summaries of past batches)."""
    results = []
    for row in df.to_dict('records'):
        results.append(QualityCheckResult(
            check_category=row['check_category'],
            check_name=row['check_name'],
            table_name=row['table_name'],
            test_result=row['test_result'],
            total_rows=None if pd.isna(row['total_rows']) else int(row['total_rows']),
            issue_count=None if pd.isna(row['issue_count']) else int(row['issue_count']),
            issue_percentage=None if pd.isna(row['issue_percentage']) else float(row['issue_percentage']),
            message=row['message'],
        ))
    return results
