"""
Tests for quality control module.
"""

import pandas as pd
import pytest
from sqlalchemy import text

from sales_etl.db import append_frame
from sales_etl.qc import (
    CRITICAL,
    FAIL,
    HEALTHY,
    NEEDS_ATTENTION,
    PASS,
    STAGING_CHECKS,
    WARNING,
    WAREHOUSE_CHECKS,
    CardinalityCheck,
    GrainCheck,
    KeyUniquenessCheck,
    MissingChildCheck,
    NullForeignKeyCheck,
    OrphanCheck,
    QualityCheckResult,
    RowCountReconciliation,
    RuleCheck,
    classify,
    fetch_quality_results,
    issue_percentage,
    quality_status,
    run_quality_checks,
    summarize_results,
)


def _result(table: str, status: str, category: str = "Data Quality") -> QualityCheckResult:
    return QualityCheckResult(category, "Some Check", table, status, 10, 0, 0.0, "")


def _sales_rows(**overrides) -> pd.DataFrame:
    row = {
        'order_id': 1, 'item_id': 1, 'customer_id': 1, 'product_id': 1, 'store_id': 1,
        'staff_id': 1, 'date_id': 1, 'quantity': 2, 'list_price': 100.0, 'sales': 180.0,
        'discount': 0.1, 'total_amount': 180.0,
    }
    rows = [row, {**row, 'order_id': 2}]
    for column, values in overrides.items():
        for target, value in zip(rows, values):
            target[column] = value
    return pd.DataFrame(rows)


class TestClassification:
    """Test result classification helpers."""

    def test_classify(self):
        """Test zero issues pass and anything else takes the failure status."""
        assert classify(0) == PASS
        assert classify(3) == FAIL
        assert classify(3, WARNING) == WARNING

    def test_issue_percentage(self):
        """Test percentage rounding and the empty-table case."""
        assert issue_percentage(1, 3) == 33.33
        assert issue_percentage(0, 10) == 0.0
        assert issue_percentage(0, 0) is None
        assert issue_percentage(None, 10) is None

    def test_quality_status(self):
        """Test health status thresholds on failure counts."""
        assert quality_status(0) == HEALTHY
        assert quality_status(1) == NEEDS_ATTENTION
        assert quality_status(2) == NEEDS_ATTENTION
        assert quality_status(3) == CRITICAL


class TestSummary:
    """Test result summaries."""

    def test_summarize_results(self):
        """Test per-table and per-category tallies."""
        results = [
            _result('fact_sales', PASS),
            _result('fact_sales', FAIL),
            _result('fact_sales', WARNING, "Referential Integrity"),
            _result('dim_dates', PASS, "Surrogate Keys"),
        ]

        summary = summarize_results(results)

        assert summary['overall']['total_checks'] == 4
        assert summary['overall']['pass_rate'] == 50.0
        assert summary['overall']['status'] == NEEDS_ATTENTION

        first = summary['by_table'][0]
        assert first['table_name'] == 'fact_sales'
        assert (first['passed'], first['failed'], first['warnings']) == (1, 1, 1)
        assert summary['by_table'][1]['status'] == HEALTHY

        categories = {row['check_category']: row for row in summary['by_category']}
        assert categories['Data Quality']['total_checks'] == 2

    def test_summarize_empty(self):
        """Test an empty result list summarises as healthy."""
        summary = summarize_results([])

        assert summary['overall']['total_checks'] == 0
        assert summary['overall']['status'] == HEALTHY
        assert summary['by_table'] == []


class TestCheckKinds:
    """Test individual check kinds against small tables."""

    def test_key_uniqueness(self, engine):
        """Test duplicated keys are counted."""
        append_frame(engine, pd.DataFrame({'customer_id': [1, 1, 2], 'customer_name': ['A', 'B', 'C']}),
                     'stg_customers')
        check = KeyUniquenessCheck('DUPLICATE_CHECK', "dup", 'stg_customers', key=('customer_id',))

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == FAIL
        assert (result.total_rows, result.issue_count) == (3, 1)
        assert result.issue_percentage == 33.33

    def test_row_count_reconciliation(self, engine):
        """Test a difference within the allowed variance passes."""
        raw = pd.DataFrame({'brand_id': list(range(1, 21)) + [None], 'brand_name': ['x'] * 21})
        append_frame(engine, raw, 'raw_brands')
        append_frame(engine, pd.DataFrame({'brand_id': range(1, 20), 'brand_name': ['x'] * 19}), 'stg_brands')

        check = RowCountReconciliation('COUNT_VALIDATION', "count", 'stg_brands',
                                       source='raw_brands', required=('brand_id',))
        strict = RowCountReconciliation('COUNT_VALIDATION', "count", 'stg_brands',
                                        source='raw_brands', required=('brand_id',), variance_pct=1.0)

        with engine.connect() as conn:
            result = check.run(conn)
            strict_result = strict.run(conn)

        assert result.test_result == PASS
        assert result.issue_count == 1
        assert result.message == "Raw count: 20, Staging count: 19"
        assert strict_result.test_result == WARNING

    def test_rule_check_with_callable_params(self, engine):
        """Test predicate parameters given as callables are resolved at run time."""
        append_frame(engine, _sales_rows(quantity=[2, -1]), 'fact_sales')
        check = RuleCheck('Data Quality', "Negative Quantities", 'fact_sales',
                          predicate="quantity < :floor", description="negative quantities",
                          params={'floor': lambda: 0})

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == FAIL
        assert result.issue_count == 1
        assert result.message == "Found 1 records with negative quantities"

    def test_orphan_check_ignores_null_keys(self, engine):
        """Test null foreign keys are not counted as orphans."""
        append_frame(engine, pd.DataFrame({'customer_id': [1], 'customer_name': ['A']}), 'dim_customers')
        append_frame(engine, _sales_rows(customer_id=[None, 5]), 'fact_sales')
        check = OrphanCheck('Referential Integrity', "Orphaned Customer Records", 'fact_sales',
                            column='customer_id', dimension='dim_customers')

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == FAIL
        assert result.issue_count == 1

    def test_null_foreign_keys_message(self, engine):
        """Test per-key null counts are listed in the message."""
        append_frame(engine, _sales_rows(customer_id=[None, 1], date_id=[None, None]), 'fact_sales')
        check = NullForeignKeyCheck('Referential Integrity', "NULL Foreign Keys", 'fact_sales',
                                    foreign_keys={'Customer': 'customer_id', 'Date': 'date_id'})

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == WARNING
        assert result.issue_count == 2
        assert result.message == "NULL FKs - Customer: 1, Date: 2"

    def test_cardinality(self, engine):
        """Test one fact per key is only a warning and no issue count is kept."""
        append_frame(engine, _sales_rows(customer_id=[1, 2]), 'fact_sales')
        check = CardinalityCheck('Relationships', "Cardinality Check", 'fact_sales -> dim_customers',
                                 column='customer_id', fact='fact_sales')

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == WARNING
        assert result.issue_count is None
        assert result.table_name == 'fact_sales -> dim_customers'

    def test_missing_child(self, engine):
        """Test parents without children are counted as a warning."""
        append_frame(engine, pd.DataFrame({'store_id': [1, 2], 'store_name': ['A', 'B']}), 'stg_stores')
        append_frame(engine, pd.DataFrame({'staff_id': [1], 'staff_name': ['S'], 'store_id': [1]}), 'stg_staffs')
        check = MissingChildCheck('COMPLETENESS_CHECK', "Stores without staff", 'stg_stores',
                                  key='store_id', child='stg_staffs', description="Stores without staff")

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == WARNING
        assert result.message == "Stores without staff: 1 out of 2"

    def test_grain_check(self, engine):
        """Test repeated grain combinations are counted once each."""
        append_frame(engine, _sales_rows(order_id=[1, 1]), 'fact_sales')
        check = GrainCheck('Data Quality', "Fact Grain Validation", 'fact_sales', grain=('order_id', 'product_id'))

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == FAIL
        assert result.issue_count == 1

    def test_check_that_cannot_run(self, engine):
        """Test a check whose query errors is recorded as FAIL."""
        check = RuleCheck('Data Quality', "Broken", 'no_such_table', predicate="1 = 1", description="anything")

        with engine.connect() as conn:
            result = check.run(conn)

        assert result.test_result == FAIL
        assert result.message.startswith("Check could not run:")
        assert result.issue_count is None


class TestBatteries:
    """Test running whole batteries."""

    def test_battery_contents(self):
        """Test the warehouse battery names the expected checks."""
        names = {(check.name, check.table) for check in WAREHOUSE_CHECKS}

        assert ("Orphaned Customer Records", 'fact_sales') in names
        assert ("Orphaned Product Records", 'fact_inventory') in names
        assert ("Fact Grain Validation", 'fact_inventory') in names
        assert ("Date Dimension Continuity", 'dim_dates') in names
        assert len([c for c in STAGING_CHECKS if c.category == 'COMPLETENESS_CHECK']) == 3

    def test_unknown_layer(self, engine):
        """Test only staging and warehouse batteries exist."""
        with pytest.raises(ValueError, match="Unknown quality check layer"):
            run_quality_checks('raw', engine=engine)

    def test_results_stored_with_batch_tag(self, engine):
        """Test every result is stored under the run's batch tag, even on an empty warehouse."""
        report = run_quality_checks('warehouse', engine=engine)

        stored = fetch_quality_results(engine, layer='warehouse', batch_tag=report.batch_tag)

        assert report.batch_tag.startswith("DWQualityCheck_")
        assert len(stored) == len(WAREHOUSE_CHECKS)
        assert set(stored['layer']) == {'warehouse'}

    def test_audit_results_accumulate(self, engine):
        """Test quality results are appended, never replaced."""
        run_quality_checks('staging', engine=engine, batch_tag="StgQualityCheck_first")
        run_quality_checks('staging', engine=engine, batch_tag="StgQualityCheck_second")

        with engine.connect() as conn:
            total = conn.execute(text("SELECT COUNT(*) FROM quality_check_results")).scalar()

        assert total == 2 * len(STAGING_CHECKS)
