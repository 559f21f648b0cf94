"""
Tests for the command-line interface.
"""

import sys

import pytest
from click.testing import CliRunner
from loguru import logger

from sales_etl.cli import main
from sales_etl.db import count_rows


@pytest.fixture
def runner():
    """
    Provide a CLI runner and restore the default log sink afterwards.
    """
    yield CliRunner()
    logger.remove()
    logger.add(sys.stderr)


class TestCommands:
    """Test CLI commands end to end on the test database."""

    def test_run_and_status(self, runner, engine, source_dir):
        """Test the whole pipeline runs and status lists every layer."""
        result = runner.invoke(main, ['run', str(source_dir)])

        assert result.exit_code == 0, result.output
        assert "Quality Checks - warehouse" in result.output
        assert count_rows(engine, 'fact_sales') == 4

        status = runner.invoke(main, ['status'])
        assert status.exit_code == 0
        assert "fact_sales" in status.output

    def test_layer_by_layer(self, runner, engine, source_dir):
        """Test the individual layer commands."""
        assert runner.invoke(main, ['init-db']).exit_code == 0
        assert runner.invoke(main, ['load-raw', str(source_dir)]).exit_code == 0
        assert runner.invoke(main, ['stage']).exit_code == 0
        assert runner.invoke(main, ['load-dw']).exit_code == 0
        assert runner.invoke(main, ['check', 'staging']).exit_code == 0

        logs = runner.invoke(main, ['logs'])
        assert logs.exit_code == 0
        assert "dim_dates" in logs.output

    def test_failed_table_exit_code(self, runner, engine, make_source):
        """Test a failed table makes the command exit with status 1."""
        extract = make_source(skip=('brands',))

        result = runner.invoke(main, ['load-raw', str(extract)])

        assert result.exit_code == 1
        assert "raw_brands" in result.output

    def test_check_failure_exit_code(self, runner, engine, make_source):
        """Test a FAIL result makes the check command exit with status 1."""
        extract = make_source({
            'order_items': "order_id,item_id,product_id,quantity,list_price,discount\n"
                           "1,1,1,-1,379.99,0.2\n"
                           "2,1,3,1,1199.99,0.05\n"
                           "3,1,2,1,549.99,0.1\n",
        })
        runner.invoke(main, ['run', str(extract), '--skip-checks'])

        result = runner.invoke(main, ['check', 'warehouse'])

        assert result.exit_code == 1
        assert "Negative Quantities" in result.output
