"""
Database client for the Sales Warehouse.

Read-only access to the audit tables (load log, duplicate checker, quality
check results) and row counts of the data tables.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import Engine, desc, func, select, text
from sqlalchemy.exc import SQLAlchemyError

from sales_etl.db import count_rows, get_engine
from sales_etl.qc import results_from_frame, summarize_results
from sales_etl.schema import (
    duplicate_checker,
    get_table,
    load_log,
    quality_check_results,
)


def _records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """DataFrame rows as dicts with nulls as None."""
    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict('records')


class SalesWarehouseDB:
    """
    Sales Warehouse database client.

    Provides helper methods for querying the ETL audit trail.
    """

    def __init__(self, dsn: Optional[str] = None):
        """
        Initialize database client.

        Args:
            dsn: Database connection string. If None, uses settings from config.
        """
        self.engine: Engine = get_engine(dsn)
        logger.debug(f"Initialized SalesWarehouseDB with engine: {self.engine.url.render_as_string(hide_password=True)}")

    def load_log(self, batch_tag: Optional[str] = None, status: Optional[str] = None,
                 limit: int = 100) -> List[Dict[str, Any]]:
        """
        Most recent load log rows, newest first.

        Args:
            batch_tag: Only rows of this batch
            status: Only rows with this load status (SUCCESS / FAILED)
            limit: Maximum number of rows
        """
        query = select(load_log).order_by(desc(load_log.c.load_id)).limit(limit)
        if batch_tag:
            query = query.where(load_log.c.batch_tag == batch_tag)
        if status:
            query = query.where(load_log.c.load_status == status.upper())

        return self._fetch(query, "load log")

    def duplicate_checks(self, batch_tag: Optional[str] = None, only_found: bool = False,
                         limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent duplicate checker rows, newest first."""
        query = select(duplicate_checker).order_by(desc(duplicate_checker.c.id)).limit(limit)
        if batch_tag:
            query = query.where(duplicate_checker.c.batch_tag == batch_tag)
        if only_found:
            query = query.where(duplicate_checker.c.duplicate_count > 0)

        return self._fetch(query, "duplicate checks")

    def latest_quality_batch(self, layer: str) -> Optional[str]:
        """Batch tag of the most recent quality check run of a layer."""
        query = select(func.max(quality_check_results.c.check_id)).where(quality_check_results.c.layer == layer)
        try:
            with self.engine.connect() as conn:
                last_id = conn.execute(query).scalar()
                if last_id is None:
                    return None
                return conn.execute(
                    select(quality_check_results.c.batch_tag).where(quality_check_results.c.check_id == last_id)
                ).scalar()
        except SQLAlchemyError as e:
            logger.error(f"Failed to find latest {layer} quality batch: {e}")
            raise

    def quality_results(self, layer: Optional[str] = None, batch_tag: Optional[str] = None,
                        test_result: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Stored quality check results.

        Without a batch tag, the latest run of the layer is returned (or the
        latest 500 rows when no layer is given either).
        """
        if layer and not batch_tag:
            batch_tag = self.latest_quality_batch(layer)
            if batch_tag is None:
                return []

        query = select(quality_check_results)
        if layer:
            query = query.where(quality_check_results.c.layer == layer)
        if test_result:
            query = query.where(quality_check_results.c.test_result == test_result.upper())
        if batch_tag:
            query = query.where(quality_check_results.c.batch_tag == batch_tag).order_by(quality_check_results.c.check_id)
        else:
            query = query.order_by(desc(quality_check_results.c.check_id)).limit(500)

        return self._fetch(query, "quality check results")

    def quality_summary(self, layer: str, batch_tag: Optional[str] = None) -> Dict[str, Any]:
        """
        Summary of one quality check run (latest of the layer by default).

        Returns:
            dict: layer, batch_tag plus the overall / by_table / by_category summary
        """
        batch_tag = batch_tag or self.latest_quality_batch(layer)
        if batch_tag is None:
            return {'layer': layer, 'batch_tag': None, 'error': 'No quality checks have run for this layer'}

        rows = pd.DataFrame(self.quality_results(layer=layer, batch_tag=batch_tag))
        summary = summarize_results(results_from_frame(rows)) if not rows.empty else summarize_results([])
        return {'layer': layer, 'batch_tag': batch_tag, **summary}

    def table_count(self, table: str) -> int:
        """
        Row count of one table.

        Raises:
            ValueError: If the table is not part of the warehouse
        """
        get_table(table)
        try:
            return count_rows(self.engine, table)
        except SQLAlchemyError as e:
            logger.error(f"Failed to count rows of {table}: {e}")
            raise

    def health_check(self) -> Dict[str, Any]:
        """
        Perform database health check.

        Returns:
            dict: Health check results
        """
        try:
            with self.engine.connect() as conn:
                # Test basic connectivity
                conn.execute(text("SELECT 1")).fetchone()

                stats = conn.execute(select(
                    func.count(load_log.c.load_id),
                    func.max(load_log.c.load_time),
                )).fetchone()

                failed = conn.execute(
                    select(func.count(load_log.c.load_id)).where(load_log.c.load_status == 'FAILED')
                ).scalar()

            return {
                'status': 'healthy',
                'database_connected': True,
                'load_log_count': stats[0],
                'failed_load_count': failed,
                'last_load_time': stats[1],
                'timestamp': datetime.now().isoformat()
            }

        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                'status': 'unhealthy',
                'database_connected': False,
                'error': str(e),
                'timestamp': datetime.now().isoformat()
            }

    def _fetch(self, query, what: str) -> List[Dict[str, Any]]:
        try:
            with self.engine.connect() as conn:
                df = pd.read_sql(query, conn)
            logger.debug(f"Retrieved {len(df)} {what} rows")
            return _records(df)
        except SQLAlchemyError as e:
            logger.error(f"Failed to fetch {what}: {e}")
            raise
