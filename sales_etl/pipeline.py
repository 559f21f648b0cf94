"""
End-to-end pipeline: raw load, staging transform, staging checks, warehouse
load, warehouse checks. Steps run strictly one after another.
"""

from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional

from loguru import logger
from sqlalchemy import Engine

from .batch_log import LogEntry
from .config import get_settings
from .db import get_engine
from .loaders import run_raw_load
from .qc import QualityReport, run_quality_checks
from .schema import create_schema
from .staging import StagingResult, run_staging_transform
from .warehouse import run_warehouse_load


@dataclass
class PipelineReport:
    """What one pipeline run did, step by step."""
    raw_entries: List[LogEntry] = field(default_factory=list)
    staging: Optional[StagingResult] = None
    staging_checks: Optional[QualityReport] = None
    warehouse_entries: List[LogEntry] = field(default_factory=list)
    warehouse_checks: Optional[QualityReport] = None

    @property
    def entries(self) -> List[LogEntry]:
        staged = self.staging.entries if self.staging else []
        return [*self.raw_entries, *staged, *self.warehouse_entries]

    @property
    def batch_tags(self) -> List[str]:
        tags = []
        for entry in self.entries:
            if entry.batch_tag not in tags:
                tags.append(entry.batch_tag)
        for report in (self.staging_checks, self.warehouse_checks):
            if report is not None:
                tags.append(report.batch_tag)
        return tags

    @property
    def has_errors(self) -> bool:
        """True when any table failed to load or transform."""
        return any(not entry.succeeded for entry in self.entries)

    @property
    def has_check_failures(self) -> bool:
        return any(report is not None and report.has_failures
                   for report in (self.staging_checks, self.warehouse_checks))


def run_pipeline(source_dir: Optional[Path] = None, with_checks: bool = True,
                 engine: Optional[Engine] = None, load_date: Optional[date] = None) -> PipelineReport:
    """
    Run every layer of the ETL in sequence.

    A failing table is logged and the run continues; only a missing source
    directory stops the pipeline before anything is touched.

    Args:
        source_dir: Directory with one CSV per raw entity (default: settings)
        with_checks: Run the staging and warehouse quality checks
        engine: SQLAlchemy engine (default: from settings)
        load_date: Inventory snapshot date (default: today)

    Returns:
        PipelineReport: Log entries and check results of every step

    Raises:
        FileNotFoundError: If the source directory does not exist
    """
    source_dir = Path(source_dir or get_settings().data_source_path)
    if not source_dir.is_dir():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")

    engine = engine or get_engine()
    create_schema(engine)

    report = PipelineReport()

    logger.info("Step 1/5: loading raw layer")
    report.raw_entries = run_raw_load(source_dir, engine=engine)

    logger.info("Step 2/5: transforming staging layer")
    report.staging = run_staging_transform(engine=engine)

    if with_checks:
        logger.info("Step 3/5: staging quality checks")
        report.staging_checks = run_quality_checks('staging', engine=engine)
    else:
        logger.info("Step 3/5: staging quality checks skipped")

    logger.info("Step 4/5: loading warehouse layer")
    report.warehouse_entries = run_warehouse_load(engine=engine, load_date=load_date)

    if with_checks:
        logger.info("Step 5/5: warehouse quality checks")
        report.warehouse_checks = run_quality_checks('warehouse', engine=engine)
    else:
        logger.info("Step 5/5: warehouse quality checks skipped")

    if report.has_errors:
        failed = [entry.table_name for entry in report.entries if not entry.succeeded]
        logger.warning(f"Pipeline finished with failed tables: {failed}")
    else:
        logger.success(f"Pipeline finished: {len(report.entries)} tables loaded")

    return report
