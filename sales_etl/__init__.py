"""
Sales Warehouse ETL Package

This package contains modules for moving the store chain's sales data through
the raw, staging and warehouse layers of the sales data warehouse.

Modules:
- config: Environment configuration and settings
- schema: Table definitions for every layer plus the audit tables
- db: Engine creation and table-level helpers
- batch_log: Batch tags, load log and duplicate checker records
- cleaning: Column-level cleaning rules used by the staging transform
- loaders: Flat-file bulk load into raw tables
- staging: Raw to staging deduplication and cleaning
- warehouse: Staging to dimension/fact table load
- qc: Staging and warehouse quality check batteries
- pipeline: End-to-end run of every layer
- cli: Command-line interface for ETL operations
"""

__version__ = "0.1.0"
