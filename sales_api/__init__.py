"""
Sales Warehouse Application Package

This package contains the database client and API components for inspecting
the sales warehouse: load log, duplicate checks, quality check results and
table row counts.

Modules:
- db_client: SQLAlchemy-based read-only client for the audit tables
- fastapi_server: REST API server
"""

__version__ = "0.1.0"
