"""
Tests for the read-only inspection API.
"""

import pytest
from fastapi.testclient import TestClient

from sales_api.db_client import SalesWarehouseDB
from sales_api.fastapi_server import app, get_db
from sales_etl.pipeline import run_pipeline


@pytest.fixture
def client(engine):
    """
    Provide an API client bound to the test database.
    """
    app.dependency_overrides[get_db] = lambda: SalesWarehouseDB(str(engine.url))
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def loaded(engine, source_dir):
    """
    Run the whole pipeline once on the sample extract.
    """
    return run_pipeline(source_dir, engine=engine)


class TestHealth:
    """Test root and health endpoints."""

    def test_root(self, client):
        """Test the root endpoint describes the API."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "Sales Warehouse API"

    def test_health_empty_database(self, client):
        """Test health on a fresh schema."""
        response = client.get("/health")
        body = response.json()

        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["database_connected"] is True
        assert body["load_log_count"] == 0


class TestAuditEndpoints:
    """Test audit trail endpoints after a pipeline run."""

    def test_logs(self, client, loaded):
        """Test the load log is returned newest first and filters by batch."""
        raw_tag = loaded.raw_entries[0].batch_tag

        response = client.get("/logs", params={"batch_tag": raw_tag})
        rows = response.json()

        assert response.status_code == 200
        assert len(rows) == 9
        assert rows[0]["table_name"] == "raw_stocks"
        assert all(row["load_status"] == "SUCCESS" for row in rows)

    def test_logs_limit(self, client, loaded):
        """Test the limit parameter."""
        response = client.get("/logs", params={"limit": 3})

        assert len(response.json()) == 3

    def test_duplicates(self, client, loaded):
        """Test duplicate checks are listed per staging table."""
        response = client.get("/duplicates", params={"batch_tag": loaded.staging.batch_tag})
        rows = response.json()

        assert len(rows) == 9
        assert all(row["duplicate_status"] == "NO DUPLICATE" for row in rows)

    def test_quality_latest_run(self, client, loaded):
        """Test quality results default to the latest run of a layer."""
        response = client.get("/quality", params={"layer": "warehouse", "test_result": "WARNING"})
        rows = response.json()

        assert response.status_code == 200
        assert {row["batch_tag"] for row in rows} == {loaded.warehouse_checks.batch_tag}
        assert any(row["check_name"] == "Unused Dimension Records" for row in rows)

    def test_quality_invalid_layer(self, client):
        """Test the layer parameter is validated."""
        response = client.get("/quality", params={"layer": "raw"})

        assert response.status_code == 422

    def test_quality_summary(self, client, loaded):
        """Test the summary of the latest warehouse run."""
        response = client.get("/quality/summary", params={"layer": "warehouse"})
        body = response.json()

        assert response.status_code == 200
        assert body["batch_tag"] == loaded.warehouse_checks.batch_tag
        assert body["overall"]["failed"] == 0
        assert body["overall"]["status"] == "HEALTHY"

    def test_quality_summary_without_runs(self, client):
        """Test a layer that was never checked gives 404."""
        response = client.get("/quality/summary", params={"layer": "staging"})

        assert response.status_code == 404


class TestTableCounts:
    """Test table row count endpoint."""

    def test_table_count(self, client, loaded):
        """Test counting a warehouse table."""
        response = client.get("/tables/fact_sales/count")

        assert response.status_code == 200
        assert response.json() == {"table_name": "fact_sales", "layer": "warehouse", "row_count": 4}

    def test_unknown_table(self, client):
        """Test unknown tables are rejected."""
        response = client.get("/tables/users/count")

        assert response.status_code == 404
