"""
FastAPI server for the Sales Warehouse.

Read-only REST API over the ETL audit trail: load log, duplicate checks,
quality check results and table row counts.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from sales_etl.config import get_settings
from sales_etl.schema import LAYERS

from .db_client import SalesWarehouseDB


# Pydantic models for API responses
class LoadLogEntry(BaseModel):
    """Load log row response model."""
    load_id: int
    table_name: str
    batch_tag: str
    load_status: str
    message: Optional[str]
    load_time: datetime


class DuplicateCheckEntry(BaseModel):
    """Duplicate checker row response model."""
    id: int
    table_name: str
    batch_tag: str
    duplicate_status: str
    duplicate_count: int
    last_checked: datetime


class QualityCheckEntry(BaseModel):
    """Quality check result response model."""
    check_id: int
    layer: str
    check_category: str
    check_name: str
    table_name: str
    test_result: str
    total_rows: Optional[int]
    issue_count: Optional[int]
    issue_percentage: Optional[float]
    message: Optional[str]
    batch_tag: str
    checked_at: datetime


class TableCount(BaseModel):
    """Table row count response model."""
    table_name: str
    layer: str
    row_count: int


class HealthCheck(BaseModel):
    """Health check response model."""
    status: str
    database_connected: bool
    load_log_count: Optional[int] = None
    failed_load_count: Optional[int] = None
    last_load_time: Optional[datetime] = None
    timestamp: str
    error: Optional[str] = None


# FastAPI app instance
app = FastAPI(
    title="Sales Warehouse API",
    description="Read-only REST API over the sales warehouse ETL audit trail",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Dependency to get database client
def get_db() -> SalesWarehouseDB:
    """Dependency to provide database client."""
    return SalesWarehouseDB()


def _layer_of(table: str) -> str:
    for layer, tables in LAYERS.items():
        if table in tables:
            return layer
    raise HTTPException(status_code=404, detail=f"Table {table} not found")


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Sales Warehouse API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health"
    }


@app.get("/health", response_model=HealthCheck, tags=["Health"])
async def health_check(db: SalesWarehouseDB = Depends(get_db)):
    """Database and API health check."""
    return db.health_check()


@app.get("/logs", response_model=List[LoadLogEntry], tags=["Audit"])
async def get_load_log(
    batch_tag: Optional[str] = Query(None, description="Filter by batch tag"),
    status: Optional[str] = Query(None, description="Filter by load status (SUCCESS/FAILED)"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of results"),
    db: SalesWarehouseDB = Depends(get_db)
):
    """Get the most recent load log entries."""
    try:
        return db.load_log(batch_tag=batch_tag, status=status, limit=limit)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/duplicates", response_model=List[DuplicateCheckEntry], tags=["Audit"])
async def get_duplicates(
    batch_tag: Optional[str] = Query(None, description="Filter by batch tag"),
    only_found: bool = Query(False, description="Only tables where duplicates were found"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of results"),
    db: SalesWarehouseDB = Depends(get_db)
):
    """Get the most recent duplicate checks."""
    try:
        return db.duplicate_checks(batch_tag=batch_tag, only_found=only_found, limit=limit)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/quality", response_model=List[QualityCheckEntry], tags=["Quality"])
async def get_quality_results(
    layer: Optional[str] = Query(None, pattern="^(staging|warehouse)$", description="Layer (latest run by default)"),
    batch_tag: Optional[str] = Query(None, description="Quality check batch tag"),
    test_result: Optional[str] = Query(None, description="Filter by PASS/FAIL/WARNING"),
    db: SalesWarehouseDB = Depends(get_db)
):
    """Get stored quality check results."""
    try:
        return db.quality_results(layer=layer, batch_tag=batch_tag, test_result=test_result)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/quality/summary", response_model=Dict[str, Any], tags=["Quality"])
async def get_quality_summary(
    layer: str = Query(..., pattern="^(staging|warehouse)$", description="Layer"),
    batch_tag: Optional[str] = Query(None, description="Quality check batch tag (latest by default)"),
    db: SalesWarehouseDB = Depends(get_db)
):
    """Summarise one quality check run per table and per category."""
    try:
        summary = db.quality_summary(layer, batch_tag)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))

    if 'error' in summary:
        raise HTTPException(status_code=404, detail=summary['error'])
    return summary


@app.get("/tables/{name}/count", response_model=TableCount, tags=["Tables"])
async def get_table_count(
    name: str,
    db: SalesWarehouseDB = Depends(get_db)
):
    """Get the row count of one table."""
    layer = _layer_of(name)
    try:
        return TableCount(table_name=name, layer=layer, row_count=db.table_count(name))
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# Development server runner
if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sales_api.fastapi_server:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=True
    )
