"""
Configuration module for Sales Warehouse ETL.

Uses Pydantic Settings to manage environment variables and configuration.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./data/sales_warehouse.db",
        description="SQLAlchemy connection string holding the raw, staging and warehouse layers"
    )

    # Data Paths
    data_source_path: Path = Field(
        default=Path("./data/source"),
        description="Directory holding one CSV file per raw entity"
    )

    # Quality Control Thresholds
    qc_count_variance_pct: float = Field(
        default=5.0,
        ge=0.0,
        le=100.0,
        description="Allowed raw vs staging row count variance before a WARNING"
    )
    qc_amount_tolerance: float = Field(
        default=0.01,
        ge=0.0,
        description="Allowed difference between stored and recomputed total_amount"
    )

    # ETL Configuration
    batch_size: int = Field(
        default=500,
        gt=0,
        description="Number of rows per multi-row INSERT"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_file: Optional[Path] = Field(
        default=Path("./logs/sales_etl.log"),
        description="Log file path"
    )

    # API Configuration
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8000,
        gt=0,
        le=65535,
        description="API server port"
    )
    api_workers: int = Field(
        default=1,
        gt=0,
        description="Number of API worker processes"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings singleton.

    Returns:
        Settings: Application configuration object
    """
    global _settings
    if _settings is None:
        _settings = Settings()

        # SQLite needs the parent directory of the database file to exist
        if _settings.database_url.startswith("sqlite:///"):
            db_path = _settings.database_url[len("sqlite:///"):]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        # Ensure log directory exists
        if _settings.log_file:
            _settings.log_file.parent.mkdir(parents=True, exist_ok=True)

    return _settings


def reload_settings() -> Settings:
    """
    Force reload of settings (useful for testing).

    Returns:
        Settings: Fresh application configuration object
    """
    global _settings
    _settings = None
    return get_settings()
