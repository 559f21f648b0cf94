"""
Pytest configuration and shared fixtures for Sales Warehouse tests.

Provides database fixtures, sample source files, and common test utilities.
"""

import os
from pathlib import Path
from typing import Dict, Generator, Optional

import pytest
from sqlalchemy import Engine
from testcontainers.postgres import PostgresContainer

from sales_etl.config import reload_settings
from sales_etl.db import dispose_engines, get_engine
from sales_etl.schema import create_schema, drop_schema

TEST_ENV_VARS = ["DATABASE_URL", "DATA_SOURCE_PATH", "LOG_LEVEL", "LOG_FILE"]

# A small, internally consistent extract: every order has items, every
# product has stock and every store has staff. Customer 3 never orders.
SAMPLE_SOURCE: Dict[str, str] = {
    'brands': """brand_id,brand_name
1,Electra
2,Trek
""",
    'categories': """category_id,category_name
1,Mountain Bikes
2,Road Bikes
""",
    'products': """product_id,product_name,brand_id,category_id,model_year,list_price
1,Trek 820 - 2016,2,1,2016,379.99
2,Electra Townie Original 7D - 2017,1,2,2017,549.99
3,Trek Domane SL 6 - 2018,2,2,2018,1199.99
""",
    'customers': """customer_id,first_name,last_name,phone,email,street,city,state,zip_code
1,Debra,Burks,,debra.burks@yahoo.com,9273 Thorne Ave.,Orchard Park,NY,14127
2,Kasha,Todd,,kasha.todd@yahoo.com,910 Vine Street,Campbell,CA,95008
3,Tameka,Fisher,,tameka.fisher@aol.com,769C Honey Creek St.,Redondo Beach,TX,90278
""",
    'orders': """order_id,customer_id,order_status,order_date,required_date,shipped_date,store_id,staff_id
1,1,4,2016-01-01,2016-01-03,2016-01-03,1,2
2,2,4,2016-01-01,2016-01-04,2016-01-03,2,3
3,1,1,2016-01-02,2016-01-05,,1,2
""",
    'order_items': """order_id,item_id,product_id,quantity,list_price,discount
1,1,1,1,379.99,0.2
1,2,2,2,549.99,0.07
2,1,3,1,1199.99,0.05
3,1,2,1,549.99,0.1
""",
    'stores': """store_id,store_name,phone,email,street,city,state,zip_code
1,Santa Cruz Bikes,(831) 476-4321,santacruz@bikes.shop,3700 Portola Drive,Santa Cruz,CA,95060
2,Baldwin Bikes,(516) 379-8888,baldwin@bikes.shop,4200 Chestnut Lane,Baldwin,NY,11432
""",
    'staffs': """staff_id,first_name,last_name,email,phone,active,store_id,manager_id
1,Fabiola,Jackson,fabiola.jackson@bikes.shop,(831) 555-5554,1,1,
2,Mireya,Copeland,mireya.copeland@bikes.shop,(831) 555-5555,1,1,1
3,Genna,Serrano,genna.serrano@bikes.shop,(516) 379-4444,1,2,1
""",
    'stocks': """store_id,product_id,quantity
1,1,27
1,2,5
2,3,0
""",
}


def write_source(directory: Path, overrides: Optional[Dict[str, str]] = None,
                 skip: tuple = ()) -> Path:
    """
    Write the sample extract (with per-entity overrides) as CSV files.

    Args:
        directory: Target directory (created if missing)
        overrides: Entity name -> CSV text replacing the sample content
        skip: Entity names not to write at all
    """
    directory.mkdir(parents=True, exist_ok=True)
    contents = {**SAMPLE_SOURCE, **(overrides or {})}
    for entity, content in contents.items():
        if entity in skip:
            continue
        (directory / f"{entity}.csv").write_text(content)
    return directory


@pytest.fixture
def test_settings(tmp_path: Path):
    """
    Override settings for testing: a throwaway SQLite database per test.
    """
    # Set environment variables for testing
    os.environ["DATABASE_URL"] = f"sqlite:///{tmp_path / 'warehouse.db'}"
    os.environ["DATA_SOURCE_PATH"] = str(tmp_path / "source")
    os.environ["LOG_LEVEL"] = "DEBUG"
    os.environ["LOG_FILE"] = str(tmp_path / "logs" / "sales_etl.log")

    # Reload settings to pick up test environment
    settings = reload_settings()

    yield settings

    # Cleanup environment variables and cached engines
    dispose_engines()
    for key in TEST_ENV_VARS:
        if key in os.environ:
            del os.environ[key]
    reload_settings()


@pytest.fixture
def engine(test_settings) -> Engine:
    """
    Provide an engine on the test database with the schema created.
    """
    engine = get_engine(test_settings.database_url)
    create_schema(engine)
    return engine


@pytest.fixture
def source_dir(test_settings) -> Path:
    """
    Write the sample extract into the configured source directory.
    """
    return write_source(Path(test_settings.data_source_path))


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Provide a PostgreSQL test container for the test session.

    Skips dependent tests when Docker is not available.
    """
    try:
        container = PostgresContainer("postgres:15-alpine")
        container.start()
    except Exception as e:
        pytest.skip(f"PostgreSQL container unavailable: {e}")

    yield container
    container.stop()


@pytest.fixture
def postgres_engine(postgres_container: PostgresContainer, test_settings) -> Generator[Engine, None, None]:
    """
    Provide an engine on the PostgreSQL container with a fresh schema.
    """
    engine = get_engine(postgres_container.get_connection_url())
    drop_schema(engine)
    create_schema(engine)
    yield engine
    drop_schema(engine)


@pytest.fixture
def make_source(tmp_path: Path):
    """
    Factory writing a variant of the sample extract into a fresh directory.
    """
    counter = {'n': 0}

    def _make(overrides: Optional[Dict[str, str]] = None, skip: tuple = ()) -> Path:
        counter['n'] += 1
        return write_source(tmp_path / f"extract_{counter['n']}", overrides, skip)

    return _make
