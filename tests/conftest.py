"""pytest fixtures for floragen backend tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance (skipped without Docker)
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped async session factory with tables created and emptied
- uow_factory: Function-scoped UnitOfWork factory
- product: A representative plant product
"""

import os

# Settings() skips required-variable validation in the test environment
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from testcontainers.postgres import PostgresContainer  # noqa: E402

import floragen.models  # noqa: E402,F401
from floragen.core.database import close_db_session, setup_db_session  # noqa: E402
from floragen.models.product import Carrier, Product  # noqa: E402
from floragen.uow import create_uow_factory  # noqa: E402

TABLES = ("generated_images", "generation_jobs", "generation_usage", "organization_quotas")


@pytest.fixture(scope="session")
def postgres_container():
    """Provide session-scoped PostgreSQL container.

    Container starts once per test session and is reused across all tests.
    Tests that need it are skipped when Docker is not available.
    """
    container = PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_floragen",
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"PostgreSQL testcontainer unavailable: {e}")

    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(postgres_container):
    """Provide a session factory on a schema built from the SQLModel metadata.

    Tables are emptied after each test for isolation.
    """
    db_url = postgres_container.get_connection_url(driver="psycopg")
    factory = setup_db_session(db_url, pool_size=10)
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    async with engine.begin() as conn:
        for table in TABLES:
            await conn.execute(text(f"DELETE FROM {table}"))
    await close_db_session(factory)


@pytest_asyncio.fixture(scope="function")
async def uow_factory(session_factory):
    """Provide function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def product() -> Product:
    """Living tropical plant, 100cm tall, delivered in trays on a Danish trolley."""
    return Product(
        id="prod-1",
        name="Monstera Deliciosa - 100cm",
        sku="MON-100",
        category="Tropical indoor",
        carrier=Carrier(
            fust_code=212, fust_type="Tray", carriage_type="DC", layers=3, per_layer=6, units=18
        ),
        pot_diameter=24,
        plant_height=100,
        is_artificial=False,
        can_bloom=False,
    )
