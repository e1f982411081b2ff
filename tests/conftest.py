"""
Pytest configuration and fixtures for clm-integration tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os
from typing import Generator

import psycopg
import pytest

from clm_integration.config.settings import EtlSettings, IntegrationSettings, Settings
from clm_integration.core.models import EntityKind, StagedRecord
from clm_integration.service import ClmIntegrationService
from clm_integration.warehouse.memory import InMemoryRepository


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# IN-MEMORY FIXTURES
# =======================

@pytest.fixture(scope="function")
def repository() -> InMemoryRepository:
    """Fresh in-memory repository for each test"""
    return InMemoryRepository()


@pytest.fixture(scope="function")
def settings() -> Settings:
    """
    Settings tuned for tests: a small worker pool and a short aggregation wait
    """
    return Settings(
        etl=EtlSettings(parallel_consumers=4),
        integration=IntegrationSettings(aggregation_timeout_seconds=0.5),
    )


@pytest.fixture(scope="function")
def service(repository, settings) -> ClmIntegrationService:
    """Service facade wired to the in-memory repository"""
    return ClmIntegrationService(repository, settings)


@pytest.fixture
def make_staged():
    """
    Factory for staged records

    Returns:
        Callable building a StagedRecord from raw fields
    """
    def _make(fields: dict, sequence: int = 1, entity_kind: EntityKind = EntityKind.CONTRACT,
              session_id: str = "test-session") -> StagedRecord:
        key_field = "contractNumber" if entity_kind is EntityKind.CONTRACT else "customerCode"
        return StagedRecord(
            session_id=session_id,
            sequence=sequence,
            entity_kind=entity_kind,
            natural_key={"tenantId": fields.get("tenantId", "DEFAULT"), key_field: fields.get(key_field)},
            fields=fields,
        )

    return _make


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with the pipeline schema applied
    """
    from testcontainers.postgres import PostgresContainer

    from clm_integration.warehouse.schema_mgmt import SCHEMA_SQL

    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_clm",
        password="test_password",
        dbname="test_clm",
        driver=None,
    ) as postgres:
        conn_url = postgres.get_connection_url()
        with psycopg.connect(conn_url) as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()

        yield postgres


@pytest.fixture(scope="function")
def db_pool(postgres_container) -> Generator:
    """
    Open a DatabaseConnectionPool against the container, with empty tables

    Yields:
        Open DatabaseConnectionPool
    """
    from clm_integration.warehouse.connection import DatabaseConnectionPool
    from clm_integration.warehouse.schema_mgmt import SchemaManager

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_clm",
        user="test_clm",
        password="test_password",
        min_size=1,
        max_size=8,
    )
    pool.open()
    SchemaManager(pool).truncate_all()

    yield pool

    pool.close()


@pytest.fixture(scope="function")
def pg_repository(db_pool):
    """PostgresRepository over a clean database"""
    from clm_integration.warehouse.postgres import PostgresRepository

    return PostgresRepository(db_pool)


# =======================
# FILE FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_data_dir() -> str:
    """
    Get path to test data fixtures directory

    Returns:
        Path to tests/fixtures directory
    """
    return os.path.join(os.path.dirname(__file__), "fixtures")


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
