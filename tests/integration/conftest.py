import os
from collections.abc import Generator
from typing import Any

import psycopg
import pytest

from docqueue.config.settings import Settings
from docqueue.database.connection import build_conninfo, close_pool, get_connection, init_pool
from docqueue.persistence.postgres_store import PostgresKeyValueStore

TEST_KEY_PREFIX = "itest_"


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "docqueue_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        with psycopg.connect(build_conninfo(test_settings), connect_timeout=3):
            pass
        init_pool(test_settings)
    except Exception as e:
        pytest.skip(f"PostgreSQL test DB not available: {e}. Set DB_* env to run.")
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def pg_store(integration_pool: None) -> Generator[PostgresKeyValueStore, None, None]:
    store = PostgresKeyValueStore()
    store.ensure_schema()
    yield store
    with get_connection() as conn:
        conn.execute(
            "DELETE FROM queue_checkpoints WHERE starts_with(key, %s)",
            (TEST_KEY_PREFIX,),
        )
        conn.commit()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn
