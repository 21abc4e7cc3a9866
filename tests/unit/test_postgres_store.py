from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import psycopg
import pytest
from psycopg.types.json import Jsonb

from docqueue.persistence.exceptions import StoreError
from docqueue.persistence.postgres_store import PostgresKeyValueStore


def _patched_connection(conn: MagicMock):  # type: ignore[no-untyped-def]
    @contextmanager
    def _get_connection():  # type: ignore[no-untyped-def]
        yield conn

    return patch("docqueue.persistence.postgres_store.get_connection", _get_connection)


def _make_conn(fetchone=None, fetchall=None) -> tuple[MagicMock, MagicMock]:  # type: ignore[no-untyped-def]
    conn = MagicMock()
    cursor = MagicMock()
    cursor.fetchone.return_value = fetchone
    cursor.fetchall.return_value = fetchall or []
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


class TestPersist:
    def test_upserts_jsonb_record(self) -> None:
        conn, _cursor = _make_conn()
        with _patched_connection(conn):
            PostgresKeyValueStore().persist("batch_queue_po_b1", {"id": "b1"})

        sql, params = conn.execute.call_args.args
        assert "ON CONFLICT (key)" in sql
        assert params[0] == "batch_queue_po_b1"
        assert isinstance(params[1], Jsonb)
        conn.commit.assert_called_once()

    def test_wraps_driver_errors(self) -> None:
        conn, _cursor = _make_conn()
        conn.execute.side_effect = psycopg.OperationalError("connection lost")
        with _patched_connection(conn), pytest.raises(StoreError, match="connection lost"):
            PostgresKeyValueStore().persist("k", {})


class TestLoad:
    def test_returns_record(self) -> None:
        conn, cursor = _make_conn(fetchone=({"id": "b1"},))
        with _patched_connection(conn):
            record = PostgresKeyValueStore().load("k")
        assert record == {"id": "b1"}
        assert cursor.execute.call_args.args[1] == ("k",)

    def test_returns_none_when_missing(self) -> None:
        conn, _cursor = _make_conn(fetchone=None)
        with _patched_connection(conn):
            assert PostgresKeyValueStore().load("k") is None


class TestKeysAndDelete:
    def test_lists_keys_by_prefix(self) -> None:
        conn, cursor = _make_conn(fetchall=[("batch_queue_a",), ("batch_queue_b",)])
        with _patched_connection(conn):
            keys = PostgresKeyValueStore().keys("batch_queue_")
        assert keys == ["batch_queue_a", "batch_queue_b"]
        assert cursor.execute.call_args.args[1] == ("batch_queue_",)

    def test_delete(self) -> None:
        conn, _cursor = _make_conn()
        with _patched_connection(conn):
            PostgresKeyValueStore().delete("k")
        assert conn.execute.call_args.args[1] == ("k",)
        conn.commit.assert_called_once()


class TestEnsureSchema:
    def test_creates_table(self) -> None:
        conn, _cursor = _make_conn()
        with _patched_connection(conn):
            PostgresKeyValueStore().ensure_schema()
        assert "CREATE TABLE IF NOT EXISTS queue_checkpoints" in conn.execute.call_args.args[0]
