from typing import Any

import psycopg
from psycopg.types.json import Jsonb

from docqueue.database.connection import get_connection
from docqueue.persistence.base import BaseKeyValueStore
from docqueue.persistence.exceptions import StoreError


class PostgresKeyValueStore(BaseKeyValueStore):
    """Checkpoints kept as JSONB rows in the queue_checkpoints table."""

    def ensure_schema(self) -> None:
        """Create the checkpoint table if it does not exist yet."""
        with get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queue_checkpoints (
                    key TEXT PRIMARY KEY,
                    record JSONB NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            conn.commit()

    def persist(self, key: str, record: Any) -> None:
        try:
            with get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO queue_checkpoints (key, record, updated_at)
                    VALUES (%s, %s, NOW())
                    ON CONFLICT (key)
                    DO UPDATE SET record = EXCLUDED.record, updated_at = NOW()
                    """,
                    (key, Jsonb(record)),
                )
                conn.commit()
        except psycopg.Error as exc:
            raise StoreError(f"Failed to persist {key}: {exc}") from exc

    def load(self, key: str) -> Any | None:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        "SELECT record FROM queue_checkpoints WHERE key = %s",
                        (key,),
                    )
                    row = cur.fetchone()
        except psycopg.Error as exc:
            raise StoreError(f"Failed to load {key}: {exc}") from exc

        if row is None:
            return None
        return row[0]

    def delete(self, key: str) -> None:
        try:
            with get_connection() as conn:
                conn.execute("DELETE FROM queue_checkpoints WHERE key = %s", (key,))
                conn.commit()
        except psycopg.Error as exc:
            raise StoreError(f"Failed to delete {key}: {exc}") from exc

    def keys(self, prefix: str = "") -> list[str]:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        """
                        SELECT key FROM queue_checkpoints
                        WHERE starts_with(key, %s)
                        ORDER BY key
                        """,
                        (prefix,),
                    )
                    rows = cur.fetchall()
        except psycopg.Error as exc:
            raise StoreError(f"Failed to list keys: {exc}") from exc
        return [row[0] for row in rows]
