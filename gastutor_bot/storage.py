"""Synchronous key-value storage backing the entitlement state."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

SCHEMA_VERSION = 1

ACTIVATION_DATE_KEY = "student-activation-date"
ACTIVATION_CODE_KEY = "student-activation-code"
PURCHASE_DATE_KEY = "pro-purchase-date"


class StorageError(RuntimeError):
    """Raised when the durable store cannot be read or written."""


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class NamespacedStorage:
    """Prefix every key so many users can share one backing store."""

    def __init__(self, inner: KeyValueStorage, namespace: str) -> None:
        self._inner = inner
        self._prefix = f"{namespace}:"

    def get(self, key: str) -> Optional[str]:
        return self._inner.get(self._prefix + key)

    def set(self, key: str, value: str) -> None:
        self._inner.set(self._prefix + key, value)

    def delete(self, key: str) -> None:
        self._inner.delete(self._prefix + key)


class SqliteStorage:
    """SQLite-backed store surviving process restarts."""

    def __init__(self, db_path: Union[Path, str]) -> None:
        target = str(db_path)
        try:
            if target != ":memory:":
                Path(target).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(target)
            self._apply_migrations()
        except (sqlite3.Error, OSError) as exc:
            raise StorageError(f"Could not open storage at {target}: {exc}") from exc

    def _apply_migrations(self) -> None:
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise StorageError(f"Storage schema version {current} is newer than supported {SCHEMA_VERSION}.")
        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                with self._conn:
                    self._conn.execute("""
                        CREATE TABLE IF NOT EXISTS kv (
                            key TEXT PRIMARY KEY,
                            value TEXT NOT NULL,
                            updated_at TEXT NOT NULL
                        )
                        """)
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")

    def get(self, key: str) -> Optional[str]:
        try:
            row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not read {key}: {exc}") from exc
        if row is None:
            return None
        return str(row[0])

    def set(self, key: str, value: str) -> None:
        now = datetime.now(UTC).isoformat()
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, now),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Could not write {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with self._conn:
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise StorageError(f"Could not delete {key}: {exc}") from exc

    def close(self) -> None:
        self._conn.close()
