"""
Key/value stores backing cached request results.
"""

from __future__ import annotations

import json
import os
import sqlite3
import typing as t
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)

CACHE_PATH_ENV_VAR = "ODATAPIPE_CACHE_PATH"
StoreName = t.Literal["local", "session"]


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class CacheStore(t.Protocol):
    """
    Minimal store interface consumed by the caching stage and parser wrapper.
    """

    def get(self, key: str) -> t.Any | None: ...

    def put(self, key: str, value: t.Any, expiration: datetime | None = None) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass(frozen=True)
class CacheEntry:
    """
    Stored value with its absolute expiration.

    Parameters
    ----------
    value : typing.Any
        Cached value.
    expiration : datetime | None
        Expiration instant; ``None`` never expires.
    """

    value: t.Any
    expiration: datetime | None

    def is_expired(self, *, now: datetime | None = None) -> bool:
        if self.expiration is None:
            return False
        return self.expiration <= (now or utcnow())


class MemoryStore:
    """
    In-process store scoped to the lifetime of the interpreter.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> t.Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired():
            log.debug(event="Dropping expired cache entry", key=key, store="session")
            del self._entries[key]
            return None
        return entry.value

    def put(self, key: str, value: t.Any, expiration: datetime | None = None) -> None:
        self._entries[key] = CacheEntry(value=value, expiration=expiration)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def delete_expired(self) -> int:
        now = utcnow()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now=now)]
        for key in expired:
            del self._entries[key]
        return len(expired)


def resolve_cache_path(*, path: Path | None = None) -> Path:
    """
    Resolve the SQLite cache database path.

    Parameters
    ----------
    path : Path | None, optional
        Explicit cache file path.

    Returns
    -------
    Path
        Resolved SQLite file path.
    """
    if path is not None:
        return path

    env_path = os.getenv(CACHE_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser().resolve()

    return (Path.home() / ".cache" / "odatapipe" / "cache.sqlite3").expanduser().resolve()


class SqliteStore:
    """
    SQLite-backed persistent store.

    Values are stored JSON-encoded, so only JSON-serializable results can be
    cached here. Parsers whose results are richer than plain JSON should
    expose a ``hydrate`` hook.
    """

    def __init__(self, *, path: Path | None = None) -> None:
        """
        Initialize the store and create its schema if needed.

        Parameters
        ----------
        path : Path | None, optional
            Optional explicit cache file path.
        """
        self._path = resolve_cache_path(path=path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(self._path.as_posix())
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS odata_cache (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expiration REAL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_odata_cache_expiration
                ON odata_cache (expiration)
                """
            )
            connection.commit()

    def get(self, key: str) -> t.Any | None:
        """
        Load one value by key.

        Parameters
        ----------
        key : str
            Cache key.

        Returns
        -------
        typing.Any | None
            Decoded value, or ``None`` when missing or expired.
        """
        with self._connect() as connection:
            row = connection.execute(
                "SELECT value, expiration FROM odata_cache WHERE key = ?",
                (key,),
            ).fetchone()

        if row is None:
            return None

        entry = CacheEntry(
            value=json.loads(s=row["value"]),
            expiration=(
                datetime.fromtimestamp(row["expiration"], tz=timezone.utc)
                if row["expiration"] is not None
                else None
            ),
        )
        if entry.is_expired():
            log.debug(event="Dropping expired cache entry", key=key, store="local")
            self.delete(key)
            return None
        return entry.value

    def put(self, key: str, value: t.Any, expiration: datetime | None = None) -> None:
        """
        Insert or replace one value.

        Parameters
        ----------
        key : str
            Cache key.
        value : typing.Any
            JSON-serializable value.
        expiration : datetime | None, optional
            Absolute expiration; ``None`` never expires.
        """
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO odata_cache (key, value, expiration) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    expiration=excluded.expiration
                """,
                (
                    key,
                    json.dumps(obj=value),
                    expiration.timestamp() if expiration is not None else None,
                ),
            )
            connection.commit()

    def delete(self, key: str) -> None:
        with self._connect() as connection:
            connection.execute("DELETE FROM odata_cache WHERE key = ?", (key,))
            connection.commit()

    def delete_expired(self) -> int:
        """
        Delete every expired row.

        Returns
        -------
        int
            Number of deleted rows.
        """
        with self._connect() as connection:
            cursor = connection.execute(
                "DELETE FROM odata_cache WHERE expiration IS NOT NULL AND expiration <= ?",
                (utcnow().timestamp(),),
            )
            deleted_count = cursor.rowcount if cursor.rowcount is not None else 0
            connection.commit()
        return deleted_count


class ClientStorage:
    """
    Pair of ``local`` (persistent) and ``session`` (in-memory) stores.

    Parameters
    ----------
    local : CacheStore | None, optional
        Persistent store. Built lazily as a ``SqliteStore`` when omitted.
    session : CacheStore | None, optional
        In-memory store. A fresh ``MemoryStore`` when omitted.
    local_enabled : bool, optional
        When ``False``, ``get_store("local")`` resolves to ``None``.
    session_enabled : bool, optional
        When ``False``, ``get_store("session")`` resolves to ``None``.
    cache_path : Path | None, optional
        Database path for the lazily built local store.
    """

    def __init__(
        self,
        *,
        local: CacheStore | None = None,
        session: CacheStore | None = None,
        local_enabled: bool = True,
        session_enabled: bool = True,
        cache_path: Path | None = None,
    ) -> None:
        self._local = local
        self._session: CacheStore = session if session is not None else MemoryStore()
        self._local_enabled = local_enabled
        self._session_enabled = session_enabled
        self._cache_path = cache_path

    @property
    def local(self) -> CacheStore | None:
        if not self._local_enabled:
            return None
        if self._local is None:
            try:
                self._local = SqliteStore(path=self._cache_path)
            except (OSError, sqlite3.Error) as error:
                log.warning(
                    event="Local cache store unavailable",
                    cache_path=str(object=self._cache_path),
                    error=str(object=error),
                )
                self._local_enabled = False
                return None
        return self._local

    @property
    def session(self) -> CacheStore | None:
        return self._session if self._session_enabled else None

    def get_store(self, name: StoreName) -> CacheStore | None:
        return self.local if name == "local" else self.session
