"""SQLite-backed ``CodeStorage`` — persistent, transactional.

Design:
- One connection in autocommit mode; ``transaction()`` opens an explicit
  ``BEGIN IMMEDIATE`` at the outermost level and commits or rolls back on
  exit. Nested blocks are savepoints: an exception escaping one undoes
  only its own writes.
- ``pristine_code`` is write-once: ``INSERT OR IGNORE``.
- ``code_storage`` refcount increments are read-modify-write inside a
  transaction, so they are atomic with the caller's other writes.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from codecache.core.errors import CodeNotFound
from codecache.core.storage import CodeStorage, InMemoryStorage
from codecache.models.code import CachedCode

if TYPE_CHECKING:
    from codecache.config import CodeCacheConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_PRISTINE = """
CREATE TABLE IF NOT EXISTS pristine_code (
    code_hash   TEXT PRIMARY KEY,
    code        BLOB NOT NULL
);
"""

_CREATE_CODE_STORAGE = """
CREATE TABLE IF NOT EXISTS code_storage (
    code_hash        TEXT PRIMARY KEY,
    instrumented     BLOB NOT NULL,
    schedule_version INTEGER NOT NULL,
    refcount         INTEGER NOT NULL
);
"""


class _SqlitePristineStore:
    def __init__(self, owner: SqliteStorage) -> None:
        self._owner = owner

    def put(self, code_hash: str, code: bytes) -> None:
        self._owner.conn.execute(
            "INSERT OR IGNORE INTO pristine_code (code_hash, code) VALUES (?, ?)",
            (code_hash, code),
        )

    def get(self, code_hash: str) -> bytes | None:
        row = self._owner.conn.execute(
            "SELECT code FROM pristine_code WHERE code_hash = ?",
            (code_hash,),
        ).fetchone()
        return bytes(row[0]) if row else None


class _SqliteCachedStore:
    def __init__(self, owner: SqliteStorage) -> None:
        self._owner = owner

    def get(self, code_hash: str) -> CachedCode | None:
        row = self._owner.conn.execute(
            "SELECT instrumented, schedule_version, refcount "
            "FROM code_storage WHERE code_hash = ?",
            (code_hash,),
        ).fetchone()
        return self._row_to_record(row) if row else None

    def upsert(self, code_hash: str, record: CachedCode) -> CachedCode:
        with self._owner.transaction():
            existing = self.get(code_hash)
            if existing is None:
                self._owner.conn.execute(
                    "INSERT INTO code_storage "
                    "(code_hash, instrumented, schedule_version, refcount) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        code_hash,
                        record.instrumented,
                        record.schedule_version,
                        record.refcount,
                    ),
                )
                return record

            stored = existing.incremented()
            self._owner.conn.execute(
                "UPDATE code_storage SET refcount = ? WHERE code_hash = ?",
                (stored.refcount, code_hash),
            )
            return stored

    def replace(self, code_hash: str, record: CachedCode) -> None:
        cursor = self._owner.conn.execute(
            "UPDATE code_storage "
            "SET instrumented = ?, schedule_version = ?, refcount = ? "
            "WHERE code_hash = ?",
            (
                record.instrumented,
                record.schedule_version,
                record.refcount,
                code_hash,
            ),
        )
        if cursor.rowcount == 0:
            raise CodeNotFound(code_hash, store="cache")

    def code_hashes(self) -> list[str]:
        rows = self._owner.conn.execute(
            "SELECT code_hash FROM code_storage ORDER BY code_hash"
        ).fetchall()
        return [row[0] for row in rows]

    @staticmethod
    def _row_to_record(row: tuple[Any, ...]) -> CachedCode:
        instrumented, schedule_version, refcount = row
        return CachedCode(
            instrumented=bytes(instrumented),
            schedule_version=schedule_version,
            refcount=refcount,
        )


class SqliteStorage:
    """Persistent ``CodeStorage`` in a single SQLite database file.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    read_only:
        Open an existing database without creating, migrating or writing
        it. Any write raises ``sqlite3.OperationalError``.
    """

    def __init__(self, db_path: Path, *, read_only: bool = False) -> None:
        self._db_path = Path(db_path)
        self._read_only = read_only
        if read_only:
            self._conn: sqlite3.Connection | None = sqlite3.connect(
                f"{self._db_path.resolve().as_uri()}?mode=ro",
                uri=True,
                isolation_level=None,
            )
        else:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        self._depth = 0
        self._pristine = _SqlitePristineStore(self)
        self._cached = _SqliteCachedStore(self)
        if not read_only:
            self._init_schema()
        logger.info(
            "SqliteStorage: opened code cache at %s%s.",
            self._db_path,
            " (read-only)" if read_only else "",
        )

    def _init_schema(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute(_CREATE_PRISTINE)
        self.conn.execute(_CREATE_CODE_STORAGE)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"SqliteStorage at {self._db_path} is closed")
        return self._conn

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def read_only(self) -> bool:
        return self._read_only

    @property
    def pristine(self) -> _SqlitePristineStore:
        return self._pristine

    @property
    def cached(self) -> _SqliteCachedStore:
        return self._cached

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._depth:
            savepoint = f"sp_{self._depth}"
            self.conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield
            except BaseException:
                self.conn.execute(f"ROLLBACK TO {savepoint}")
                self.conn.execute(f"RELEASE {savepoint}")
                logger.debug("SqliteStorage: rolled back to %s.", savepoint)
                raise
            else:
                self.conn.execute(f"RELEASE {savepoint}")
            finally:
                self._depth -= 1
            return

        self.conn.execute("BEGIN IMMEDIATE")
        self._depth = 1
        try:
            yield
        except BaseException:
            self.conn.execute("ROLLBACK")
            logger.debug("SqliteStorage: transaction rolled back.")
            raise
        else:
            self.conn.execute("COMMIT")
        finally:
            self._depth = 0

    def stats(self) -> dict[str, int]:
        """Entry counts and the sum of refcounts, for inspection."""
        pristine = self.conn.execute("SELECT COUNT(*) FROM pristine_code").fetchone()[0]
        cached, refs = self.conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(refcount), 0) FROM code_storage"
        ).fetchone()
        return {"pristine": pristine, "cached": cached, "references": refs}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> SqliteStorage:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SqliteStorage(db_path={str(self._db_path)!r})"


def open_storage(cfg: CodeCacheConfig) -> CodeStorage:
    """Build the storage backend selected by *cfg*."""
    if cfg.backend == "sqlite":
        return SqliteStorage(cfg.db_path)
    return InMemoryStorage()
