"""Tests for storage backends — pristine/cached contracts and transactions."""

from __future__ import annotations

import pytest

from codecache.core.errors import CodeNotFound, RefcountOverflow
from codecache.core.sqlite_storage import SqliteStorage
from codecache.core.storage import (
    CachedCodeStore,
    CodeStorage,
    InMemoryStorage,
    PristineCodeStore,
)
from codecache.models.code import MAX_REFCOUNT, CachedCode

HASH = "ef" * 32


def _record(version: int = 1, refcount: int = 1, body: bytes = b"inst") -> CachedCode:
    return CachedCode(instrumented=body, schedule_version=version, refcount=refcount)


class TestProtocols:
    def test_backends_satisfy_contracts(self, storage):
        assert isinstance(storage, CodeStorage)
        assert isinstance(storage.pristine, PristineCodeStore)
        assert isinstance(storage.cached, CachedCodeStore)


class TestPristineStore:
    def test_put_and_get(self, storage):
        storage.pristine.put(HASH, b"raw")
        assert storage.pristine.get(HASH) == b"raw"

    def test_get_absent(self, storage):
        assert storage.pristine.get(HASH) is None

    def test_put_is_write_once(self, storage):
        storage.pristine.put(HASH, b"first")
        storage.pristine.put(HASH, b"second")
        assert storage.pristine.get(HASH) == b"first"


class TestCachedStore:
    def test_upsert_inserts(self, storage):
        stored = storage.cached.upsert(HASH, _record())
        assert stored == _record()
        assert storage.cached.get(HASH) == _record()

    def test_upsert_increments_and_keeps_artifact(self, storage):
        storage.cached.upsert(HASH, _record(version=1, body=b"old"))
        stored = storage.cached.upsert(HASH, _record(version=9, body=b"new"))
        assert stored == _record(version=1, refcount=2, body=b"old")
        assert storage.cached.get(HASH) == stored

    def test_upsert_overflow(self, storage):
        storage.cached.upsert(HASH, _record(refcount=MAX_REFCOUNT))
        with pytest.raises(RefcountOverflow):
            storage.cached.upsert(HASH, _record())
        assert storage.cached.get(HASH).refcount == MAX_REFCOUNT

    def test_replace_overwrites(self, storage):
        storage.cached.upsert(HASH, _record(version=1, refcount=4))
        storage.cached.replace(HASH, _record(version=2, refcount=4, body=b"fresh"))
        assert storage.cached.get(HASH) == _record(version=2, refcount=4, body=b"fresh")

    def test_replace_never_creates(self, storage):
        with pytest.raises(CodeNotFound):
            storage.cached.replace(HASH, _record())
        assert storage.cached.get(HASH) is None

    def test_code_hashes_sorted(self, storage):
        for h in ("cc" * 32, "aa" * 32, "bb" * 32):
            storage.cached.upsert(h, _record())
        assert storage.cached.code_hashes() == ["aa" * 32, "bb" * 32, "cc" * 32]


class TestTransactions:
    def test_commit(self, storage):
        with storage.transaction():
            storage.pristine.put(HASH, b"raw")
            storage.cached.upsert(HASH, _record())
        assert storage.pristine.get(HASH) == b"raw"
        assert storage.cached.get(HASH) == _record()

    def test_rollback_restores_both_stores(self, storage):
        storage.cached.upsert(HASH, _record())
        with pytest.raises(ValueError):
            with storage.transaction():
                storage.pristine.put("01" * 32, b"raw")
                storage.cached.upsert(HASH, _record())
                storage.cached.upsert("01" * 32, _record())
                raise ValueError("abort")
        assert storage.pristine.get("01" * 32) is None
        assert storage.cached.get("01" * 32) is None
        assert storage.cached.get(HASH).refcount == 1

    def test_nested_blocks_join_outer(self, storage):
        with pytest.raises(ValueError):
            with storage.transaction():
                with storage.transaction():
                    storage.cached.upsert(HASH, _record())
                assert storage.cached.get(HASH) is not None
                raise ValueError("outer abort")
        assert storage.cached.get(HASH) is None

    def test_usable_after_rollback(self, storage):
        with pytest.raises(ValueError):
            with storage.transaction():
                raise ValueError("abort")
        with storage.transaction():
            storage.cached.upsert(HASH, _record())
        assert storage.cached.get(HASH) is not None


class TestSqliteStorage:
    def test_persists_across_reopen(self, tmp_path):
        db = tmp_path / "code.db"
        with SqliteStorage(db) as storage:
            storage.pristine.put(HASH, b"raw")
            storage.cached.upsert(HASH, _record(refcount=3))
        with SqliteStorage(db) as reopened:
            assert reopened.pristine.get(HASH) == b"raw"
            assert reopened.cached.get(HASH) == _record(refcount=3)

    def test_creates_parent_directories(self, tmp_path):
        db = tmp_path / "nested" / "dir" / "code.db"
        with SqliteStorage(db):
            pass
        assert db.exists()

    def test_stats(self, sqlite_storage):
        sqlite_storage.pristine.put(HASH, b"raw")
        sqlite_storage.cached.upsert(HASH, _record(refcount=2))
        sqlite_storage.cached.upsert("aa" * 32, _record())
        assert sqlite_storage.stats() == {
            "pristine": 1,
            "cached": 2,
            "references": 3,
        }

    def test_closed_storage_raises(self, tmp_path):
        storage = SqliteStorage(tmp_path / "code.db")
        storage.close()
        with pytest.raises(RuntimeError, match="closed"):
            storage.cached.get(HASH)


class TestInMemoryStorage:
    def test_repr_counts(self, memory_storage: InMemoryStorage):
        memory_storage.pristine.put(HASH, b"raw")
        assert repr(memory_storage) == "InMemoryStorage(pristine=1, cached=0)"


class TestNestedRollback:
    """An exception escaping an inner block undoes only that block's writes."""

    def test_caught_inner_failure_keeps_outer_writes(self, storage):
        with storage.transaction():
            storage.cached.upsert(HASH, _record())
            with pytest.raises(ValueError):
                with storage.transaction():
                    storage.pristine.put("01" * 32, b"raw")
                    storage.cached.upsert(HASH, _record())
                    raise ValueError("inner abort")
            storage.pristine.put("02" * 32, b"after")

        assert storage.cached.get(HASH).refcount == 1
        assert storage.pristine.get("01" * 32) is None
        assert storage.pristine.get("02" * 32) == b"after"

    def test_sibling_blocks_after_inner_rollback(self, storage):
        with storage.transaction():
            with pytest.raises(ValueError):
                with storage.transaction():
                    storage.cached.upsert(HASH, _record())
                    raise ValueError("inner abort")
            with storage.transaction():
                storage.cached.upsert("aa" * 32, _record())

        assert storage.cached.code_hashes() == ["aa" * 32]


class TestReadOnlySqlite:
    def test_reads_existing_database(self, tmp_path):
        db = tmp_path / "code.db"
        with SqliteStorage(db) as storage:
            storage.cached.upsert(HASH, _record(refcount=2))
        with SqliteStorage(db, read_only=True) as reader:
            assert reader.read_only is True
            assert reader.cached.get(HASH) == _record(refcount=2)

    def test_rejects_writes(self, tmp_path):
        import sqlite3

        db = tmp_path / "code.db"
        SqliteStorage(db).close()
        with SqliteStorage(db, read_only=True) as reader:
            with pytest.raises(sqlite3.OperationalError):
                reader.pristine.put(HASH, b"raw")
