"""Storage contracts for the code cache, plus the in-memory backend.

Two keyed stores share the code hash as key:

- the pristine code store: write-once raw code bytes;
- the cached code store: ``CachedCode`` records with a refcount.

A ``CodeStorage`` bundles both behind one ``transaction()`` so that a
registration touching both commits or rolls back as a unit. Only
``CodeCache`` mutates a ``CodeStorage``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import ContextManager, Protocol, runtime_checkable

from codecache.core.errors import CodeNotFound
from codecache.models.code import CachedCode

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


@runtime_checkable
class PristineCodeStore(Protocol):
    """Write-once mapping from code hash to raw code bytes."""

    def put(self, code_hash: str, code: bytes) -> None:
        """Store *code* under *code_hash*; no-op if the hash is present."""
        ...

    def get(self, code_hash: str) -> bytes | None:
        """Return the raw code for *code_hash*, or ``None``."""
        ...


@runtime_checkable
class CachedCodeStore(Protocol):
    """Mapping from code hash to a refcounted ``CachedCode`` record."""

    def get(self, code_hash: str) -> CachedCode | None:
        """Return the record for *code_hash*, or ``None``."""
        ...

    def upsert(self, code_hash: str, record: CachedCode) -> CachedCode:
        """Insert *record*, or increment the refcount of the existing one.

        An existing record keeps its artifact and schedule version. Returns
        the record as stored afterwards.
        """
        ...

    def replace(self, code_hash: str, record: CachedCode) -> None:
        """Overwrite an existing record.

        Raises
        ------
        CodeNotFound
            If no record exists under *code_hash*.
        """
        ...

    def code_hashes(self) -> list[str]:
        """Return all stored hashes, sorted."""
        ...


@runtime_checkable
class CodeStorage(Protocol):
    """Both stores plus a shared transaction scope."""

    @property
    def pristine(self) -> PristineCodeStore: ...

    @property
    def cached(self) -> CachedCodeStore: ...

    def transaction(self) -> ContextManager[None]:
        """Scope writes; the outermost block commits.

        An exception escaping any block undoes the writes made inside that
        block only; nested blocks behave as savepoints.
        """
        ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class _MemoryPristineStore:
    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}

    def put(self, code_hash: str, code: bytes) -> None:
        self.data.setdefault(code_hash, code)

    def get(self, code_hash: str) -> bytes | None:
        return self.data.get(code_hash)


class _MemoryCachedStore:
    def __init__(self) -> None:
        self.data: dict[str, CachedCode] = {}

    def get(self, code_hash: str) -> CachedCode | None:
        return self.data.get(code_hash)

    def upsert(self, code_hash: str, record: CachedCode) -> CachedCode:
        existing = self.data.get(code_hash)
        stored = record if existing is None else existing.incremented()
        self.data[code_hash] = stored
        return stored

    def replace(self, code_hash: str, record: CachedCode) -> None:
        if code_hash not in self.data:
            raise CodeNotFound(code_hash, store="cache")
        self.data[code_hash] = record

    def code_hashes(self) -> list[str]:
        return sorted(self.data)


class InMemoryStorage:
    """Dict-backed ``CodeStorage`` for tests and single-process use.

    Every transaction block, nested or not, snapshots both maps on entry and
    restores them if an exception escapes it. Records are frozen, so shallow
    copies are sufficient.
    """

    def __init__(self) -> None:
        self._pristine = _MemoryPristineStore()
        self._cached = _MemoryCachedStore()
        self._depth = 0

    @property
    def pristine(self) -> _MemoryPristineStore:
        return self._pristine

    @property
    def cached(self) -> _MemoryCachedStore:
        return self._cached

    @contextmanager
    def transaction(self) -> Iterator[None]:
        pristine_snapshot = dict(self._pristine.data)
        cached_snapshot = dict(self._cached.data)
        self._depth += 1
        try:
            yield
        except BaseException:
            self._pristine.data = pristine_snapshot
            self._cached.data = cached_snapshot
            logger.debug(
                "InMemoryStorage: rolled back transaction at depth %d.", self._depth
            )
            raise
        finally:
            self._depth -= 1

    def __repr__(self) -> str:
        return (
            f"InMemoryStorage(pristine={len(self._pristine.data)}, "
            f"cached={len(self._cached.data)})"
        )
