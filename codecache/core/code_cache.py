"""Instrumented code cache.

- Running code requires it to be instrumented under a schedule that supplies
  exact cost values. Instrumented code is cached together with the schedule
  version it was produced under.
- Before code runs, ``load`` compares the cached version with the current
  schedule's. On a match the cached artifact is returned; otherwise the raw
  code is re-instrumented with the current schedule and the cache entry is
  overwritten.
- Schedule versions strictly increase on update, so after an update no
  cached artifact can match the current version by accident.

Identical code registered by many owners is stored once; its record carries
a refcount incremented by every ``store``.
"""

from __future__ import annotations

import logging
from typing import ContextManager

from codecache.core.errors import CodeNotFound, InstrumentationFailed
from codecache.core.instrumentor import Instrumentor, PrepareError, PrepareErrorKind
from codecache.core.storage import CodeStorage
from codecache.models.code import CachedCode, PrefabModule
from codecache.models.schedule import Schedule

logger = logging.getLogger(__name__)


class CodeCache:
    """Stores and loads instrumented code, keeping it fresh per schedule.

    The cache is the only writer to *storage*. All writes happen inside
    ``storage.transaction()``, so they commit or roll back with the
    caller's enclosing transaction when one is open.

    Parameters
    ----------
    storage:
        Backend holding pristine code and cached instrumented code.
    instrumentor:
        Used to re-instrument stale code on ``load``.
    """

    def __init__(self, storage: CodeStorage, instrumentor: Instrumentor) -> None:
        self._storage = storage
        self._instrumentor = instrumentor

    @property
    def storage(self) -> CodeStorage:
        return self._storage

    def transaction(self) -> ContextManager[None]:
        """Open a transaction scoping several cache calls as one unit."""
        return self._storage.transaction()

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(self, module: PrefabModule) -> str:
        """Put the instrumented module in storage and return its code hash.

        Raw code is written to the pristine store if the module carries it.
        If a record already exists under the hash its refcount is
        incremented and its artifact left untouched; the module's own
        artifact is discarded. Never instruments.

        Raises
        ------
        RefcountOverflow
            If the existing refcount is already at its maximum.
        """
        code_hash, original_code, record = module.split()
        with self._storage.transaction():
            if original_code is not None:
                self._storage.pristine.put(code_hash, original_code)
            stored = self._storage.cached.upsert(code_hash, record)
        logger.debug(
            "CodeCache.store: %s at schedule v%d (refcount=%d).",
            code_hash,
            stored.schedule_version,
            stored.refcount,
        )
        return code_hash

    def prepare_and_store_unchecked(
        self, original_code: bytes, schedule: Schedule
    ) -> str:
        """Register code without validating or instrumenting it.

        The raw bytes are stored as their own artifact, tagged with the
        schedule's version. Meant for benchmarking code paths where
        instrumentation overhead would distort measurements.
        """
        module = PrefabModule.from_original(
            original_code, original_code, schedule.version
        )
        return self.store(module)

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self, code_hash: str, schedule: Schedule) -> PrefabModule:
        """Load code with the given hash, instrumented under *schedule*.

        If the cached artifact was instrumented under a lower schedule
        version, the raw code is re-instrumented and the cache entry
        replaced, keeping its refcount. If instrumentation fails nothing is
        written and the stale artifact is not returned.

        Raises
        ------
        CodeNotFound
            If *code_hash* is not cached, or its raw code is missing.
        InstrumentationFailed
            If the instrumentor rejects the code under *schedule* or
            fails while instrumenting it.
        """
        record = self._storage.cached.get(code_hash)
        if record is None:
            raise CodeNotFound(code_hash, store="cache")

        if record.schedule_version < schedule.version:
            record = self._reinstrument(code_hash, record, schedule)
        elif record.schedule_version > schedule.version:
            # Only reachable if schedule versions went backwards.
            logger.warning(
                "CodeCache.load: %s cached at schedule v%d, newer than "
                "requested v%d; serving cached artifact.",
                code_hash,
                record.schedule_version,
                schedule.version,
            )
        else:
            logger.debug(
                "CodeCache.load: hit for %s at schedule v%d.",
                code_hash,
                schedule.version,
            )

        return record.into_module(code_hash)

    def _reinstrument(
        self, code_hash: str, stale: CachedCode, schedule: Schedule
    ) -> CachedCode:
        original_code = self._storage.pristine.get(code_hash)
        if original_code is None:
            raise CodeNotFound(code_hash, store="pristine")

        try:
            instrumented = self._instrumentor.instrument(original_code, schedule)
        except PrepareError as exc:
            raise self._failure(code_hash, schedule, exc.kind, exc.detail) from exc
        except Exception as exc:
            raise self._failure(
                code_hash,
                schedule,
                PrepareErrorKind.OTHER,
                f"{type(exc).__name__}: {exc}",
            ) from exc

        fresh = CachedCode(
            instrumented=instrumented,
            schedule_version=schedule.version,
            refcount=stale.refcount,
        )
        with self._storage.transaction():
            self._storage.cached.replace(code_hash, fresh)
        logger.info(
            "CodeCache.load: re-instrumented %s from schedule v%d to v%d.",
            code_hash,
            stale.schedule_version,
            schedule.version,
        )
        return fresh

    @staticmethod
    def _failure(
        code_hash: str,
        schedule: Schedule,
        kind: PrepareErrorKind,
        detail: str,
    ) -> InstrumentationFailed:
        logger.warning(
            "CodeCache.load: re-instrumentation of %s under schedule v%d "
            "failed (%s): %s",
            code_hash,
            schedule.version,
            kind.value,
            detail,
        )
        return InstrumentationFailed(code_hash, schedule.version, kind.value, detail)
