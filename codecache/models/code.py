"""Instrumented code records — the stored form and the in-transit handle.

``CachedCode`` is what lives in storage under a code hash. It never carries
the hash itself; the key is implicit. ``PrefabModule`` is the handle passed
to and returned from the cache, and is the only type that holds the key.
Conversion between the two happens in ``PrefabModule.split()`` and
``CachedCode.into_module()`` and nowhere else.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from codecache.core.errors import RefcountOverflow
from codecache.core.hasher import code_hash as compute_code_hash

# Upper bound of a SQLite INTEGER column.
MAX_REFCOUNT = 2**63 - 1


class CachedCode(BaseModel):
    """An instrumented artifact as stored in the code cache."""

    model_config = ConfigDict(frozen=True)

    instrumented: bytes
    schedule_version: int = Field(ge=0)
    refcount: int = Field(default=1, ge=1, le=MAX_REFCOUNT)

    def incremented(self) -> CachedCode:
        """Return a copy with one more owner.

        Raises
        ------
        RefcountOverflow
            If the refcount is already at ``MAX_REFCOUNT``. Reference counts
            are bounded by storage accounting long before this, so reaching
            it means that accounting is broken.
        """
        if self.refcount >= MAX_REFCOUNT:
            raise RefcountOverflow(
                f"refcount would exceed {MAX_REFCOUNT}"
            )
        return self.model_copy(update={"refcount": self.refcount + 1})

    def into_module(self, code_hash: str) -> PrefabModule:
        """Attach *code_hash* to produce a handle for the caller."""
        return PrefabModule(
            code_hash=code_hash,
            instrumented=self.instrumented,
            schedule_version=self.schedule_version,
            refcount=self.refcount,
        )


class PrefabModule(BaseModel):
    """Instrumented code in transit to or from the cache.

    ``original_code`` is set only when the module is registered for the
    first time from freshly submitted code; modules returned by ``load``
    never carry it.
    """

    model_config = ConfigDict(frozen=True)

    code_hash: str
    instrumented: bytes
    schedule_version: int = Field(ge=0)
    refcount: int = Field(default=1, ge=1, le=MAX_REFCOUNT)
    original_code: bytes | None = None

    @classmethod
    def from_original(
        cls,
        original_code: bytes,
        instrumented: bytes,
        schedule_version: int,
    ) -> PrefabModule:
        """Build a first-time registration handle, hashing *original_code*."""
        return cls(
            code_hash=compute_code_hash(original_code),
            instrumented=instrumented,
            schedule_version=schedule_version,
            original_code=original_code,
        )

    def split(self) -> tuple[str, bytes | None, CachedCode]:
        """Separate the storage key and raw bytes from the stored record."""
        record = CachedCode(
            instrumented=self.instrumented,
            schedule_version=self.schedule_version,
            refcount=self.refcount,
        )
        return self.code_hash, self.original_code, record
