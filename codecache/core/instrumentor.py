"""Instrumentor contract — turns raw code into execution-ready code.

The instrumentation algorithm itself lives outside this package. The cache
only needs something that satisfies ``Instrumentor`` and reports classified
failures through ``PrepareError``.
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol, runtime_checkable

from codecache.models.schedule import Schedule


class PrepareErrorKind(str, Enum):
    """Classification of an instrumentation failure."""

    INVALID_MODULE = "invalid_module"
    LIMIT_EXCEEDED = "limit_exceeded"
    OTHER = "other"


class PrepareError(RuntimeError):
    """Raised by an instrumentor that rejects code under a schedule."""

    def __init__(
        self,
        detail: str,
        kind: PrepareErrorKind | str = PrepareErrorKind.OTHER,
    ) -> None:
        self.detail = detail
        self.kind = PrepareErrorKind(kind)
        super().__init__(f"{self.kind.value}: {detail}")


@runtime_checkable
class Instrumentor(Protocol):
    """Pure, fallible transform from raw code to instrumented code."""

    def instrument(self, original_code: bytes, schedule: Schedule) -> bytes:
        """Instrument *original_code* under *schedule*.

        Raises
        ------
        PrepareError
            If the code is invalid or exceeds a limit of the schedule.
        """
        ...

