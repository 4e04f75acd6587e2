"""Error taxonomy for the code cache.

``CodeNotFound`` and ``InstrumentationFailed`` are ordinary errors surfaced
to the caller unchanged; the caller decides whether to abort its enclosing
transaction. ``RefcountOverflow`` is an assertion failure and deliberately
sits outside the ``CodeCacheError`` hierarchy.
"""

from __future__ import annotations


class CodeCacheError(RuntimeError):
    """Base class for recoverable code cache errors."""


class CodeNotFound(CodeCacheError):
    """Raised when a code hash is absent from the cache or pristine store.

    Attributes
    ----------
    code_hash:
        The hash that was looked up.
    store:
        ``"cache"`` for the instrumented code cache, ``"pristine"`` for the
        raw code store.
    """

    def __init__(self, code_hash: str, store: str = "cache") -> None:
        self.code_hash = code_hash
        self.store = store
        super().__init__(f"Code not found in {store} store: {code_hash}")


class InstrumentationFailed(CodeCacheError):
    """Raised when re-instrumenting cached code under a new schedule fails.

    The instrumentor's diagnostic is carried in ``detail`` without
    interpretation; the original ``PrepareError`` is the ``__cause__``.
    """

    def __init__(
        self,
        code_hash: str,
        schedule_version: int,
        kind: str,
        detail: str,
    ) -> None:
        self.code_hash = code_hash
        self.schedule_version = schedule_version
        self.kind = kind
        self.detail = detail
        super().__init__(
            f"Instrumentation of {code_hash} under schedule v{schedule_version} "
            f"failed ({kind}): {detail}"
        )


class ScheduleVersionError(CodeCacheError):
    """Raised when a schedule is installed without a strictly greater version."""


class RefcountOverflow(AssertionError):
    """A refcount increment would exceed the representable range.

    Never expected in correct operation: the number of references is bounded
    by external resource accounting.
    """
