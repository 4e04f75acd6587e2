"""codecache: instrumented code cache.

Caches code instrumented under a versioned schedule, deduplicates raw code
by content hash with reference counting, and re-instruments lazily on load
when the schedule has moved on.
"""

__version__ = "0.1.0"

from codecache.core.code_cache import CodeCache
from codecache.core.errors import (
    CodeCacheError,
    CodeNotFound,
    InstrumentationFailed,
    RefcountOverflow,
)
from codecache.core.instrumentor import Instrumentor, PrepareError
from codecache.models import CachedCode, PrefabModule, Schedule

__all__ = [
    "CodeCache",
    "CodeCacheError",
    "CodeNotFound",
    "InstrumentationFailed",
    "RefcountOverflow",
    "Instrumentor",
    "PrepareError",
    "CachedCode",
    "PrefabModule",
    "Schedule",
    "__version__",
]
