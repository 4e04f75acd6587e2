"""codecache data models — all Pydantic v2, all frozen (immutable)."""

from codecache.models.code import MAX_REFCOUNT, CachedCode, PrefabModule
from codecache.models.schedule import Schedule

__all__ = [
    # schedule
    "Schedule",
    # code
    "MAX_REFCOUNT",
    "CachedCode",
    "PrefabModule",
]
