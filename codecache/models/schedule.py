"""Schedule model — the versioned ruleset code is instrumented under."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Schedule(BaseModel):
    """Cost and validation configuration used by the instrumentor.

    Only ``version`` is interpreted by the cache. Versions are strictly
    increasing across installations, so a cached artifact is either current
    or stale, never newer than the running schedule.
    """

    model_config = ConfigDict(frozen=True)

    version: int = Field(ge=0)
    instruction_weights: dict[str, int] = {}
    limits: dict[str, int] = {}
