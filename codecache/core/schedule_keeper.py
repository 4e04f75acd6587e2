"""Schedule keeper — installs schedules under the monotonic version rule.

Every new schedule must carry a strictly greater version than the one it
replaces. This guarantees a cached artifact's version is never equal to the
current one unless it was instrumented under the current schedule.
"""

from __future__ import annotations

import logging

from codecache.core.errors import ScheduleVersionError
from codecache.models.schedule import Schedule

logger = logging.getLogger(__name__)


class ScheduleKeeper:
    """Holds the current schedule and guards its version on update."""

    def __init__(self, initial: Schedule | None = None) -> None:
        self._current = initial or Schedule(version=0)

    @property
    def current(self) -> Schedule:
        """Return the installed schedule."""
        return self._current

    def install(self, schedule: Schedule) -> Schedule:
        """Install *schedule* as current.

        Raises ScheduleVersionError unless its version is strictly greater
        than the installed one.
        """
        if schedule.version <= self._current.version:
            raise ScheduleVersionError(
                f"Schedule version must increase: "
                f"current={self._current.version}, new={schedule.version}"
            )
        logger.info(
            "ScheduleKeeper: schedule v%d -> v%d.",
            self._current.version,
            schedule.version,
        )
        self._current = schedule
        return schedule

    def check_fresh(self, schedule_version: int) -> bool:
        """Whether an artifact tagged *schedule_version* is current."""
        return schedule_version == self._current.version
