"""Wall-clock and tick sources."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

MIN_VALID_YEAR = 2020


def monotonic_ms() -> int:
    """Milliseconds from a monotonic source, for deadlines and cadence."""
    return time.monotonic_ns() // 1_000_000


class SystemClock:
    """Host clock with an adjustable offset.

    The time is "valid" only when it reports a plausible year, which
    filters out boards and containers that boot at the epoch.
    """

    def __init__(self, min_valid_year: int = MIN_VALID_YEAR) -> None:
        self._min_valid_year = min_valid_year
        self._offset = timedelta()

    def now(self) -> datetime:
        return datetime.now() + self._offset

    def is_valid(self) -> bool:
        return self.now().year >= self._min_valid_year

    def set(self, when: datetime) -> None:
        """Make ``now()`` report ``when`` from this moment on."""
        self._offset = when - datetime.now()
        logger.info("Clock set to %s", when.isoformat(timespec="seconds"))
