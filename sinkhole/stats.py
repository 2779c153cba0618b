"""Hourly aggregation of counted keys over the last 24 hours."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from sinkhole.util import iterate_value_sorted

DEFAULT_MAX_COUNT = 50
HOURS = 24
_HOUR_FORMAT = "%Y%m%d%H"


def get_max_values(counts: dict[str, int], max_count: int) -> dict[str, int]:
    """Keep only the ``max_count`` entries with the highest counts."""
    if len(counts) <= max_count:
        return counts
    top = list(iterate_value_sorted(counts))[:max_count]
    return dict(top)


class Aggregator:
    """Counts keys per hour and sums the counts of the last 24 hours."""

    def __init__(
        self,
        name: str,
        max_count: int = DEFAULT_MAX_COUNT,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.name = name
        self.max_count = int(max_count)
        self._clock = clock
        self._hour_results: dict[str, dict[str, int]] = {}
        self._stage_data: dict[str, int] = {}
        self._current_hour = self._hour()
        self._lock = threading.Lock()

    def _hour(self) -> str:
        return self._clock().strftime(_HOUR_FORMAT)

    def _hour_switch(self) -> None:
        hour = self._hour()
        if hour == self._current_hour:
            return

        self._hour_results[self._current_hour] = get_max_values(
            self._stage_data, self.max_count * 2
        )

        limit = self._clock() - timedelta(hours=HOURS)
        for key in list(self._hour_results):
            if datetime.strptime(key, _HOUR_FORMAT) < limit:
                del self._hour_results[key]

        self._current_hour = hour
        self._stage_data = {}

    def put(self, key: str) -> None:
        """Count one occurrence of ``key``; blank keys are ignored."""
        key = key.strip()
        if not key:
            return
        with self._lock:
            self._hour_switch()
            self._stage_data[key] = self._stage_data.get(key, 0) + 1

    def aggregate_result(self) -> dict[str, int]:
        """Return the top counts summed over all completed hours."""
        with self._lock:
            self._hour_switch()
            result: dict[str, int] = {}
            for hour_values in self._hour_results.values():
                for key, value in hour_values.items():
                    result[key] = result.get(key, 0) + value
        return get_max_values(result, self.max_count)