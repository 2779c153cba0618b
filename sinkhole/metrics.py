"""In-process counters and histograms, and a resolver that records them."""

from __future__ import annotations

import bisect
import math
import threading
import time
from collections.abc import Iterable, Mapping

import dns.rcode
import dns.rdatatype

from sinkhole.resolver import ChainedResolver, Request, Response, resolver_name

DURATION_BUCKETS = (5, 10, 20, 30, 50, 75, 100, 200, 500, 1000, 2000)


class Counter:
    """A monotonically increasing value."""

    def __init__(self, name: str = "", help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._value = 0.0
        self._lock = threading.Lock()

    def inc(self) -> None:
        """Add one to the counter."""
        with self._lock:
            self._value += 1

    @property
    def value(self) -> float:
        return self._value


class _LabelSet:
    def __init__(self, name: str, help_text: str, label_names: Iterable[str]) -> None:
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _key(self, labels: Mapping[str, object]) -> tuple[str, ...]:
        if set(labels) != set(self.label_names):
            raise ValueError(
                f"{self.name}: expected labels {sorted(self.label_names)}, got {sorted(labels)}"
            )
        return tuple(str(labels[name]) for name in self.label_names)


class LabeledCounter(_LabelSet):
    """A family of counters, one per combination of label values."""

    def __init__(self, name: str, help_text: str, label_names: Iterable[str]) -> None:
        super().__init__(name, help_text, label_names)
        self._children: dict[tuple[str, ...], Counter] = {}

    def labels(self, **kwargs) -> Counter:
        """Return the counter for the given label values, creating it on first use."""
        key = self._key(kwargs)
        with self._lock:
            counter = self._children.get(key)
            if counter is None:
                counter = self._children[key] = Counter(self.name, self.help_text)
            return counter

    def value(self, **kwargs) -> float:
        """Return the count for the given label values (0 if never incremented)."""
        counter = self._children.get(self._key(kwargs))
        return counter.value if counter is not None else 0.0


class LabeledHistogram(_LabelSet):
    """A family of bucketed histograms, one per combination of label values."""

    def __init__(
        self,
        name: str,
        help_text: str,
        label_names: Iterable[str],
        buckets: Iterable[float] = DURATION_BUCKETS,
    ) -> None:
        super().__init__(name, help_text, label_names)
        self.buckets = tuple(sorted(float(bound) for bound in buckets))
        self._children: dict[tuple[str, ...], list[int]] = {}

    def observe(self, value: float, **kwargs) -> None:
        """Record one observation for the given label values."""
        key = self._key(kwargs)
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            counts = self._children.setdefault(key, [0] * (len(self.buckets) + 1))
            counts[index] += 1

    def bucket_counts(self, **kwargs) -> dict[float, int]:
        """Return cumulative counts per upper bound, ending with +inf."""
        key = self._key(kwargs)
        with self._lock:
            counts = list(self._children.get(key, [0] * (len(self.buckets) + 1)))
        result: dict[float, int] = {}
        total = 0
        for bound, count in zip((*self.buckets, math.inf), counts):
            total += count
            result[bound] = total
        return result


class MetricsResolver(ChainedResolver):
    """Records counts and durations of requests passing through the chain."""

    def __init__(self, enable: bool = False, path: str = "") -> None:
        super().__init__()
        self.enable = enable
        self.path = path
        self.total_queries = LabeledCounter(
            "blocky_query_total", "Number of total queries", ("client", "type")
        )
        self.total_response = LabeledCounter(
            "blocky_response_total",
            "Number of total responses",
            ("reason", "response_code", "response_type"),
        )
        self.total_errors = Counter("blocky_error_total", "Number of total errors")
        self.duration_histogram = LabeledHistogram(
            "blocky_request_duration_ms",
            "Request duration distribution",
            ("response_type",),
            DURATION_BUCKETS,
        )

    def _count_query(self, request: Request) -> None:
        self.total_queries.labels(
            client=",".join(request.client_names),
            type=dns.rdatatype.to_text(request.question.rdtype),
        ).inc()

    def resolve(self, request: Request) -> Response:
        if self.next_resolver is None:
            raise RuntimeError(f"{resolver_name(self)} has no next resolver")

        try:
            response = self.next_resolver.resolve(request)
        except Exception:
            if self.enable:
                self._count_query(request)
                self.total_errors.inc()
            raise

        if self.enable:
            self._count_query(request)
            response_type = str(response.rtype)
            self.total_response.labels(
                reason=response.reason,
                response_code=dns.rcode.to_text(response.res.rcode()),
                response_type=response_type,
            ).inc()
            duration_ms = float(int((time.monotonic() - request.request_ts) * 1000))
            self.duration_histogram.observe(duration_ms, response_type=response_type)

        return response

    def configuration(self) -> list[str]:
        return [
            "metrics:",
            f"  Enable = {str(self.enable).lower()}",
            f"  Path   = {self.path}",
        ]