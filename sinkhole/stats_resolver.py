"""Resolver collecting 24-hour query statistics, printable on demand."""

from __future__ import annotations

import logging
import queue
import signal
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TextIO

import dns.rcode
import dns.rdatatype

from sinkhole.resolver import (
    ChainedResolver,
    Request,
    Response,
    ResponseType,
    resolver_name,
)
from sinkhole.stats import DEFAULT_MAX_COUNT, Aggregator
from sinkhole.util import extract_domain, iterate_value_sorted

_QUEUE_SIZE = 20

_log = logging.getLogger("sinkhole.stats_resolver")


@dataclass
class _Recorder:
    aggregator: Aggregator
    key: Callable[[Request, Response], str]

    def record(self, request: Request, response: Response) -> None:
        self.aggregator.put(self.key(request, response))


def _blocked_domain(request: Request, response: Response) -> str:
    if response.rtype == ResponseType.BLOCKED:
        return extract_domain(request.question)
    return ""


def _create_recorders(clock: Callable[[], datetime]) -> list[_Recorder]:
    def recorder(name, key, max_count=DEFAULT_MAX_COUNT):
        return _Recorder(Aggregator(name, max_count, clock), key)

    return [
        recorder("Top 20 queries", lambda req, _: extract_domain(req.question), 20),
        recorder("Top 20 blocked queries", _blocked_domain, 20),
        recorder("Query count per client", lambda req, _: ",".join(req.client_names)),
        recorder("Reason", lambda _, res: res.reason),
        recorder("Query type", lambda req, _: dns.rdatatype.to_text(req.question.rdtype)),
        recorder("Response type", lambda _, res: dns.rcode.to_text(res.res.rcode())),
    ]


def _render_table(title: str, rows: Iterable[tuple[str, int]]) -> list[str]:
    cells = [(f"{key:>50}", str(value)) for key, value in rows]
    if not cells:
        width = len(title)
        return [
            "┌" + "─" * (width + 2) + "┐",
            f"│ {title} │",
            "└" + "─" * (width + 2) + "┘",
        ]

    key_width = max(len(key) for key, _ in cells)
    value_width = max(len(value) for _, value in cells)
    width = key_width + value_width + 3
    if len(title) > width:
        key_width += len(title) - width
        width = len(title)

    lines = [
        "┌" + "─" * (width + 2) + "┐",
        f"│ {title:<{width}} │",
        "├" + "─" * (key_width + 2) + "┬" + "─" * (value_width + 2) + "┤",
    ]
    lines.extend(f"│ {key:<{key_width}} │ {value:>{value_width}} │" for key, value in cells)
    lines.append("└" + "─" * (key_width + 2) + "┴" + "─" * (value_width + 2) + "┘")
    return lines


class StatsResolver(ChainedResolver):
    """Passes requests on and counts successful ones in background aggregators."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        super().__init__()
        self.recorders = _create_recorders(clock)
        self._queue: queue.Queue = queue.Queue(maxsize=_QUEUE_SIZE)
        self._lock = threading.Lock()
        self._closed = False
        self._worker = threading.Thread(
            target=self._collect_stats, name="stats-resolver", daemon=True
        )
        self._worker.start()
        register_stats_trigger(self)

    def _collect_stats(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    return
                request, response = item
                for recorder in self.recorders:
                    recorder.record(request, response)
            finally:
                self._queue.task_done()

    def resolve(self, request: Request) -> Response:
        if self.next_resolver is None:
            raise RuntimeError(f"{resolver_name(self)} has no next resolver")

        response = self.next_resolver.resolve(request)
        with self._lock:
            if not self._closed:
                self._queue.put((request, response))
        return response

    def configuration(self) -> list[str]:
        return ["stats:", *(f" - {rec.aggregator.name}" for rec in self.recorders)]

    def print_stats(self, stream: TextIO | None = None) -> None:
        """Write one table per statistic to ``stream``, or to the log if none is given."""
        lines = ["******* STATS 24h *******"]
        for recorder in self.recorders:
            result = recorder.aggregator.aggregate_result()
            lines.extend(_render_table(recorder.aggregator.name, iterate_value_sorted(result)))

        if stream is None:
            for line in lines:
                _log.info(line)
        else:
            stream.write("\n".join(lines) + "\n")

    def close(self) -> None:
        """Process all pending entries and stop the collecting thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)
        self._worker.join()

    def __enter__(self) -> StatsResolver:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def register_stats_trigger(resolver: StatsResolver) -> bool:
    """Print statistics on SIGUSR2; returns False where that cannot be arranged."""
    sigusr2 = getattr(signal, "SIGUSR2", None)
    if sigusr2 is None or threading.current_thread() is not threading.main_thread():
        return False
    signal.signal(sigusr2, lambda signum, frame: resolver.print_stats())
    return True