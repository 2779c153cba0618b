"""Resolver writing query information to daily CSV files or to the log."""

from __future__ import annotations

import csv
import logging
import os
import queue
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import dns.rcode

from sinkhole.resolver import ChainedResolver, Request, Response, resolver_name
from sinkhole.util import answer_to_string, question_to_string

CLEAN_UP_RUN_PERIOD = 12 * 60 * 60
LOG_QUEUE_CAPACITY = 1000

_ESCAPE = re.compile(r"[^a-zA-Z0-9_-]+")

_log = logging.getLogger("sinkhole.query_logging")


def escape(name: str) -> str:
    """Replace every run of characters unsafe for file names by an underscore."""
    return _ESCAPE.sub("_", name)


def create_query_log_row(
    request: Request, response: Response, start: datetime, duration_ms: int
) -> list[str]:
    """Return the CSV fields logged for one query."""
    return [
        start.strftime("%Y-%m-%d %H:%M:%S"),
        "" if request.client_ip is None else str(request.client_ip),
        "; ".join(request.client_names),
        str(duration_ms),
        response.reason,
        question_to_string(request.req.question),
        answer_to_string(response.res.answer),
        dns.rcode.to_text(response.res.rcode()),
    ]


@dataclass
class _LogEntry:
    request: Request
    response: Response
    start: datetime
    duration_ms: int


class QueryLoggingResolver(ChainedResolver):
    """Logs question, answer and duration of every successful query.

    Entries go to ``<date>_<client>.log`` files in ``log_dir`` or, if no
    directory is configured, to the request's logger.
    """

    def __init__(
        self,
        log_dir: str = "",
        per_client: bool = False,
        log_retention_days: int = 0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        super().__init__()
        if log_dir and not os.path.exists(log_dir):
            raise FileNotFoundError(
                f"query log directory '{log_dir}' does not exist or is not writable"
            )

        self.log_dir = log_dir
        self.per_client = per_client
        self.log_retention_days = log_retention_days
        self._clock = clock
        self._queue: queue.Queue = queue.Queue(maxsize=LOG_QUEUE_CAPACITY)
        self._lock = threading.Lock()
        self._closed = False
        self._stop = threading.Event()

        self._writer = threading.Thread(
            target=self._write_log, name="query-log-writer", daemon=True
        )
        self._writer.start()

        self._cleaner: threading.Thread | None = None
        if log_retention_days > 0:
            self._cleaner = threading.Thread(
                target=self._periodic_clean_up, name="query-log-cleaner", daemon=True
            )
            self._cleaner.start()

    def _periodic_clean_up(self) -> None:
        while not self._stop.wait(CLEAN_UP_RUN_PERIOD):
            self.do_clean_up()

    def do_clean_up(self) -> None:
        """Delete log files whose date lies beyond the retention period."""
        _log.debug("starting clean up")
        try:
            names = os.listdir(self.log_dir)
        except OSError as exc:
            _log.error("can't list log directory %s: %s", self.log_dir, exc)
            return

        now = self._clock()
        for name in names:
            if not (name.endswith(".log") and len(name) > 10):
                continue
            try:
                day = datetime.strptime(name[:10], "%Y-%m-%d")
            except ValueError:
                continue
            difference_days = int((now - day).total_seconds() / 86400)
            if self.log_retention_days > 0 and difference_days > self.log_retention_days:
                _log.info(
                    "existing log file is older than retention time and will be deleted: "
                    "file=%s ageInDays=%d logRetentionDays=%d",
                    name,
                    difference_days,
                    self.log_retention_days,
                )
                try:
                    os.remove(os.path.join(self.log_dir, name))
                except OSError as exc:
                    _log.error("can't remove file %s: %s", name, exc)

    def resolve(self, request: Request) -> Response:
        if self.next_resolver is None:
            raise RuntimeError(f"{resolver_name(self)} has no next resolver")

        start = self._clock()
        started = time.monotonic()
        response = self.next_resolver.resolve(request)
        duration_ms = int((time.monotonic() - started) * 1000)

        with self._lock:
            if not self._closed:
                try:
                    self._queue.put_nowait(_LogEntry(request, response, start, duration_ms))
                except queue.Full:
                    request.log.error("query log writer is too slow, log entry will be dropped")
        return response

    def _write_log(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is None:
                    return
                self._write_entry(entry)
            except Exception:
                _log.exception("can't write query log entry")
            finally:
                self._queue.task_done()

    def _write_entry(self, entry: _LogEntry) -> None:
        logger = entry.request.log
        if not self.log_dir:
            logger.info(
                "query resolved: response_reason=%s response_code=%s answer=%s duration_ms=%d",
                entry.response.reason,
                dns.rcode.to_text(entry.response.res.rcode()),
                answer_to_string(entry.response.res.answer),
                entry.duration_ms,
            )
            return

        started = time.monotonic()
        client_prefix = "-".join(entry.request.client_names) if self.per_client else "ALL"
        file_name = f"{entry.start.strftime('%Y-%m-%d')}_{escape(client_prefix)}.log"
        write_path = os.path.join(self.log_dir, file_name)

        try:
            with open(write_path, "a", newline="", encoding="utf-8") as file:
                writer = csv.writer(file, delimiter="\t", lineterminator="\n")
                writer.writerow(
                    create_query_log_row(
                        entry.request, entry.response, entry.start, entry.duration_ms
                    )
                )
        except OSError as exc:
            logger.error("can't write to file %s: %s", write_path, exc)

        pending = self._queue.qsize()
        if pending > LOG_QUEUE_CAPACITY // 2:
            logger.warning(
                "query log writer is too slow, write duration: %d ms (channel_len=%d)",
                int((time.monotonic() - started) * 1000),
                pending,
            )

    def flush(self) -> None:
        """Block until every queued entry has been written."""
        self._queue.join()

    def close(self) -> None:
        """Write pending entries and stop the background threads."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._stop.set()
        self._queue.put(None)
        self._writer.join()
        if self._cleaner is not None:
            self._cleaner.join()

    def __enter__(self) -> QueryLoggingResolver:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def configuration(self) -> list[str]:
        if not self.log_dir:
            return ["deactivated"]
        result = [
            f'logDir= "{self.log_dir}"',
            f"perClient = {str(self.per_client).lower()}",
            f"logRetentionDays= {self.log_retention_days}",
        ]
        if self.log_retention_days == 0:
            result.append("log cleanup deactivated")
        return result