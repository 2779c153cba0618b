"""A local UDP DNS server answering with a user-supplied function, for testing."""

from __future__ import annotations

import socket
import threading
from collections.abc import Callable

import dns.message

from sinkhole.upstream import NET_TCP_UDP, Upstream

Handler = Callable[[dns.message.Message], "dns.message.Message | None"]


class MockUDPUpstream:
    """Serves DNS over UDP on localhost; a handler returning None yields garbage."""

    def __init__(self, handler: Handler, host: str = "127.0.0.1") -> None:
        self.handler = handler
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.bind((host, 0))
        self._sock.settimeout(0.05)
        self.host, self.port = self._sock.getsockname()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def upstream(self) -> Upstream:
        return Upstream(net=NET_TCP_UDP, host=self.host, port=self.port)

    def start(self) -> MockUDPUpstream:
        """Begin answering queries in a background thread."""
        if self._thread is None:
            self._thread = threading.Thread(target=self._serve, daemon=True)
            self._thread.start()
        return self

    def close(self) -> None:
        """Stop answering and release the socket."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._sock.close()

    def __enter__(self) -> MockUDPUpstream:
        return self.start()

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                data, addr = self._sock.recvfrom(4096)
            except (TimeoutError, socket.timeout):
                continue
            except OSError:
                return
            try:
                msg = dns.message.from_wire(data)
            except Exception:
                continue
            answer = self.handler(msg)
            if answer is None:
                self._sock.sendto(b"dummy", addr)
                continue
            reply = dns.message.make_response(msg)
            reply.answer = list(answer.answer)
            reply.authority = list(answer.authority)
            reply.set_rcode(answer.rcode())
            try:
                self._sock.sendto(reply.to_wire(), addr)
            except OSError:
                return