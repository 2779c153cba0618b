"""Resolver that forwards queries to an external DNS server (UDP/TCP, TLS or HTTPS)."""

from __future__ import annotations

import ipaddress
import logging
import socket
import time
from dataclasses import dataclass

import dns.exception
import dns.message
import dns.query
import dns.rcode
import httpx

from sinkhole.resolver import ChainedResolver, Request, RequestProtocol, Response
from sinkhole.util import answer_to_string

NET_TCP_UDP = "tcp+udp"
NET_TCP_TLS = "tcp-tls"
NET_HTTPS = "https"

DEFAULT_TIMEOUT = 2.0
DNS_CONTENT_TYPE = "application/dns-message"
_ATTEMPTS = 3

_log = logging.getLogger("sinkhole.upstream")

_TIMEOUTS = (dns.exception.Timeout, httpx.TimeoutException, TimeoutError)


class UpstreamError(Exception):
    """Raised when an upstream server cannot answer a query."""


@dataclass(frozen=True)
class Upstream:
    """Address of an external DNS server."""

    net: str = NET_TCP_UDP
    host: str = ""
    port: int = 53
    path: str = ""


def _join_host_port(host: str, port: int) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


class UpstreamResolver(ChainedResolver):
    """Sends requests to one external DNS server, retrying on timeouts."""

    def __init__(self, upstream: Upstream, timeout: float = DEFAULT_TIMEOUT) -> None:
        super().__init__()
        self.upstream = upstream
        self.net = upstream.net
        self.timeout = timeout
        if upstream.net == NET_HTTPS:
            self.upstream_url = (
                f"{upstream.net}://{upstream.host}:{upstream.port}{upstream.path}"
            )
            self._http: httpx.Client | None = httpx.Client(timeout=timeout)
        else:
            self.upstream_url = _join_host_port(upstream.host, upstream.port)
            self._http = None

    def __str__(self) -> str:
        return f"upstream '{self.net}:{self.upstream_url}'"

    def configuration(self) -> list[str]:
        return []

    def _address(self) -> str:
        host = self.upstream.host
        try:
            return str(ipaddress.ip_address(host))
        except ValueError:
            return socket.gethostbyname(host)

    def _call_https(self, msg: dns.message.Message) -> dns.message.Message:
        try:
            raw = msg.to_wire()
        except Exception as exc:
            raise UpstreamError(f"can't pack message: {exc}") from exc

        assert self._http is not None
        try:
            http_response = self._http.post(
                self.upstream_url,
                content=raw,
                headers={"content-type": DNS_CONTENT_TYPE},
            )
        except httpx.TimeoutException:
            raise
        except httpx.HTTPError as exc:
            raise UpstreamError(f"can't perform https request: {exc}") from exc

        if http_response.status_code != 200:
            raise UpstreamError(
                f"http return code should be 200, but received {http_response.status_code}"
            )
        content_type = http_response.headers.get("content-type", "")
        if content_type != DNS_CONTENT_TYPE:
            raise UpstreamError(
                f"http return content type should be '{DNS_CONTENT_TYPE}', "
                f"but was '{content_type}'"
            )
        try:
            return dns.message.from_wire(http_response.content)
        except Exception as exc:
            raise UpstreamError("can't unpack message") from exc

    def _call_dns(self, msg: dns.message.Message, protocol: RequestProtocol) -> dns.message.Message:
        address = self._address()
        port = self.upstream.port
        if self.net == NET_TCP_TLS:
            return dns.query.tls(msg, address, port=port, timeout=self.timeout)
        if protocol == RequestProtocol.TCP:
            try:
                return dns.query.tcp(msg, address, port=port, timeout=self.timeout)
            except ConnectionRefusedError:
                return dns.query.udp(msg, address, port=port, timeout=self.timeout)
        return dns.query.udp(msg, address, port=port, timeout=self.timeout)

    def _call_external(self, request: Request) -> dns.message.Message:
        if self.net == NET_HTTPS:
            return self._call_https(request.req)
        return self._call_dns(request.req, request.protocol)

    def resolve(self, request: Request) -> Response:
        last_error: Exception | None = None
        for attempt in range(1, _ATTEMPTS + 1):
            start = time.monotonic()
            try:
                response = self._call_external(request)
            except _TIMEOUTS as exc:
                request.log.debug(
                    "Temporary network error / Timeout occurred, retrying... attempt=%d", attempt
                )
                last_error = exc
                continue
            except UpstreamError:
                raise
            except (dns.exception.DNSException, OSError, ValueError) as exc:
                raise UpstreamError(f"{self.upstream_url}: {exc}") from exc

            request.log.debug(
                "received response from upstream: answer=%s return_code=%s upstream=%s "
                "protocol=%s net=%s response_time_ms=%d",
                answer_to_string(response.answer),
                dns.rcode.to_text(response.rcode()),
                self.upstream_url,
                request.protocol,
                self.net,
                int((time.monotonic() - start) * 1000),
            )
            return Response(res=response, reason=f"RESOLVED ({self.upstream_url})")

        raise UpstreamError(f"read {self.upstream_url}: i/o timeout") from last_error