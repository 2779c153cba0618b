"""Request and response types and the resolver chain."""

from __future__ import annotations

import abc
import enum
import ipaddress
import logging
import time
from dataclasses import dataclass, field

import dns.message
import dns.rrset

from sinkhole.util import new_msg_with_question


class RequestProtocol(enum.IntEnum):
    """Transport the request arrived on."""

    TCP = 0
    UDP = 1

    def __str__(self) -> str:
        return self.name


class ResponseType(enum.IntEnum):
    """Which part of the chain produced a response."""

    RESOLVED = 0
    CACHED = 1
    BLOCKED = 2
    CONDITIONAL = 3
    CUSTOMDNS = 4

    def __str__(self) -> str:
        return self.name


def _default_logger() -> logging.Logger:
    return logging.getLogger("sinkhole")


@dataclass
class Request:
    """A client's DNS request."""

    req: dns.message.Message
    client_ip: ipaddress.IPv4Address | ipaddress.IPv6Address | None = None
    protocol: RequestProtocol = RequestProtocol.UDP
    client_names: list[str] = field(default_factory=list)
    log: logging.Logger | logging.LoggerAdapter = field(default_factory=_default_logger)
    request_ts: float = field(default_factory=time.monotonic)

    @property
    def question(self) -> dns.rrset.RRset:
        return self.req.question[0]


@dataclass
class Response:
    """The answer to a DNS request."""

    res: dns.message.Message
    reason: str = ""
    rtype: ResponseType = ResponseType.RESOLVED


class Resolver(abc.ABC):
    """Anything that can answer a request."""

    @abc.abstractmethod
    def resolve(self, request: Request) -> Response:
        """Resolve the request; raise on failure."""

    @abc.abstractmethod
    def configuration(self) -> list[str]:
        """Describe the current configuration, one line per item."""


class ChainedResolver(Resolver):
    """A resolver that may hand requests to ``next_resolver``."""

    def __init__(self) -> None:
        self.next_resolver: Resolver | None = None


def new_request(question: str, qtype, client_ip: str | None = None, *args: str) -> Request:
    """Build a UDP request for ``question``; extra arguments are client names."""
    address = ipaddress.ip_address(client_ip) if client_ip else None
    return Request(
        req=new_msg_with_question(question, qtype),
        client_ip=address,
        client_names=list(args),
        protocol=RequestProtocol.UDP,
    )


def chain(*args: Resolver) -> Resolver:
    """Link the given resolvers in order and return the first one."""
    if not args:
        raise ValueError("chain needs at least one resolver")
    for current, following in zip(args, args[1:]):
        if isinstance(current, ChainedResolver):
            current.next_resolver = following
    return args[0]


def resolver_name(resolver: Resolver) -> str:
    """Return a readable name for a resolver."""
    return type(resolver).__name__