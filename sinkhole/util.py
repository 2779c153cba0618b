"""Helpers for DNS messages, records, map ordering and client matching."""

from __future__ import annotations

import ipaddress
import logging
import re
from collections.abc import Iterable, Iterator, Mapping

import dns.message
import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rrset

VERSION = "undefined"
BUILD_TIME = "undefined"

_log = logging.getLogger("sinkhole.util")


def _record_strings(rrset: dns.rrset.RRset) -> Iterator[str]:
    for rdata in rrset:
        if rrset.rdtype == dns.rdatatype.A:
            yield f"A ({rdata.address})"
        elif rrset.rdtype == dns.rdatatype.AAAA:
            yield f"AAAA ({rdata.address})"
        elif rrset.rdtype == dns.rdatatype.CNAME:
            yield f"CNAME ({rdata.target})"
        elif rrset.rdtype == dns.rdatatype.PTR:
            yield f"PTR ({rdata.target})"
        else:
            yield "\t".join(
                (
                    str(rrset.name),
                    str(rrset.ttl),
                    dns.rdataclass.to_text(rrset.rdclass),
                    dns.rdatatype.to_text(rrset.rdtype),
                    rdata.to_text(),
                )
            )


def answer_to_string(answer: Iterable[dns.rrset.RRset]) -> str:
    """Return a readable, comma separated form of an answer section."""
    return ", ".join(text for rrset in answer for text in _record_strings(rrset))


def question_to_string(questions: Iterable[dns.rrset.RRset]) -> str:
    """Return a readable, comma separated form of a question section."""
    return ", ".join(
        f"{dns.rdatatype.to_text(question.rdtype)} ({question.name})"
        for question in questions
    )


def create_answer_from_question(
    question: dns.rrset.RRset, ip, remaining_ttl: int
) -> dns.rrset.RRset:
    """Build an answer record for the question pointing at ``ip``.

    Raises ValueError if ``ip`` is not an IP address or does not fit the type.
    """
    address = ipaddress.ip_address(str(ip))
    rdtype = question.rdtype

    if rdtype == dns.rdatatype.A:
        if address.version == 6:
            mapped = address.ipv4_mapped
            if mapped is None:
                raise ValueError(f"{address} is not an IPv4 address")
            address = mapped
        text = str(address)
    elif rdtype == dns.rdatatype.AAAA:
        text = f"::ffff:{address}" if address.version == 4 else str(address)
    else:
        _log.error(
            "Using fallback for unsupported query type %s",
            dns.rdatatype.to_text(rdtype),
        )
        text = str(address)

    rdata = dns.rdata.from_text(
        dns.rdataclass.IN, rdtype, text, origin=dns.name.root
    )
    return dns.rrset.from_rdata(question.name, remaining_ttl, rdata)


def extract_domain(question: dns.rrset.RRset) -> str:
    """Return the lower-case domain of a question without the trailing dot."""
    return extract_domain_only(question.name.to_text())


def extract_domain_only(name: str) -> str:
    """Lower-case ``name`` and strip one trailing dot."""
    return name.lower().removesuffix(".")


def new_msg_with_question(question: str, qtype) -> dns.message.Message:
    """Create a query message holding a single question."""
    return dns.message.make_query(question, qtype)


def new_msg_with_answer(domain: str, ttl: int, dns_type, address: str) -> dns.message.Message:
    """Create a message whose answer section holds one record.

    Raises a dns.exception.DNSException subclass for a malformed record.
    """
    rdtype = dns.rdatatype.RdataType.make(dns_type)
    rdata = dns.rdata.from_text(
        dns.rdataclass.IN, rdtype, address, origin=dns.name.root
    )
    rrset = dns.rrset.from_rdata(dns.name.from_text(domain), ttl, rdata)
    message = dns.message.Message()
    message.answer.append(rrset)
    return message


def iterate_value_sorted(mapping: Mapping[str, int]) -> Iterator[tuple[str, int]]:
    """Yield key/value pairs ordered by value, then key, both descending."""
    yield from sorted(mapping.items(), key=lambda kv: (kv[1], kv[0]), reverse=True)


def chunks(s: str, chunk_size: int) -> list[str]:
    """Split ``s`` into pieces of at most ``chunk_size`` characters."""
    if chunk_size >= len(s):
        return [s]
    return [s[start:start + chunk_size] for start in range(0, len(s), chunk_size)]


def generate_cache_key(qtype, qname: str) -> bytes:
    """Build a cache key from the query type and the lower-case name."""
    return int(qtype).to_bytes(2, "big") + qname.lower().encode()


def extract_cache_key(key: bytes) -> tuple[int, str]:
    """Split a cache key back into query type and name."""
    return int.from_bytes(key[:2], "big"), key[2:].decode()


def cidr_contains_ip(cidr: str, ip) -> bool:
    """Return True if ``ip`` lies in the network written as ``cidr``."""
    if ip is None or "/" not in cidr:
        return False
    try:
        network = ipaddress.ip_network(cidr, strict=False)
        address = ipaddress.ip_address(str(ip))
    except ValueError:
        return False
    if network.version != address.version:
        return False
    return address in network


class _BadPattern(ValueError):
    pass


def _class_char(pattern: str, pos: int) -> tuple[str, int]:
    if pos >= len(pattern) or pattern[pos] in "-]":
        raise _BadPattern(pattern)
    if pattern[pos] == "\\":
        pos += 1
        if pos >= len(pattern):
            raise _BadPattern(pattern)
    return pattern[pos], pos + 1


def _glob_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    pos = 0
    length = len(pattern)
    while pos < length:
        char = pattern[pos]
        pos += 1
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        elif char == "\\":
            if pos >= length:
                raise _BadPattern(pattern)
            parts.append(re.escape(pattern[pos]))
            pos += 1
        elif char == "[":
            negate = pos < length and pattern[pos] == "^"
            if negate:
                pos += 1
            items: list[str] = []
            seen = False
            while True:
                if pos >= length:
                    raise _BadPattern(pattern)
                if pattern[pos] == "]" and seen:
                    pos += 1
                    break
                low, pos = _class_char(pattern, pos)
                high = low
                if pos < length and pattern[pos] == "-":
                    high, pos = _class_char(pattern, pos + 1)
                seen = True
                if low <= high:
                    items.append(f"{re.escape(low)}-{re.escape(high)}")
            if items:
                parts.append("[" + ("^" if negate else "") + "".join(items) + "]")
            else:
                parts.append("." if negate else "(?!)")
        else:
            parts.append(re.escape(char))
    return re.compile("".join(parts), re.DOTALL)


def client_name_matches_group_name(group: str, client_name: str) -> bool:
    """Match a client name against a shell-style group pattern."""
    try:
        regex = _glob_regex(group)
    except _BadPattern:
        return False
    return regex.fullmatch(client_name) is not None