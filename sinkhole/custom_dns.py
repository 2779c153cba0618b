"""Resolver answering from a fixed host-to-IP mapping, including reverse lookups."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable, Iterator, Mapping

import dns.message
import dns.name
import dns.rcode
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.reversename
import dns.rrset

from sinkhole.resolver import (
    ChainedResolver,
    Request,
    Response,
    ResponseType,
    resolver_name,
)
from sinkhole.util import answer_to_string, create_answer_from_question, extract_domain

CUSTOM_DNS_TTL = 60 * 60
_REASON = "CUSTOM DNS"

_log = logging.getLogger("sinkhole.custom_dns")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _normalize(ip) -> IPAddress:
    address = ipaddress.ip_address(str(ip))
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else name + "."


def _is_supported_type(ip: IPAddress, rdtype) -> bool:
    return (ip.version == 4 and rdtype == dns.rdatatype.A) or (
        ip.version == 6 and rdtype == dns.rdatatype.AAAA
    )


def _domain_and_parents(domain: str) -> Iterator[str]:
    while domain:
        yield domain
        _, dot, rest = domain.partition(".")
        if not dot:
            return
        domain = rest


class CustomDNSResolver(ChainedResolver):
    """Resolves names to the IP addresses given in a domain-to-IP mapping."""

    def __init__(self, mapping: Mapping[str, Iterable] | None = None) -> None:
        super().__init__()
        self._mapping: dict[str, list[IPAddress]] = {}
        self._reverse: dict[str, list[str]] = {}

        for url, ips in (mapping or {}).items():
            addresses = [_normalize(ip) for ip in ips]
            self._mapping[url.lower()] = addresses
            for address in addresses:
                key = dns.reversename.from_address(str(address)).to_text()
                self._reverse.setdefault(key, []).append(url)

    def configuration(self) -> list[str]:
        if not self._mapping:
            return ["deactivated"]
        return [
            f'{key} = "[{" ".join(str(ip) for ip in ips)}]"'
            for key, ips in self._mapping.items()
        ]

    def _handle_reverse_dns(self, request: Request) -> Response | None:
        question = request.question
        if question.rdtype != dns.rdatatype.PTR:
            return None

        urls = self._reverse.get(question.name.to_text())
        if not urls:
            return None

        response = dns.message.make_response(request.req)
        for url in urls:
            rdata = dns.rdata.from_text(
                dns.rdataclass.IN, dns.rdatatype.PTR, _fqdn(url), origin=dns.name.root
            )
            response.answer.append(dns.rrset.from_rdata(question.name, CUSTOM_DNS_TTL, rdata))

        return Response(res=response, reason=_REASON, rtype=ResponseType.CUSTOMDNS)

    def resolve(self, request: Request) -> Response:
        reverse_response = self._handle_reverse_dns(request)
        if reverse_response is not None:
            return reverse_response

        if self._mapping:
            question = request.question
            for domain in _domain_and_parents(extract_domain(question)):
                ips = self._mapping.get(domain)
                if ips is None:
                    continue

                response = dns.message.make_response(request.req)
                response.answer.extend(
                    create_answer_from_question(question, ip, CUSTOM_DNS_TTL)
                    for ip in ips
                    if _is_supported_type(ip, question.rdtype)
                )

                if response.answer:
                    request.log.debug(
                        "returning custom dns entry: domain=%s answer=%s",
                        domain,
                        answer_to_string(response.answer),
                    )
                else:
                    response.set_rcode(dns.rcode.NXDOMAIN)

                return Response(res=response, reason=_REASON, rtype=ResponseType.CUSTOMDNS)

        if self.next_resolver is None:
            raise RuntimeError(f"{resolver_name(self)} has no next resolver")
        request.log.debug("go to next resolver: %s", resolver_name(self.next_resolver))
        return self.next_resolver.resolve(request)