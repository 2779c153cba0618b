"""Resolver that can answer every AAAA query with an empty reply."""

from __future__ import annotations

import dns.message
import dns.rcode
import dns.rdatatype

from sinkhole.resolver import ChainedResolver, Request, Response, ResponseType, resolver_name


class IPv6Checker(ChainedResolver):
    """Drops AAAA queries (empty answer, NOERROR) when disabled, else delegates."""

    def __init__(self, disable_aaaa: bool = False) -> None:
        super().__init__()
        self.disable_aaaa = disable_aaaa

    def resolve(self, request: Request) -> Response:
        if self.disable_aaaa and request.question.rdtype == dns.rdatatype.AAAA:
            response = dns.message.make_response(request.req)
            response.set_rcode(dns.rcode.NOERROR)
            return Response(res=response, rtype=ResponseType.RESOLVED)

        if self.next_resolver is None:
            raise RuntimeError(f"{resolver_name(self)} has no next resolver")
        return self.next_resolver.resolve(request)

    def configuration(self) -> list[str]:
        return ["drop AAAA" if self.disable_aaaa else "accept AAAA"]