"""Resolver sending queries for configured domains to dedicated upstream servers."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence

import dns.name
import dns.rrset

from sinkhole.parallel_best import UPSTREAM_DEFAULT_CFG_NAME, ParallelBestResolver
from sinkhole.resolver import (
    ChainedResolver,
    Request,
    Resolver,
    Response,
    ResponseType,
    resolver_name,
)
from sinkhole.upstream import Upstream
from sinkhole.util import answer_to_string, extract_domain

_REASON = "CONDITIONAL"

_log = logging.getLogger("sinkhole.conditional")


def _fqdn(name: str) -> str:
    return name if name.endswith(".") else name + "."


def _domain_and_parents(domain: str) -> Iterator[str]:
    while domain:
        yield domain
        _, dot, rest = domain.partition(".")
        if not dot:
            return
        domain = rest


def _question_with_name(question: dns.rrset.RRset, name: dns.name.Name) -> dns.rrset.RRset:
    return dns.rrset.RRset(name, question.rdclass, question.rdtype)


class ConditionalUpstreamResolver(ChainedResolver):
    """Delegates a query to another resolver depending on the domain in question."""

    def __init__(
        self,
        mapping: Mapping[str, Sequence[Upstream | Resolver]] | None = None,
        rewrite: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__()
        self._mapping: dict[str, Resolver] = {
            domain.lower(): ParallelBestResolver({UPSTREAM_DEFAULT_CFG_NAME: list(upstreams)})
            for domain, upstreams in (mapping or {}).items()
        }
        self._rewrite: dict[str, str] = {
            key.lower(): value.lower() for key, value in (rewrite or {}).items()
        }

    def configuration(self) -> list[str]:
        if not self._mapping:
            return ["deactivated"]
        result = [f'{key} = "{value}"' for key, value in self._mapping.items()]
        result.append("rewrite:")
        result.extend(f'{key} = "{value}"' for key, value in self._rewrite.items())
        return result

    def _apply_rewrite(self, domain: str) -> str:
        for key, value in self._rewrite.items():
            suffix = "." + key
            if domain.endswith(suffix):
                return domain[: -len(suffix)] + "." + value
        return domain

    def resolve(self, request: Request) -> Response:
        if self._mapping:
            question = request.question
            domain_from_question = self._apply_rewrite(extract_domain(question))

            for domain in _domain_and_parents(domain_from_question):
                upstream = self._mapping.get(domain)
                if upstream is None:
                    continue

                request.req.question[0] = _question_with_name(
                    question, dns.name.from_text(_fqdn(domain_from_question))
                )
                response = upstream.resolve(request)

                response.reason = _REASON
                response.rtype = ResponseType.CONDITIONAL
                if response.res.question:
                    response.res.question[0] = _question_with_name(question, question.name)

                request.log.debug(
                    "received response from conditional upstream: answer=%s domain=%s upstream=%s",
                    answer_to_string(response.res.answer),
                    domain,
                    upstream,
                )
                return response

        if self.next_resolver is None:
            raise RuntimeError(f"{resolver_name(self)} has no next resolver")
        request.log.debug("go to next resolver: %s", resolver_name(self.next_resolver))
        return self.next_resolver.resolve(request)