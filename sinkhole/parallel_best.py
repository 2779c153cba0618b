"""Resolver asking two weighted-random upstreams at once and taking the first answer."""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from sinkhole.resolver import Request, Resolver, Response
from sinkhole.upstream import Upstream, UpstreamError, UpstreamResolver
from sinkhole.util import answer_to_string, cidr_contains_ip, client_name_matches_group_name

UPSTREAM_DEFAULT_CFG_NAME = "default"
UPSTREAM_DEFAULT_CFG_NAME_DEPRECATED = "externalResolvers"

_log = logging.getLogger("sinkhole.parallel_best")


@dataclass(eq=False)
class UpstreamStatus:
    """An upstream resolver and the time of its last failure."""

    resolver: Resolver
    last_error_time: float = 0.0


class ParallelBestResolver(Resolver):
    """Delegates to two upstreams in parallel and returns the fastest success."""

    def __init__(self, upstream_resolvers: Mapping[str, Sequence[Upstream | Resolver]]) -> None:
        self.resolvers_per_client: dict[str, list[UpstreamStatus]] = {}
        for name, items in upstream_resolvers.items():
            statuses = [
                UpstreamStatus(item if isinstance(item, Resolver) else UpstreamResolver(item))
                for item in items
            ]
            if (
                UPSTREAM_DEFAULT_CFG_NAME not in upstream_resolvers
                and name == UPSTREAM_DEFAULT_CFG_NAME_DEPRECATED
            ):
                _log.warning(
                    "using deprecated '%s' as default upstream resolver configuration name, "
                    "please consider to change it to '%s'",
                    UPSTREAM_DEFAULT_CFG_NAME_DEPRECATED,
                    UPSTREAM_DEFAULT_CFG_NAME,
                )
                name = UPSTREAM_DEFAULT_CFG_NAME
            self.resolvers_per_client[name] = statuses

        if not self.resolvers_per_client.get(UPSTREAM_DEFAULT_CFG_NAME):
            raise ValueError(
                "no external DNS resolvers configured as default upstream resolvers. "
                f"Please configure at least one under '{UPSTREAM_DEFAULT_CFG_NAME}' "
                "configuration name"
            )

    def configuration(self) -> list[str]:
        result = ["upstream resolvers:"]
        for name, statuses in self.resolvers_per_client.items():
            result.append(f"- {name}")
            result.extend(f"  - {status.resolver}" for status in statuses)
        return result

    def __str__(self) -> str:
        parts = [
            f"{name} ({','.join(str(s.resolver) for s in statuses)})"
            for name, statuses in self.resolvers_per_client.items()
        ]
        return f"parallel upstreams '{'; '.join(parts)}'"

    def resolvers_for_client(self, request: Request) -> list[UpstreamStatus]:
        """Return the upstreams matching the client's names, IP or CIDR, else the default."""
        result: list[UpstreamStatus] = []
        for client_name in request.client_names:
            for definition, statuses in self.resolvers_per_client.items():
                if client_name_matches_group_name(definition, client_name):
                    result.extend(statuses)

        if request.client_ip is not None:
            result.extend(self.resolvers_per_client.get(str(request.client_ip), []))
            for cidr, statuses in self.resolvers_per_client.items():
                if cidr_contains_ip(cidr, request.client_ip):
                    result.extend(statuses)

        return result or self.resolvers_per_client[UPSTREAM_DEFAULT_CFG_NAME]

    def resolve(self, request: Request) -> Response:
        statuses = self.resolvers_for_client(request)
        if len(statuses) == 1:
            request.log.debug("delegating to resolver %s", statuses[0].resolver)
            return statuses[0].resolver.resolve(request)

        first, second = pick_random(statuses)
        request.log.debug("using %s and %s as resolver", first.resolver, second.resolver)

        results: queue.Queue = queue.Queue()
        for status in (first, second):
            threading.Thread(
                target=_resolve_one, args=(request, status, results), daemon=True
            ).start()

        errors: list[Exception] = []
        while len(errors) < 2:
            response, error = results.get()
            if error is not None:
                request.log.debug("resolution failed from resolver, cause: %s", error)
                errors.append(error)
            else:
                request.log.debug(
                    "using response from resolver: answer=%s",
                    answer_to_string(response.res.answer),
                )
                return response

        raise UpstreamError(
            "resolution was not successful, used resolvers: "
            f"'{first.resolver}' and '{second.resolver}' errors: {[str(e) for e in errors]}"
        )


def _resolve_one(request: Request, status: UpstreamStatus, results: queue.Queue) -> None:
    try:
        response = status.resolver.resolve(request)
    except Exception as exc:
        status.last_error_time = time.time()
        results.put((None, exc))
    else:
        results.put((response, None))


def _weighted_random(
    statuses: Sequence[UpstreamStatus], exclude: Resolver | None
) -> UpstreamStatus:
    now = time.time()
    choices: list[UpstreamStatus] = []
    weights: list[int] = []
    for status in statuses:
        weight = 60.0
        since = now - status.last_error_time
        if since < 3600:
            weight = max(1.0, weight - (60 - since / 60))
        if status.resolver is not exclude:
            choices.append(status)
            weights.append(int(weight))
    if not choices:
        raise ValueError("no resolver left to choose from")
    return random.choices(choices, weights=weights)[0]


def pick_random(resolvers: Sequence[UpstreamStatus]) -> tuple[UpstreamStatus, UpstreamStatus]:
    """Pick two different upstreams, favouring those without recent errors."""
    first = _weighted_random(resolvers, None)
    second = _weighted_random(resolvers, first.resolver)
    return first, second