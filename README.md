# sinkhole

Building blocks for a small DNS proxy with ad-blocking in mind. A query
travels along a chain of resolvers; each one either answers it or hands it
on to the next.

## Modules

| Module | What it does |
| --- | --- |
| `sinkhole.resolver` | `Request`, `Response`, `RequestProtocol`, `ResponseType`, the `Resolver` / `ChainedResolver` base classes, `new_request`, `chain` and `resolver_name` |
| `sinkhole.ipv6_checker` | `IPv6Checker`: when disabled, answers every AAAA query with an empty NOERROR reply |
| `sinkhole.custom_dns` | `CustomDNSResolver`: answers A, AAAA and PTR queries from a fixed host-to-IP mapping, sub-domains included; a mapped name without an address of the asked type gets NXDOMAIN |
| `sinkhole.conditional` | `ConditionalUpstreamResolver`: sends queries for chosen domains (and their sub-domains) to their own upstreams, with optional suffix rewriting |
| `sinkhole.upstream` | `Upstream`, `UpstreamResolver`, `UpstreamError`: upstreams over `tcp+udp`, `tcp-tls` or `https`, with up to three attempts on timeouts |
| `sinkhole.parallel_best` | `ParallelBestResolver` and `pick_random`: asks two weighted-random upstreams at once and keeps the first good answer |
| `sinkhole.query_logging` | `QueryLoggingResolver`, `escape`, `create_query_log_row`: tab-separated daily log files, per client or for all, with retention clean-up |
| `sinkhole.stats` | `Aggregator` and `get_max_values`: hourly counts over the last 24 hours, trimmed to the top entries |
| `sinkhole.stats_resolver` | `StatsResolver` and `register_stats_trigger`: top queries, top blocked queries, queries per client, reasons, query and response types |
| `sinkhole.metrics` | `MetricsResolver` with `Counter`, `LabeledCounter` and `LabeledHistogram` |
| `sinkhole.mock_upstream` | `MockUDPUpstream`: a local UDP DNS server answering with a function you supply, for tests |
| `sinkhole.util` | helpers for printing questions and answers, building messages, cache keys, CIDR and client-name matching |

## Building a chain

`chain(*resolvers)` links the resolvers in the order given (setting
`next_resolver` on each `ChainedResolver`) and returns the first one.

```python
import dns.rdatatype

from sinkhole.custom_dns import CustomDNSResolver
from sinkhole.ipv6_checker import IPv6Checker
from sinkhole.parallel_best import ParallelBestResolver
from sinkhole.resolver import chain, new_request
from sinkhole.upstream import Upstream

resolver = chain(
    IPv6Checker(disable_aaaa=False),
    CustomDNSResolver({"printer.lan": ["192.168.178.55"]}),
    ParallelBestResolver({"default": [Upstream(host="192.0.2.1", port=53)]}),
)

response = resolver.resolve(new_request("printer.lan.", dns.rdatatype.A))
response.rtype    # ResponseType.CUSTOMDNS
response.reason   # "CUSTOM DNS"
```

Every resolver's `configuration()` returns a list of lines describing its
settings; a disabled custom, conditional or query-logging resolver returns
`["deactivated"]`. `resolver_name` gives a resolver's class name.

Failures are raised: upstream problems as `UpstreamError`, a
`ParallelBestResolver` without a `default` group (or the older name
`externalResolvers`) as `ValueError`, and a `QueryLoggingResolver` pointed at
a missing directory as `FileNotFoundError`.

## Upstreams

`ParallelBestResolver` groups upstreams by name. A request uses the groups
whose name matches one of its client names (shell-style wildcards such as
`client-*` or `client[0-9]`), its client IP, or a CIDR containing that IP;
otherwise the `default` group. With a single upstream the request goes
straight to it; otherwise two different upstreams are picked, weighted down
if they failed within the last hour.

## Query logging and statistics

`QueryLoggingResolver(log_dir, per_client, log_retention_days)` writes lines
into `<YYYY-MM-DD>_<client>.log` (or `_ALL.log`) from a background thread.
`flush()` waits for pending lines, `close()` stops the thread, and
`do_clean_up()` removes files older than the retention time.

`StatsResolver` counts successful queries in background `Aggregator`s;
`print_stats(stream)` writes one table per statistic, to the log if no stream
is given. Where the platform has it and the resolver is created in the main
thread, SIGUSR2 prints the statistics.

```python
from sinkhole.stats import Aggregator

top = Aggregator("Top 20 queries", 20)
top.put("example.com")
top.aggregate_result()   # counts move into the result once the hour changes
```

## Small helpers

```python
from sinkhole.util import chunks, cidr_contains_ip, client_name_matches_group_name, extract_domain_only

extract_domain_only("Google.DE.")                         # "google.de"
chunks("myveryveryverylongstring", 5)                     # ["myver", "yvery", "veryl", "ongst", "ring"]
cidr_contains_ip("10.43.8.67/28", "10.43.8.64")           # True
client_name_matches_group_name("group[1-3]", "group1")   # True
```

## What this package does not do

It has no listening server and no command: nothing here opens a DNS port
for clients, serves DNS-over-HTTPS or an HTTP API, or exposes the metrics
over HTTP. It also has no blocking or caching resolver. You call a
resolver's `resolve()` from your own code; the metrics are read from the
`MetricsResolver` objects directly.

## Installing

```
pip install .
pip install ".[test]"   # pytest and respx for the test suite
```