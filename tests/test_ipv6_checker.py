import dns.rcode
import dns.rdatatype
import pytest

from sinkhole.ipv6_checker import IPv6Checker
from sinkhole.resolver import Resolver, Response, ResponseType, new_request
from sinkhole.util import new_msg_with_answer


class _Next(Resolver):
    def __init__(self):
        self.calls = []
        answer = new_msg_with_answer(
            "example.com.", 1230, dns.rdatatype.AAAA, "2001:0db8:85a3:08d3:1319:8a2e:0370:7344"
        )
        self.response = Response(res=answer, reason="reason")

    def resolve(self, request):
        self.calls.append(request)
        return self.response

    def configuration(self):
        return []


def _checker(disable):
    checker = IPv6Checker(disable)
    nxt = _Next()
    checker.next_resolver = nxt
    return checker, nxt


def test_enabled_returns_answer():
    sut, nxt = _checker(False)

    resp = sut.resolve(new_request("example.com", dns.rdatatype.AAAA))

    assert resp.res.rcode() == dns.rcode.NOERROR
    assert len(resp.res.answer) == 1
    assert len(nxt.calls) == 1


def test_enabled_configuration():
    sut, _ = _checker(False)

    config = sut.configuration()

    assert len(config) == 1
    assert "accept" in config[0]


def test_disabled_returns_empty_answer():
    sut, nxt = _checker(True)

    resp = sut.resolve(new_request("example.com", dns.rdatatype.AAAA))

    assert resp.res.rcode() == dns.rcode.NOERROR
    assert resp.res.answer == []
    assert resp.rtype == ResponseType.RESOLVED
    assert resp.res.question[0].name.to_text() == "example.com."
    assert nxt.calls == []


def test_disabled_configuration():
    sut, _ = _checker(True)

    config = sut.configuration()

    assert len(config) == 1
    assert "drop" in config[0]


def test_disabled_still_delegates_a_queries():
    sut, nxt = _checker(True)

    resp = sut.resolve(new_request("example.com", dns.rdatatype.A))

    assert resp is nxt.response
    assert len(nxt.calls) == 1


def test_missing_next_resolver_raises():
    with pytest.raises(RuntimeError):
        IPv6Checker(False).resolve(new_request("example.com", dns.rdatatype.AAAA))