import time

import dns.message
import dns.rcode
import dns.rdatatype
import httpx
import pytest
import respx

from sinkhole.mock_upstream import MockUDPUpstream
from sinkhole.resolver import ResponseType, new_request
from sinkhole.upstream import Upstream, UpstreamError, UpstreamResolver
from sinkhole.util import new_msg_with_answer


def assert_record(answer, name, rdtype, ttl, value):
    assert len(answer) == 1
    rrset = answer[0]
    assert rrset.name.to_text() == name
    assert rrset.rdtype == rdtype
    assert rrset.ttl == ttl
    assert [r.to_text() for r in rrset] == [value]


def answer_handler(_request):
    return new_msg_with_answer("example.com", 123, dns.rdatatype.A, "123.124.122.122")


def test_udp_upstream_answer():
    with MockUDPUpstream(answer_handler) as mock:
        upstream = mock.upstream
        resp = UpstreamResolver(upstream).resolve(new_request("example.com.", dns.rdatatype.A))
    assert resp.res.rcode() == dns.rcode.NOERROR
    assert resp.rtype == ResponseType.RESOLVED
    assert_record(resp.res.answer, "example.com.", dns.rdatatype.A, 123, "123.124.122.122")
    assert resp.reason == f"RESOLVED ({upstream.host}:{upstream.port})"


def test_udp_upstream_rcode_passed():
    def handler(request):
        response = dns.message.make_response(request)
        response.set_rcode(dns.rcode.NXDOMAIN)
        return response

    with MockUDPUpstream(handler) as mock:
        resp = UpstreamResolver(mock.upstream).resolve(new_request("example.com.", dns.rdatatype.A))
    assert resp.res.rcode() == dns.rcode.NXDOMAIN
    assert resp.rtype == ResponseType.RESOLVED


def test_udp_upstream_failure():
    with MockUDPUpstream(lambda request: None) as mock:
        with pytest.raises(UpstreamError):
            UpstreamResolver(mock.upstream).resolve(new_request("example.com.", dns.rdatatype.A))


def test_timeout_retries():
    state = {"counter": 0, "slow": 2}

    def handler(request):
        state["counter"] += 1
        if state["counter"] <= state["slow"]:
            time.sleep(0.15)
        return answer_handler(request)

    with MockUDPUpstream(handler) as mock:
        sut = UpstreamResolver(mock.upstream, timeout=0.1)
        resp = sut.resolve(new_request("example.com.", dns.rdatatype.A))
        assert_record(resp.res.answer, "example.com.", dns.rdatatype.A, 123, "123.124.122.122")

        state["counter"] = 0
        state["slow"] = 3
        with pytest.raises(UpstreamError, match="i/o timeout"):
            sut.resolve(new_request("example.com.", dns.rdatatype.A))


DOH = Upstream(net="https", host="doh.example.com", port=443, path="/dns-query")
DOH_URL = "https://doh.example.com:443/dns-query"


def doh_reply(request: httpx.Request) -> httpx.Response:
    query = dns.message.from_wire(request.content)
    reply = dns.message.make_response(query)
    reply.answer = answer_handler(query).answer
    return httpx.Response(200, content=reply.to_wire(), headers={"content-type": "application/dns-message"})


def test_doh_answer():
    with respx.mock() as router:
        router.post(DOH_URL).mock(side_effect=doh_reply)
        resp = UpstreamResolver(DOH).resolve(new_request("example.com.", dns.rdatatype.A))
    assert resp.rtype == ResponseType.RESOLVED
    assert_record(resp.res.answer, "example.com.", dns.rdatatype.A, 123, "123.124.122.122")
    assert resp.reason == f"RESOLVED (https://{DOH.host}:{DOH.port}{DOH.path})"


@pytest.mark.parametrize(
    "reply, message",
    [
        (
            httpx.Response(500, headers={"content-type": "application/dns-message"}),
            "http return code should be 200, but received 500",
        ),
        (
            httpx.Response(200, headers={"content-type": "text"}),
            "http return content type should be 'application/dns-message', but was 'text'",
        ),
        (
            httpx.Response(200, content=b"wrongcontent", headers={"content-type": "application/dns-message"}),
            "can't unpack message",
        ),
    ],
)
def test_doh_errors(reply, message):
    with respx.mock() as router:
        router.post(DOH_URL).mock(return_value=reply)
        with pytest.raises(UpstreamError) as info:
            UpstreamResolver(DOH).resolve(new_request("example.com.", dns.rdatatype.A))
    assert str(info.value) == message


def test_doh_unreachable():
    with respx.mock() as router:
        router.post(DOH_URL).mock(side_effect=httpx.ConnectError("no such host"))
        with pytest.raises(UpstreamError, match="no such host"):
            UpstreamResolver(DOH).resolve(new_request("example.com.", dns.rdatatype.A))


def test_configuration_empty():
    assert UpstreamResolver(Upstream()).configuration() == []


def test_str():
    assert str(UpstreamResolver(Upstream(host="1.2.3.4", port=53))) == "upstream 'tcp+udp:1.2.3.4:53'"