import csv
import os
from datetime import datetime, timedelta

import dns.message
import dns.rdatatype
import pytest

from sinkhole.query_logging import QueryLoggingResolver, create_query_log_row, escape
from sinkhole.resolver import Resolver, Response, ResponseType, new_request
from sinkhole.util import new_msg_with_answer


class _NextResolver(Resolver):
    def __init__(self, answer):
        self.answer = answer
        self.calls = []

    def resolve(self, request):
        self.calls.append(request)
        return Response(res=self.answer, reason="reason")

    def configuration(self):
        return []


def _read_csv(path):
    with open(path, newline="", encoding="utf-8") as file:
        return list(csv.reader(file, delimiter="\t"))


def _today():
    return datetime.now().strftime("%Y-%m-%d")


@pytest.fixture
def answer():
    return new_msg_with_answer("example.com.", 300, dns.rdatatype.A, "123.122.121.120")


@pytest.fixture
def make_sut(answer):
    created = []

    def factory(**kwargs):
        sut = QueryLoggingResolver(**kwargs)
        following = _NextResolver(answer)
        sut.next_resolver = following
        created.append(sut)
        return sut, following

    yield factory
    for sut in created:
        sut.close()


def test_without_configuration_processes_request(make_sut):
    sut, following = make_sut()

    resp = sut.resolve(new_request("example.com.", dns.rdatatype.A))
    sut.flush()

    assert len(following.calls) == 1
    assert resp.rtype == ResponseType.RESOLVED


def test_log_file_per_client(make_sut, tmp_path):
    sut, following = make_sut(log_dir=str(tmp_path), per_client=True)

    sut.resolve(new_request("example.com.", dns.rdatatype.A, "192.168.178.25", "client1"))
    sut.resolve(
        new_request("example.com.", dns.rdatatype.A, "192.168.178.26", "cl/ient2\\$%&test")
    )
    sut.flush()

    assert len(following.calls) == 2

    lines = _read_csv(tmp_path / f"{_today()}_client1.log")
    assert len(lines) == 1
    assert lines[0][1] == "192.168.178.25"
    assert lines[0][2] == "client1"
    assert lines[0][4] == "reason"
    assert lines[0][5] == "A (example.com.)"
    assert lines[0][6] == "A (123.122.121.120)"

    lines = _read_csv(tmp_path / f"{_today()}_cl_ient2_test.log")
    assert len(lines) == 1
    assert lines[0][1] == "192.168.178.26"
    assert lines[0][2] == "cl/ient2\\$%&test"
    assert lines[0][4] == "reason"
    assert lines[0][5] == "A (example.com.)"
    assert lines[0][6] == "A (123.122.121.120)"


def test_one_log_file_for_all_clients(make_sut, tmp_path):
    sut, following = make_sut(log_dir=str(tmp_path), per_client=False)

    sut.resolve(new_request("example.com.", dns.rdatatype.A, "192.168.178.25", "client1"))
    sut.resolve(new_request("example.com.", dns.rdatatype.A, "192.168.178.26", "client2"))
    sut.flush()

    assert len(following.calls) == 2
    lines = _read_csv(tmp_path / f"{_today()}_ALL.log")
    assert len(lines) == 2

    assert lines[0][1] == "192.168.178.25"
    assert lines[0][2] == "client1"
    assert lines[0][4] == "reason"
    assert lines[0][5] == "A (example.com.)"
    assert lines[0][6] == "A (123.122.121.120)"

    assert lines[1][1] == "192.168.178.26"
    assert lines[1][2] == "client2"
    assert lines[1][4] == "reason"
    assert lines[1][5] == "A (example.com.)"
    assert lines[1][6] == "A (123.122.121.120)"


def test_configuration_enabled(make_sut, tmp_path):
    sut, _ = make_sut(log_dir=str(tmp_path), per_client=True, log_retention_days=0)

    config = sut.configuration()

    assert len(config) > 1
    assert "perClient = true" in config
    assert "log cleanup deactivated" in config


def test_configuration_disabled(make_sut):
    sut, _ = make_sut()

    assert sut.configuration() == ["deactivated"]


def test_missing_log_directory_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        QueryLoggingResolver(log_dir=str(tmp_path / "notExists"))


def test_missing_log_directory_with_retention_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        QueryLoggingResolver(log_dir=str(tmp_path / "wrongDir"), log_retention_days=7)


def test_clean_up_removes_old_files(make_sut, tmp_path):
    date_7 = (datetime.now() - timedelta(days=7)).strftime("%Y-%m-%d")
    date_8 = (datetime.now() - timedelta(days=8)).strftime("%Y-%m-%d")
    kept = tmp_path / f"{date_7}-test.log"
    removed = tmp_path / f"{date_8}-test.log"
    other = tmp_path / "notadate-file.log"
    for path in (kept, removed, other):
        path.write_text("")

    sut, _ = make_sut(log_dir=str(tmp_path), log_retention_days=7)
    sut.do_clean_up()

    assert kept.exists()
    assert not removed.exists()
    assert other.exists()


def test_clean_up_uses_clock(make_sut, tmp_path):
    old = tmp_path / "2020-01-01_ALL.log"
    old.write_text("")

    sut, _ = make_sut(
        log_dir=str(tmp_path),
        log_retention_days=3,
        clock=lambda: datetime(2020, 1, 4, 12, 0),
    )
    sut.do_clean_up()
    assert old.exists()

    sut2, _ = make_sut(
        log_dir=str(tmp_path),
        log_retention_days=3,
        clock=lambda: datetime(2020, 1, 5, 12, 0),
    )
    sut2.do_clean_up()
    assert not old.exists()


@pytest.mark.parametrize(
    "name, expected",
    [
        ("client1", "client1"),
        ("cl/ient2\\$%&test", "cl_ient2_test"),
        ("a b-c_d", "a_b-c_d"),
        ("ALL", "ALL"),
    ],
)
def test_escape(name, expected):
    assert escape(name) == expected


def test_create_query_log_row(answer):
    request = new_request("example.com.", dns.rdatatype.A, "192.168.178.25", "client1", "c2")
    response = Response(res=answer, reason="reason")

    row = create_query_log_row(request, response, datetime(2021, 5, 1, 12, 30, 45), 17)

    assert row == [
        "2021-05-01 12:30:45",
        "192.168.178.25",
        "client1; c2",
        "17",
        "reason",
        "A (example.com.)",
        "A (123.122.121.120)",
        "NOERROR",
    ]


def test_log_file_name_uses_start_date(make_sut, tmp_path):
    sut, _ = make_sut(log_dir=str(tmp_path), clock=lambda: datetime(2021, 2, 3, 4, 5, 6))

    sut.resolve(new_request("example.com.", dns.rdatatype.A, "10.0.0.1", "x"))
    sut.flush()

    lines = _read_csv(tmp_path / "2021-02-03_ALL.log")
    assert len(lines) == 1
    assert lines[0][0] == "2021-02-03 04:05:06"
    assert lines[0][7] == "NOERROR"


def test_close_writes_pending_entries(answer, tmp_path):
    sut = QueryLoggingResolver(log_dir=str(tmp_path))
    sut.next_resolver = _NextResolver(answer)
    sut.resolve(new_request("example.com.", dns.rdatatype.A, "10.0.0.2", "y"))
    sut.close()

    assert os.listdir(tmp_path) == [f"{_today()}_ALL.log"]


def test_next_resolver_error_is_not_logged(tmp_path):
    class _Failing(Resolver):
        def resolve(self, request):
            raise RuntimeError("fail")

        def configuration(self):
            return []

    sut = QueryLoggingResolver(log_dir=str(tmp_path))
    sut.next_resolver = _Failing()
    with pytest.raises(RuntimeError, match="fail"):
        sut.resolve(new_request("example.com.", dns.rdatatype.A))
    sut.close()

    assert os.listdir(tmp_path) == []