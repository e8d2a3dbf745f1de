import re
from datetime import datetime, timedelta

import dns.message
import dns.rcode
import pytest

from dnscrypt_proxy.context import QueryContext, ReturnCode
from dnscrypt_proxy.query_logs import NxLogPlugin, QueryLogPlugin

TIMESTAMP = re.compile(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\]$")


class _Sink:
    def __init__(self):
        self.lines = []

    def write(self, line):
        self.lines.append(line)


def _ctx(**kwargs):
    base = dict(qname="example.com", client_proto="udp", client_addr=("192.0.2.10", 5353), server_name="quad9")
    base.update(kwargs)
    return QueryContext(**base)


def test_tsv_query_line():
    sink = _Sink()
    QueryLogPlugin(sink).eval(_ctx(), dns.message.make_query("example.com", "A"))
    assert len(sink.lines) == 1
    line = sink.lines[0]
    assert line.endswith("\n")
    fields = line.rstrip("\n").split("\t")
    assert TIMESTAMP.match(fields[0])
    assert fields[1:] == ["192.0.2.10", "example.com", "A", "PASS", "0ms", "quad9"]


def test_ltsv_query_line():
    sink = _Sink()
    QueryLogPlugin(sink, "ltsv").eval(_ctx(), dns.message.make_query("example.com", "AAAA"))
    fields = sink.lines[0].rstrip("\n").split("\t")
    assert fields[0].startswith("time:")
    assert fields[1:] == [
        "host:192.0.2.10",
        "message:example.com",
        "type:AAAA",
        "return:PASS",
        "cached:0",
        "duration:0",
        "server:quad9",
    ]


def test_duration_from_request_times():
    sink = _Sink()
    start = datetime(2024, 1, 1, 12, 0, 0)
    ctx = _ctx(request_start=start, request_end=start + timedelta(milliseconds=25))
    QueryLogPlugin(sink).eval(ctx, dns.message.make_query("example.com", "A"))
    assert sink.lines[0].rstrip("\n").split("\t")[5] == "25ms"


def test_cache_hit_and_synth_hide_server():
    sink = _Sink()
    plugin = QueryLogPlugin(sink)
    cached = _ctx(cache_hit=True)
    plugin.eval(cached, dns.message.make_query("example.com", "A"))
    synth = _ctx(return_code=ReturnCode.SYNTH)
    plugin.eval(synth, dns.message.make_query("example.com", "A"))
    assert cached.server_name == "-"
    assert synth.server_name == "-"
    assert [line.rstrip("\n").split("\t")[-1] for line in sink.lines] == ["-", "-"]


def test_ignored_qtypes_are_case_insensitive():
    sink = _Sink()
    plugin = QueryLogPlugin(sink, ignored_qtypes=["aaaa"])
    plugin.eval(_ctx(), dns.message.make_query("example.com", "AAAA"))
    plugin.eval(_ctx(), dns.message.make_query("example.com", "A"))
    assert len(sink.lines) == 1
    assert "\tA\t" in sink.lines[0]


def test_internal_queries_are_not_logged():
    sink = _Sink()
    QueryLogPlugin(sink).eval(_ctx(client_proto="trampoline"), dns.message.make_query("example.com", "A"))
    assert sink.lines == []


def test_unknown_format_rejected():
    with pytest.raises(ValueError):
        QueryLogPlugin(_Sink(), "json")
    with pytest.raises(ValueError):
        NxLogPlugin(_Sink(), "csv")


def test_missing_logger_raises():
    with pytest.raises(RuntimeError):
        QueryLogPlugin(None).eval(_ctx(), dns.message.make_query("example.com", "A"))


def _nx_response(rcode):
    response = dns.message.make_response(dns.message.make_query("missing.example.com", "A"))
    response.set_rcode(rcode)
    return response


def test_nx_log_only_logs_nxdomain():
    sink = _Sink()
    plugin = NxLogPlugin(sink)
    ctx = _ctx(qname="missing.example.com", client_proto="tcp")
    plugin.eval(ctx, _nx_response(dns.rcode.NOERROR))
    assert sink.lines == []
    plugin.eval(ctx, _nx_response(dns.rcode.NXDOMAIN))
    fields = sink.lines[0].rstrip("\n").split("\t")
    assert TIMESTAMP.match(fields[0])
    assert fields[1:] == ["192.0.2.10", "missing.example.com", "A"]


def test_nx_log_ltsv():
    sink = _Sink()
    NxLogPlugin(sink, "ltsv").eval(_ctx(qname="missing.example.com"), _nx_response(dns.rcode.NXDOMAIN))
    fields = sink.lines[0].rstrip("\n").split("\t")
    assert fields[1:] == ["host:192.0.2.10", "message:missing.example.com", "type:A"]