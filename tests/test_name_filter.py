import io

import dns.message
import dns.rrset
import pytest

from dnscrypt_proxy.context import PluginAction, QueryContext, ReturnCode
from dnscrypt_proxy.name_filter import (
    AllowNamePlugin,
    BlockedNames,
    BlockNamePlugin,
    BlockNameResponsePlugin,
    parse_name_rules,
)


class _Schedule:
    def __init__(self, active):
        self.active = active

    def match(self):
        return self.active


RULES = """
# comment line
ads.example.com
*tracker*
=exact.org
work.example.net @office
night.example.net @nights
a@b@c
missing.example @nowhere
"""

SCHEDULES = {"office": _Schedule(True), "nights": _Schedule(False)}


def _ctx(qname, proto="udp"):
    return QueryContext(qname=qname, client_proto=proto, client_addr=("192.0.2.1", 53000))


def _query(name="example.com"):
    return dns.message.make_query(name, "A")


def _blocked(logger=None, log_format="tsv"):
    return BlockedNames(parse_name_rules(RULES, SCHEDULES), logger, log_format)


@pytest.mark.parametrize(
    "qname",
    ["ads.example.com", "sub.ads.example.com", "mytracker.net", "exact.org", "work.example.net"],
)
def test_block_name_rejects(qname):
    ctx = _ctx(qname)
    BlockNamePlugin(_blocked()).eval(ctx, _query())
    assert ctx.action is PluginAction.REJECT
    assert ctx.return_code is ReturnCode.REJECT


@pytest.mark.parametrize(
    "qname", ["example.com", "notads.example.com", "sub.exact.org", "night.example.net"]
)
def test_block_name_passes(qname):
    ctx = _ctx(qname)
    BlockNamePlugin(_blocked()).eval(ctx, _query())
    assert ctx.action is PluginAction.CONTINUE


def test_rule_with_unknown_schedule_applies_always():
    ctx = _ctx("missing.example")
    BlockNamePlugin(_blocked()).eval(ctx, _query())
    assert ctx.action is PluginAction.REJECT


def test_rule_with_two_at_signs_is_skipped():
    matcher = parse_name_rules("a@b@c\n")
    assert matcher.eval("a") is None
    assert matcher.eval("ab") is None


def test_whitelisted_query_is_not_blocked():
    ctx = _ctx("ads.example.com")
    ctx.session_data["whitelisted"] = True
    BlockNamePlugin(_blocked()).eval(ctx, _query())
    assert ctx.action is PluginAction.CONTINUE


def test_no_blocked_names_does_nothing():
    ctx = _ctx("ads.example.com")
    BlockNamePlugin(None).eval(ctx, _query())
    assert ctx.action is PluginAction.CONTINUE


def test_tsv_log_line():
    out = io.StringIO()
    ctx = _ctx("ads.example.com")
    assert _blocked(out).check(ctx, "ads.example.com") is True
    fields = out.getvalue().rstrip("\n").split("\t")
    assert fields[1:] == ["192.0.2.1", "ads.example.com", "*.ads.example.com"]
    assert fields[0].startswith("[") and fields[0].endswith("]")


def test_ltsv_log_line():
    out = io.StringIO()
    ctx = _ctx("exact.org")
    _blocked(out, "ltsv").check(ctx, "exact.org")
    line = out.getvalue()
    assert line.startswith("time:")
    assert line.endswith("\thost:192.0.2.1\tqname:exact.org\tmessage:exact.org\n")


def test_internal_flow_is_not_logged():
    out = io.StringIO()
    ctx = _ctx("ads.example.com", proto="trampoline")
    assert _blocked(out).check(ctx, "ads.example.com") is False
    assert ctx.action is PluginAction.REJECT
    assert out.getvalue() == ""


def test_unknown_log_format_raises():
    with pytest.raises(ValueError):
        BlockedNames(parse_name_rules(""), None, "json")


def _response_with_cnames(qname, targets):
    response = dns.message.make_response(dns.message.make_query(qname, "A"))
    owner = qname
    for target in targets:
        response.answer.append(dns.rrset.from_text(owner + ".", 300, "IN", "CNAME", target + "."))
        owner = target
    return response


def test_response_alias_is_blocked_and_logged():
    out = io.StringIO()
    ctx = _ctx("www.site.org")
    response = _response_with_cnames("www.site.org", ["ads.example.com"])
    BlockNameResponsePlugin(_blocked(out)).eval(ctx, response)
    assert ctx.action is PluginAction.REJECT
    reason = out.getvalue().rstrip("\n").split("\t")[-1]
    assert reason == "*.ads.example.com (alias for [www.site.org])"


def test_response_alias_limit():
    targets = [f"hop{i}.site.org" for i in range(8)] + ["ads.example.com"]
    ctx = _ctx("www.site.org")
    BlockNameResponsePlugin(_blocked()).eval(ctx, _response_with_cnames("www.site.org", targets))
    assert ctx.action is PluginAction.CONTINUE


def test_response_alias_within_limit():
    targets = [f"hop{i}.site.org" for i in range(7)] + ["ads.example.com"]
    ctx = _ctx("www.site.org")
    BlockNameResponsePlugin(_blocked()).eval(ctx, _response_with_cnames("www.site.org", targets))
    assert ctx.action is PluginAction.REJECT


def test_allow_name_marks_whitelisted():
    out = io.StringIO()
    plugin = AllowNamePlugin(parse_name_rules("good.example.com\n"), out)
    ctx = _ctx("www.good.example.com")
    plugin.eval(ctx, _query())
    assert ctx.session_data["whitelisted"] is True
    assert out.getvalue().rstrip("\n").split("\t")[1:] == [
        "192.0.2.1",
        "www.good.example.com",
        "*.good.example.com",
    ]


def test_allow_name_respects_inactive_schedule():
    plugin = AllowNamePlugin(parse_name_rules("good.example.com @nights\n", SCHEDULES))
    ctx = _ctx("good.example.com")
    plugin.eval(ctx, _query())
    assert "whitelisted" not in ctx.session_data


def test_from_file(tmp_path):
    rules = tmp_path / "blocked.txt"
    rules.write_text("\ufeffads.example.com\n", encoding="utf-8")
    blocked = BlockedNames.from_file(str(rules))
    ctx = _ctx("ads.example.com")
    assert blocked.check(ctx, "ads.example.com") is True
    assert ctx.action is PluginAction.REJECT