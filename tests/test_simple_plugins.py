import dns.message
import dns.rcode
import dns.rdatatype

from dnscrypt_proxy.context import PluginAction, QueryContext, ReturnCode
from dnscrypt_proxy.simple_plugins import (
    BlockIPv6Plugin,
    BlockUnqualifiedPlugin,
    FirefoxPlugin,
)


def _run(plugin, name, rdtype, proto="udp"):
    msg = dns.message.make_query(name, rdtype)
    qname = name.rstrip(".").lower() or "."
    ctx = QueryContext(qname=qname, client_proto=proto, client_addr=("192.0.2.10", 5353))
    plugin.eval(ctx, msg)
    return ctx, msg


def test_block_ipv6_synthesizes_hinfo_and_soa():
    ctx, msg = _run(BlockIPv6Plugin(), "www.example.com.", "AAAA")
    synth = ctx.synth_response
    assert ctx.action is PluginAction.SYNTH
    assert ctx.return_code is ReturnCode.SYNTH
    assert synth.id == msg.id
    assert synth.rcode() == dns.rcode.NOERROR
    hinfo = synth.answer[0]
    assert hinfo.rdtype == dns.rdatatype.HINFO
    assert hinfo.ttl == 86400
    assert hinfo[0].cpu == b"AAAA queries have been locally blocked by dnscrypt-proxy"
    soa = synth.authority[0]
    assert soa.name.to_text() == "example.com."
    assert soa.ttl == 60
    assert soa[0].serial == 1
    assert soa[0].rname.to_text() == "h.invalid."


def test_block_ipv6_root_parent_zone():
    ctx, _ = _run(BlockIPv6Plugin(), "localhost.", "AAAA")
    assert ctx.synth_response.authority[0].name.to_text() == "."


def test_block_ipv6_ignores_a():
    ctx, _ = _run(BlockIPv6Plugin(), "www.example.com.", "A")
    assert ctx.action is PluginAction.CONTINUE
    assert ctx.synth_response is None


def test_block_unqualified_blocks_single_label():
    ctx, msg = _run(BlockUnqualifiedPlugin(), "myhost.", "A")
    assert ctx.action is PluginAction.SYNTH
    assert ctx.return_code is ReturnCode.SYNTH
    assert ctx.synth_response.rcode() == dns.rcode.NXDOMAIN
    assert ctx.synth_response.id == msg.id


def test_block_unqualified_allows_qualified():
    ctx, _ = _run(BlockUnqualifiedPlugin(), "www.example.com.", "AAAA")
    assert ctx.synth_response is None


def test_block_unqualified_ignores_other_types():
    ctx, _ = _run(BlockUnqualifiedPlugin(), "myhost.", "MX")
    assert ctx.action is PluginAction.CONTINUE


def test_firefox_canary_blocked():
    ctx, _ = _run(FirefoxPlugin(), "use-application-dns.net.", "A")
    assert ctx.synth_response.rcode() == dns.rcode.NXDOMAIN
    assert ctx.return_code is ReturnCode.SYNTH


def test_firefox_canary_subdomain_blocked():
    ctx, _ = _run(FirefoxPlugin(), "sub.use-application-dns.net.", "AAAA")
    assert ctx.action is PluginAction.SYNTH


def test_firefox_other_names_pass():
    ctx, _ = _run(FirefoxPlugin(), "notuse-application-dns.net.", "A")
    assert ctx.synth_response is None


def test_firefox_local_doh_pass():
    ctx, _ = _run(FirefoxPlugin(), "use-application-dns.net.", "A", proto="local_doh")
    assert ctx.action is PluginAction.CONTINUE


def test_firefox_ignores_txt():
    ctx, _ = _run(FirefoxPlugin(), "use-application-dns.net.", "TXT")
    assert ctx.synth_response is None