import dns.edns
import dns.flags
import dns.message
import dns.name
import dns.rdatatype
import pytest

from dnscrypt_proxy.common import MAX_DNS_UDP_PACKET_SIZE
from dnscrypt_proxy.context import QueryContext
from dnscrypt_proxy.edns_plugins import ECSPlugin, PayloadSizePlugin, QueryMetaPlugin
from dnscrypt_proxy.padding import RESPONSE_OVERHEAD


def _ecs_options(msg):
    return [opt for opt in msg.options if opt.otype == dns.edns.OptionType.ECS]


def test_ecs_adds_edns_and_option():
    msg = dns.message.make_query("example.com", "A")
    assert msg.edns < 0
    ECSPlugin(["192.0.2.0/24"]).eval(QueryContext(max_payload_size=1232), msg)
    assert msg.edns == 0
    assert msg.payload == 1232
    (ecs,) = _ecs_options(msg)
    assert (ecs.address, ecs.srclen, ecs.family) == ("192.0.2.0", 24, 1)


def test_ecs_survives_wire_round_trip():
    msg = dns.message.make_query("example.com", "A", use_edns=0)
    ECSPlugin(["2001:db8::/48"]).eval(QueryContext(), msg)
    parsed = dns.message.from_wire(msg.to_wire())
    (ecs,) = _ecs_options(parsed)
    assert ecs.family == 2
    assert ecs.srclen == 48


def test_ecs_keeps_existing_option():
    existing = dns.edns.ECSOption("198.51.100.0", 24)
    msg = dns.message.make_query("example.com", "A", use_edns=0, options=[existing])
    ECSPlugin(["192.0.2.0/24"]).eval(QueryContext(), msg)
    (ecs,) = _ecs_options(msg)
    assert ecs.address == "198.51.100.0"


def test_ecs_requires_networks():
    with pytest.raises(ValueError):
        ECSPlugin([])


def test_payload_size_without_edns():
    msg = dns.message.make_query("example.com", "A")
    ctx = QueryContext()
    PayloadSizePlugin().eval(ctx, msg)
    assert ctx.original_max_payload_size == 512 - RESPONSE_OVERHEAD
    assert ctx.max_payload_size == 512 - RESPONSE_OVERHEAD
    assert ctx.dnssec is False
    assert msg.edns < 0


def test_payload_size_with_large_edns_and_do():
    msg = dns.message.make_query("example.com", "A", use_edns=0, payload=4096, want_dnssec=True)
    ctx = QueryContext()
    PayloadSizePlugin().eval(ctx, msg)
    expected = MAX_DNS_UDP_PACKET_SIZE - RESPONSE_OVERHEAD
    assert ctx.max_unencrypted_udp_safe_payload_size == 4096
    assert ctx.max_payload_size == expected
    assert ctx.dnssec is True
    assert msg.payload == expected
    assert msg.ednsflags & dns.flags.DO


def test_payload_size_keeps_options():
    padding = dns.edns.GenericOption(dns.edns.OptionType.PADDING, b"XX")
    msg = dns.message.make_query("example.com", "A", use_edns=0, payload=1500, options=[padding])
    ctx = QueryContext()
    PayloadSizePlugin().eval(ctx, msg)
    assert ctx.max_payload_size == 1500 - RESPONSE_OVERHEAD
    assert [opt.otype for opt in msg.options] == [dns.edns.OptionType.PADDING]
    assert not msg.ednsflags & dns.flags.DO


def test_query_meta_replaces_extra_section():
    msg = dns.message.make_query("example.com", "A", use_edns=0)
    QueryMetaPlugin(["client:laptop", "site:home"]).eval(QueryContext(), msg)
    assert msg.edns < 0
    (rrset,) = msg.additional
    assert rrset.name == dns.name.root
    assert rrset.rdtype == dns.rdatatype.TXT
    assert rrset.ttl == 86400
    assert rrset[0].strings == (b"client:laptop", b"site:home")
    parsed = dns.message.from_wire(msg.to_wire())
    assert parsed.additional[0][0].strings == (b"client:laptop", b"site:home")