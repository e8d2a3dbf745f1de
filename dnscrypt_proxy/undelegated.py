"""Blocking of names in zones that are not delegated on the public Internet."""

from __future__ import annotations

import dns.message
import dns.rcode

from .common import string_reverse
from .context import QueryContext, ReturnCode
from .dnsutils import empty_response_from_message

_SPECIAL_USE_NAMES = """
    1 airdream api bbrouter belkin bind blinkap corp davolink dearmyrouter
    dhcp dlink domain envoy example fritz.box grp gw== home home.arpa hub
    internal intra intranet invalid ksyun lan loc local localdomain localhost
    localnet mail modem mynet myrouter novalocal onion openstacklocal priv
    private prv router telus test totolink wlan_ap workgroup zghjccbob3n0
""".split()

_REVERSE_V4_ZONES = """
    0 10 127 168.192 254.169 255.255.255.255
    2.0.192 100.51.198 113.0.203
""".split()

_REVERSE_V6_ZONES = """
    8.b.d.0.1.0.0.2 d.f f.f 8.e.f 9.e.f a.e.f b.e.f
""".split()


def _build_undelegated_set() -> tuple[str, ...]:
    names = set(_SPECIAL_USE_NAMES)
    names.update(f"{zone}.in-addr.arpa" for zone in _REVERSE_V4_ZONES)
    # 100.64.0.0/10 and 172.16.0.0/12
    names.update(f"{octet}.100.in-addr.arpa" for octet in range(64, 128))
    names.update(f"{octet}.172.in-addr.arpa" for octet in range(16, 32))
    names.update(f"{zone}.ip6.arpa" for zone in _REVERSE_V6_ZONES)
    # :: and ::1
    names.add("0." * 32 + "ip6.arpa")
    names.add("1." + "0." * 31 + "ip6.arpa")
    return tuple(sorted(names))


UNDELEGATED_SET = _build_undelegated_set()

_REVERSED_SUFFIXES = frozenset(string_reverse(name) for name in UNDELEGATED_SET)


def _longest_suffix_match(rev_qname: str) -> str | None:
    for length in range(len(rev_qname), 0, -1):
        candidate = rev_qname[:length]
        if candidate in _REVERSED_SUFFIXES:
            return candidate
    return None


def is_undelegated(qname: str) -> bool:
    """True if the normalized name lies in one of the undelegated zones."""
    rev_qname = string_reverse(qname)
    match = _longest_suffix_match(rev_qname)
    if match is None:
        return False
    return len(match) == len(rev_qname) or rev_qname[len(match)] == "."


class BlockUndelegatedPlugin:
    """Answers NXDOMAIN for names in undelegated zones."""

    name = "block_undelegated"
    description = "Block undelegated DNS names"

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if not is_undelegated(ctx.qname):
            return
        synth = empty_response_from_message(msg)
        synth.set_rcode(dns.rcode.NXDOMAIN)
        ctx.synthesize(synth, ReturnCode.SYNTH)