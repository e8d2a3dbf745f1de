"""Plugins answering some queries locally without a rule file."""

from __future__ import annotations

import dns.message
import dns.name
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.ANY.HINFO import HINFO
from dns.rdtypes.ANY.SOA import SOA

from .context import QueryContext, ReturnCode
from .dnsutils import empty_response_from_message

FIREFOX_CANARY = "use-application-dns.net"


def _nxdomain(ctx: QueryContext, msg: dns.message.Message) -> None:
    synth = empty_response_from_message(msg)
    synth.set_rcode(dns.rcode.NXDOMAIN)
    ctx.synthesize(synth, ReturnCode.SYNTH)


def _is_address_query(question) -> bool:
    return question.rdclass == dns.rdataclass.IN and question.rdtype in (
        dns.rdatatype.A,
        dns.rdatatype.AAAA,
    )


class BlockIPv6Plugin:
    """Answers AAAA queries with a synthetic, empty response."""

    name = "block_ipv6"
    description = "Immediately return a synthetic response to AAAA queries."

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        question = msg.question[0]
        if question.rdclass != dns.rdataclass.IN or question.rdtype != dns.rdatatype.AAAA:
            return
        synth = empty_response_from_message(msg)
        hinfo = HINFO(
            dns.rdataclass.IN,
            dns.rdatatype.HINFO,
            b"AAAA queries have been locally blocked by dnscrypt-proxy",
            b"Set block_ipv6 to false to disable that feature",
        )
        synth.answer = [dns.rrset.from_rdata(question.name, 86400, hinfo)]
        qname = question.name.to_text()
        i = qname.find(".")
        parent_zone = "." if i < 0 or i + 1 >= len(qname) else qname[i + 1 :]
        soa = SOA(
            dns.rdataclass.IN,
            dns.rdatatype.SOA,
            dns.name.from_text("a.root-servers.net."),
            dns.name.from_text("h.invalid."),
            1,
            10000,
            300,
            604800,
            2400,
        )
        synth.authority = [dns.rrset.from_rdata(dns.name.from_text(parent_zone), 60, soa)]
        ctx.synthesize(synth, ReturnCode.SYNTH)


class BlockUnqualifiedPlugin:
    """Answers NXDOMAIN to address queries for names without a dot."""

    name = "block_unqualified"
    description = "Block unqualified DNS names"

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if not _is_address_query(msg.question[0]):
            return
        if "." in ctx.qname:
            return
        _nxdomain(ctx, msg)


class FirefoxPlugin:
    """Answers NXDOMAIN to the canary domain so that browsers keep the system resolver."""

    name = "firefox"
    description = "Work around Firefox taking over DNS"

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if ctx.client_proto == "local_doh":
            return
        if not _is_address_query(msg.question[0]):
            return
        qname = ctx.qname
        if qname != FIREFOX_CANARY and not qname.endswith("." + FIREFOX_CANARY):
            return
        _nxdomain(ctx, msg)