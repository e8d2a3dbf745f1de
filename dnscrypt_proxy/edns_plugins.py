"""Plugins adjusting the EDNS0 record and extra section of outgoing queries."""

from __future__ import annotations

import ipaddress
import logging
import random
from typing import Iterable

import dns.edns
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.ANY.TXT import TXT

from .common import MAX_DNS_UDP_PACKET_SIZE
from .context import QueryContext
from .padding import RESPONSE_OVERHEAD

log = logging.getLogger(__name__)

QUERY_META_TTL = 86400


class ECSPlugin:
    """Adds EDNS-client-subnet information to outgoing queries."""

    name = "ecs"
    description = "Set EDNS-client-subnet information in outgoing queries."

    def __init__(self, nets: Iterable, rng: random.Random | None = None) -> None:
        self.nets = [
            n if isinstance(n, (ipaddress.IPv4Network, ipaddress.IPv6Network))
            else ipaddress.ip_network(str(n), strict=False)
            for n in nets
        ]
        if not self.nets:
            raise ValueError("At least one EDNS-client-subnet network is required")
        self._rng = rng or random.Random()
        log.info("ECS plugin enabled")

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if msg.edns >= 0:
            if any(opt.otype == dns.edns.OptionType.ECS for opt in msg.options):
                return
        else:
            msg.use_edns(0, 0, ctx.max_payload_size)
        net = self._rng.choice(self.nets)
        ecs = dns.edns.ECSOption(str(net.network_address), net.prefixlen, 0)
        msg.use_edns(msg.edns, msg.ednsflags, msg.payload, options=[*msg.options, ecs])


class PayloadSizePlugin:
    """Adjusts the maximum payload size advertised to upstream servers."""

    name = "get_set_payload_size"
    description = "Adjusts the maximum payload size advertised in queries sent to upstream servers."

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        ctx.original_max_payload_size = 512 - RESPONSE_OVERHEAD
        dnssec = False
        if msg.edns >= 0:
            ctx.max_unencrypted_udp_safe_payload_size = msg.payload
            ctx.original_max_payload_size = max(
                msg.payload - RESPONSE_OVERHEAD, ctx.original_max_payload_size
            )
            dnssec = bool(msg.ednsflags & dns.flags.DO)
        ctx.dnssec = dnssec
        ctx.max_payload_size = min(
            MAX_DNS_UDP_PACKET_SIZE - RESPONSE_OVERHEAD,
            max(ctx.original_max_payload_size, ctx.max_payload_size),
        )
        if ctx.max_payload_size > 512:
            options = list(msg.options) if msg.edns >= 0 else []
            msg.use_edns(
                0,
                dns.flags.DO if dnssec else 0,
                ctx.max_payload_size,
                options=options,
            )


class QueryMetaPlugin:
    """Replaces the extra section of queries with a TXT record of metadata."""

    name = "query_meta"
    description = "Attach metadata to outgoing queries."

    def __init__(self, query_meta: Iterable[str]) -> None:
        strings = [s.encode() if isinstance(s, str) else bytes(s) for s in query_meta]
        rdata = TXT(dns.rdataclass.IN, dns.rdatatype.TXT, strings)
        self.query_meta_rrset = dns.rrset.from_rdata(dns.name.root, QUERY_META_TTL, rdata)

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        msg.use_edns(False)
        msg.additional = [self.query_meta_rrset]