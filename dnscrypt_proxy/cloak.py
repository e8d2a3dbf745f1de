"""Cloaking: synthetic addresses, flattened CNAMEs and PTR records for chosen names."""

from __future__ import annotations

import ipaddress
import logging
import random
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.reversename
import dns.rrset
from dns.rdtypes.ANY.PTR import PTR
from dns.rdtypes.IN.A import A
from dns.rdtypes.IN.AAAA import AAAA

from .common import read_text_file, trim_and_strip_inline_comments
from .context import PluginAction, QueryContext, ReturnCode
from .dnsutils import empty_response_from_message
from .pattern_matcher import PatternMatcher

log = logging.getLogger(__name__)

DEFAULT_CLOAK_TTL = 600
MAX_RESOLVED_PER_FAMILY = 16

Lookup = Callable[[str], Iterable]


@dataclass
class CloakedName:
    """What a cloaking rule answers with."""

    target: str = ""
    ipv4: list[str] = field(default_factory=list)
    ipv6: list[str] = field(default_factory=list)
    last_update: float | None = None
    line_no: int = 0
    is_ip: bool = False
    ptr: list[str] = field(default_factory=list)


def ptr_entry_to_query(ptr_entry: str) -> str:
    """Turn a reverse name into an exact-match rule."""
    return "=" + ptr_entry


def ptr_name_to_fqdn(ptr_line: str) -> str:
    """Turn a cloaking rule name into the fully qualified PTR target."""
    return ptr_line.removeprefix("=") + "."


def _parse_ip(text: str):
    if "%" in text:
        return None
    try:
        return ipaddress.ip_address(text)
    except ValueError:
        return None


def _as_ipv4(ip) -> ipaddress.IPv4Address | None:
    if ip.version == 4:
        return ip
    return ip.ipv4_mapped


def parse_cloaking_rules(text: str, create_ptr: bool = False) -> PatternMatcher:
    """Parse 'name target' lines into a matcher whose values are CloakedName objects.

    Malformed lines are logged and skipped; a rule the matcher rejects raises
    PatternSyntaxError.
    """
    cloaked: dict[str, CloakedName] = {}
    for line_no, line in enumerate(text.split("\n"), start=1):
        line = trim_and_strip_inline_comments(line)
        if not line:
            continue
        parts = line.split()
        target = ""
        if len(parts) == 2:
            line, target = parts
        elif len(parts) > 2:
            log.error("Syntax error in cloaking rules at line %d -- Unexpected space character", line_no)
            continue
        if not line or not target:
            log.error("Syntax error in cloaking rules at line %d -- Missing name or target", line_no)
            continue
        line = line.lower()
        cloaked_name = cloaked.setdefault(line, CloakedName())
        ip = _parse_ip(target)
        ipv4 = None
        if ip is not None:
            ipv4 = _as_ipv4(ip)
            if ipv4 is not None:
                cloaked_name.ipv4.append(str(ipv4))
            else:
                cloaked_name.ipv6.append(str(ip))
            cloaked_name.is_ip = True
        else:
            cloaked_name.target = target
        cloaked_name.line_no = line_no

        if not create_ptr or "*" in line or not cloaked_name.is_ip or ip is None:
            continue
        address = str(ipv4) if ipv4 is not None else cloaked_name.ipv6[0]
        reversed_name = dns.reversename.from_address(address).to_text()
        ptr_query = ptr_entry_to_query(reversed_name.removesuffix("."))
        ptr_cloaked = cloaked.setdefault(ptr_query, CloakedName())
        ptr_cloaked.is_ip = True
        ptr_cloaked.ptr.append(ptr_name_to_fqdn(line))
        ptr_cloaked.line_no = line_no

    matcher = PatternMatcher()
    for line, cloaked_name in cloaked.items():
        matcher.add(line, cloaked_name, cloaked_name.line_no)
    return matcher


def _lookup_ip(target: str) -> list[str]:
    addresses: list[str] = []
    for *_, sockaddr in socket.getaddrinfo(target, None, proto=socket.IPPROTO_TCP):
        address = str(sockaddr[0]).split("%", 1)[0]
        if address not in addresses:
            addresses.append(address)
    return addresses


class CloakPlugin:
    """Returns a synthetic IP address or a flattened CNAME for specific names."""

    name = "cloak"
    description = "Return a synthetic IP address or a flattened CNAME for specific names"

    def __init__(
        self,
        pattern_matcher: PatternMatcher,
        ttl: int = DEFAULT_CLOAK_TTL,
        lookup: Lookup | None = None,
    ) -> None:
        self.pattern_matcher = pattern_matcher
        self.ttl = ttl
        self._lookup = lookup or _lookup_ip
        self._lock = threading.RLock()

    @classmethod
    def from_file(
        cls, rules_file: str, ttl: int = DEFAULT_CLOAK_TTL, create_ptr: bool = False
    ) -> CloakPlugin:
        """Load the cloaking rules from a file."""
        log.info("Loading the set of cloaking rules from [%s]", rules_file)
        return cls(parse_cloaking_rules(read_text_file(rules_file), create_ptr), ttl)

    def _refresh(self, cloaked_name: CloakedName, target: str, now: float) -> bool:
        try:
            found = list(self._lookup(target))
        except (OSError, UnicodeError):
            return False
        ipv4: list[str] = []
        ipv6: list[str] = []
        for raw in found:
            ip = raw if isinstance(raw, (ipaddress.IPv4Address, ipaddress.IPv6Address)) else _parse_ip(str(raw))
            if ip is None:
                continue
            as4 = _as_ipv4(ip)
            if as4 is not None:
                ipv4.append(str(as4))
                if len(ipv4) >= MAX_RESOLVED_PER_FAMILY:
                    break
            else:
                ipv6.append(str(ip))
                if len(ipv6) >= MAX_RESOLVED_PER_FAMILY:
                    break
        with self._lock:
            cloaked_name.last_update = now
            cloaked_name.ipv4 = ipv4
            cloaked_name.ipv6 = ipv6
        return True

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        question = msg.question[0]
        if question.rdclass != dns.rdataclass.IN or question.rdtype in (
            dns.rdatatype.NS,
            dns.rdatatype.SOA,
        ):
            return
        now = time.time()
        with self._lock:
            match = self.pattern_matcher.eval(ctx.qname)
        if match is None or match.value is None:
            return
        if question.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA, dns.rdatatype.PTR):
            ctx.action = PluginAction.REJECT
            ctx.return_code = ReturnCode.CLOAK
            return
        cloaked_name: CloakedName = match.value
        with self._lock:
            ttl, expired = self.ttl, False
            if cloaked_name.last_update is not None:
                elapsed = int(now - cloaked_name.last_update)
                if elapsed < ttl:
                    ttl -= elapsed
                else:
                    expired = True
            needs_lookup = not cloaked_name.is_ip and (
                (not cloaked_name.ipv4 and not cloaked_name.ipv6) or expired
            )
            target = cloaked_name.target
        if needs_lookup and not self._refresh(cloaked_name, target, now):
            return

        with self._lock:
            if question.rdtype == dns.rdatatype.A:
                rdatas = [A(dns.rdataclass.IN, dns.rdatatype.A, ip) for ip in cloaked_name.ipv4]
            elif question.rdtype == dns.rdatatype.AAAA:
                rdatas = [AAAA(dns.rdataclass.IN, dns.rdatatype.AAAA, ip) for ip in cloaked_name.ipv6]
            else:
                rdatas = [
                    PTR(dns.rdataclass.IN, dns.rdatatype.PTR, dns.name.from_text(ptr))
                    for ptr in cloaked_name.ptr
                ]
        random.shuffle(rdatas)
        synth = empty_response_from_message(msg)
        synth.answer = [dns.rrset.from_rdata_list(question.name, ttl, rdatas)] if rdatas else []
        ctx.synthesize(synth, ReturnCode.CLOAK)