"""Helpers for building, inspecting and adjusting DNS messages."""

from __future__ import annotations

import ipaddress
import time

import dns.edns
import dns.flags
import dns.message
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.ANY.HINFO import HINFO
from dns.rdtypes.IN.A import A
from dns.rdtypes.IN.AAAA import AAAA

from .common import MAX_DNS_PACKET_SIZE, is_digit

EDE_FORGED_ANSWER = 4
EDE_FILTERED = 17

BLOCKED_CPU = "This query has been locally blocked"
BLOCKED_NX_CPU = "This query has been locally blocked as an NXDomain"
BLOCKED_OS = "by dnscrypt-proxy"
BLOCKED_EXTRA_TEXT = "This query has been locally blocked by dnscrypt-proxy"

_DOH_BOUNDARIES = (
    64, 128, 192, 256, 320, 384, 512, 704, 768, 896, 960,
    1024, 1088, 1152, 2688, 4080, MAX_DNS_PACKET_SIZE,
)

IPLike = "str | ipaddress.IPv4Address | ipaddress.IPv6Address"


class QNameError(ValueError):
    """A query name cannot be normalized."""


def _ip(value) -> ipaddress.IPv4Address | ipaddress.IPv6Address:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    return ipaddress.ip_address(str(value))


def _to4(value) -> str | None:
    ip = _ip(value)
    if ip.version == 4:
        return str(ip)
    mapped = ip.ipv4_mapped
    return str(mapped) if mapped is not None else None


def _to16(value) -> str:
    ip = _ip(value)
    if ip.version == 4:
        return "::ffff:" + str(ip)
    return str(ip)


def empty_response_from_message(msg: dns.message.Message) -> dns.message.Message:
    """Build an answerless response carrying the query's header and question."""
    dst = dns.message.Message(id=msg.id)
    flags = (msg.flags | dns.flags.QR | dns.flags.RA) & ~(dns.flags.CD | dns.flags.AD)
    dst.flags = flags
    dst.question = [dns.rrset.RRset(q.name, q.rdclass, q.rdtype) for q in msg.question]
    if msg.edns >= 0:
        dst.use_edns(0, msg.ednsflags & dns.flags.DO, msg.payload)
    return dst


def truncated_response(packet: bytes) -> bytes:
    """Return an empty response to the packed query with the TC flag set."""
    src = dns.message.from_wire(packet)
    dst = empty_response_from_message(src)
    dst.flags |= dns.flags.TC
    return dst.to_wire()


def _rr(name, rdata, ttl: int) -> dns.rrset.RRset:
    return dns.rrset.from_rdata(name, ttl, rdata)


def _forged_answer(question, ipv4, ipv6, ttl: int) -> dns.rrset.RRset | None:
    if ipv4 is not None and question.rdtype == dns.rdatatype.A:
        address = _to4(ipv4)
        if address is not None:
            return _rr(question.name, A(dns.rdataclass.IN, dns.rdatatype.A, address), ttl)
    elif ipv6 is not None and question.rdtype == dns.rdatatype.AAAA:
        return _rr(
            question.name,
            AAAA(dns.rdataclass.IN, dns.rdatatype.AAAA, _to16(ipv6)),
            ttl,
        )
    return None


def _hinfo(question, cpu: str, ttl: int) -> dns.rrset.RRset:
    rdata = HINFO(dns.rdataclass.IN, dns.rdatatype.HINFO, cpu.encode(), BLOCKED_OS.encode())
    return _rr(question.name, rdata, ttl)


def refused_response_from_message(
    msg: dns.message.Message, refused_code: bool, ipv4=None, ipv6=None, ttl: int = 0
) -> dns.message.Message:
    """Response to a blocked query: REFUSED, a forged address or an HINFO record."""
    dst = empty_response_from_message(msg)
    code, text = EDE_FILTERED, None
    if refused_code:
        dst.set_rcode(dns.rcode.REFUSED)
    else:
        dst.set_rcode(dns.rcode.NOERROR)
        if msg.question:
            question = msg.question[0]
            forged = _forged_answer(question, ipv4, ipv6, ttl)
            if forged is not None:
                dst.answer = [forged]
                code, text = EDE_FORGED_ANSWER, BLOCKED_EXTRA_TEXT
            else:
                dst.answer = [_hinfo(question, BLOCKED_CPU, ttl)]
    if dst.edns >= 0:
        ede = dns.edns.EDEOption(code, text)
        dst.use_edns(dst.edns, dst.ednsflags, dst.payload, options=[*dst.options, ede])
    return dst


def name_error_response_from_message(
    msg: dns.message.Message, refused_code: bool, ipv4=None, ipv6=None, ttl: int = 0
) -> dns.message.Message:
    """Like refused_response_from_message, but answering NXDOMAIN."""
    dst = empty_response_from_message(msg)
    if refused_code:
        dst.set_rcode(dns.rcode.REFUSED)
        return dst
    dst.set_rcode(dns.rcode.NXDOMAIN)
    if msg.question:
        question = msg.question[0]
        forged = _forged_answer(question, ipv4, ipv6, ttl)
        dst.answer = [forged if forged is not None else _hinfo(question, BLOCKED_NX_CPU, 1)]
    return dst


def has_tc_flag(packet: bytes) -> bool:
    """True if the packed message has the truncation flag."""
    return packet[2] & 2 == 2


def transaction_id(packet: bytes) -> int:
    """The 16-bit message id of a packed message."""
    return int.from_bytes(packet[0:2], "big")


def set_transaction_id(packet: bytes, tid: int) -> bytes:
    """Return a copy of the packed message with a new message id."""
    return (tid & 0xFFFF).to_bytes(2, "big") + bytes(packet[2:])


def rcode(packet: bytes) -> int:
    """The 4-bit response code of a packed message."""
    return packet[3] & 0xF


def normalize_raw_qname(name: bytes) -> bytes:
    """Lower-case the ASCII letters of a raw name."""
    return bytes(name).lower()


def normalize_qname(name: str) -> str:
    """Lower-case an ASCII name and drop its trailing dot; the root stays '.'."""
    if not name or name == ".":
        return "."
    if name.endswith("."):
        name = name[:-1]
    if not name.isascii():
        raise QNameError("Query name is not an ASCII string")
    return name.lower()


def get_min_ttl(
    msg: dns.message.Message,
    min_ttl: int,
    max_ttl: int,
    cache_neg_min_ttl: int,
    cache_neg_max_ttl: int,
) -> int:
    """How many seconds a response may be cached."""
    code = msg.rcode()
    if code not in (dns.rcode.NOERROR, dns.rcode.NXDOMAIN) or (
        not msg.answer and not msg.authority
    ):
        return cache_neg_min_ttl
    ttl = max_ttl if code == dns.rcode.NOERROR else cache_neg_max_ttl
    section = msg.answer if msg.answer else msg.authority
    ttl = min([ttl, *(rrset.ttl for rrset in section)])
    floor = min_ttl if code == dns.rcode.NOERROR else cache_neg_min_ttl
    return max(ttl, floor)


def _ttl_rrsets(msg: dns.message.Message):
    yield from msg.answer
    yield from msg.authority
    yield from (r for r in msg.additional if r.rdtype != dns.rdatatype.OPT)


def set_max_ttl(msg: dns.message.Message, ttl: int) -> None:
    """Cap every record's TTL."""
    for rrset in _ttl_rrsets(msg):
        if ttl < rrset.ttl:
            rrset.ttl = ttl


def update_ttl(msg: dns.message.Message, expiration: float) -> None:
    """Set every TTL to the seconds left until expiration (epoch seconds), rounded."""
    until = expiration - time.time()
    ttl = 0
    if until > 0:
        ttl = int(until)
        if until - ttl >= 0.5:
            ttl += 1
    for rrset in _ttl_rrsets(msg):
        rrset.ttl = ttl


def _has_padding(msg: dns.message.Message) -> bool:
    return any(opt.otype == dns.edns.OptionType.PADDING for opt in msg.options)


def has_edns0_padding(packet: bytes) -> bool:
    """True if the packed message carries an EDNS0 padding option."""
    msg = dns.message.from_wire(packet)
    return msg.edns >= 0 and _has_padding(msg)


def add_edns0_padding_if_none_found(
    msg: dns.message.Message, unpadded_packet: bytes, padding_len: int
) -> bytes:
    """Add an EDNS0 padding option to msg and pack it, unless one is present."""
    if msg.edns < 0:
        msg.use_edns(0, 0, MAX_DNS_PACKET_SIZE)
    if _has_padding(msg):
        return unpadded_packet
    padding = dns.edns.GenericOption(dns.edns.OptionType.PADDING, b"X" * padding_len)
    msg.use_edns(msg.edns, msg.ednsflags, msg.payload, options=[*msg.options, padding])
    return msg.to_wire()


def remove_edns0_options(msg: dns.message.Message) -> bool:
    """Drop all EDNS0 options; False if the message has no EDNS0 record."""
    if msg.edns < 0:
        return False
    msg.use_edns(msg.edns, msg.ednsflags, msg.payload, options=[])
    return True


def pack_txt_rr(s: str) -> bytes:
    """Decode the escapes of a presentation-format TXT string into bytes."""
    data = s.encode("utf-8")
    out = bytearray()
    i, n = 0, len(data)
    while i < n:
        c = data[i]
        if c != 0x5C:
            out.append(c)
            i += 1
            continue
        i += 1
        if i == n:
            break
        if i + 2 < n and all(is_digit(d) for d in data[i : i + 3]):
            value = (data[i] - 0x30) * 100 + (data[i + 1] - 0x30) * 10 + (data[i + 2] - 0x30)
            out.append(value & 0xFF)
            i += 3
            continue
        out.append({0x74: 0x09, 0x72: 0x0D, 0x6E: 0x0A}.get(data[i], data[i]))
        i += 1
    return bytes(out)


def doh_padded_len(unpadded_len: int) -> int:
    """Size a DoH response is padded to."""
    return next((b for b in _DOH_BOUNDARIES if b >= unpadded_len), unpadded_len)