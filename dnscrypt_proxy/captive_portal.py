"""Answers to captive-portal detection queries, before and after start-up."""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading

import dns.exception
import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rrset
from dns.rdtypes.IN.A import A
from dns.rdtypes.IN.AAAA import AAAA

from .common import (
    MAX_DNS_PACKET_SIZE,
    read_text_file,
    string_two_fields,
    trim_and_strip_inline_comments,
)
from .context import QueryContext
from .dnsutils import QNameError, empty_response_from_message, normalize_qname

log = logging.getLogger(__name__)

IPAddress = "ipaddress.IPv4Address | ipaddress.IPv6Address"


class CaptivePortalSyntaxError(ValueError):
    """A line of the captive portal map cannot be parsed."""


def _as_ipv4(ip) -> str | None:
    if ip.version == 4:
        return str(ip)
    mapped = ip.ipv4_mapped
    return str(mapped) if mapped is not None else None


class CaptivePortalMap(dict):
    """Normalized query names mapped to the addresses returned for them."""

    def get_entry(self, msg: dns.message.Message):
        """Return (question, ips) if msg asks for a mapped name, else None."""
        if len(msg.question) != 1:
            return None
        question = msg.question[0]
        try:
            name = normalize_qname(question.name.to_text())
        except QNameError:
            return None
        ips = self.get(name)
        if ips is None:
            return None
        if question.rdclass != dns.rdataclass.IN:
            return None
        return question, ips


def parse_captive_portal_map(text: str) -> CaptivePortalMap:
    """Parse 'name ip[,ip...]' lines into a CaptivePortalMap."""
    ips_map = CaptivePortalMap()
    for line_no, line in enumerate(text.split("\n"), start=1):
        line = trim_and_strip_inline_comments(line)
        if not line:
            continue
        fields = string_two_fields(line)
        if fields is None:
            raise CaptivePortalSyntaxError(
                f"Syntax error for a captive portal rule at line {line_no}"
            )
        name, ips_str = fields
        try:
            name = normalize_qname(name)
        except QNameError:
            continue
        ips = []
        for ip_str in ips_str.split(","):
            try:
                ips.append(ipaddress.ip_address(ip_str.strip()))
            except ValueError:
                raise CaptivePortalSyntaxError(
                    f"Syntax error for a captive portal rule at line {line_no}"
                ) from None
        ips_map[name] = ips
    return ips_map


def handle_captive_portal_query(msg: dns.message.Message, question, ips) -> dns.message.Message:
    """Build the response to a captive portal query from the mapped addresses."""
    response = empty_response_from_message(msg)
    ttl = 1
    rdatas = []
    if question.rdtype == dns.rdatatype.A:
        for ip in ips:
            address = _as_ipv4(ip)
            if address is not None:
                rdatas.append(A(dns.rdataclass.IN, dns.rdatatype.A, address))
    elif question.rdtype == dns.rdatatype.AAAA:
        for ip in ips:
            if _as_ipv4(ip) is None:
                rdatas.append(AAAA(dns.rdataclass.IN, dns.rdatatype.AAAA, str(ip)))
    if rdatas:
        response.answer = [dns.rrset.from_rdata_list(question.name, ttl, rdatas)]
    log.info(
        "Query for captive portal detection: [%s] (%s)",
        question.name.to_text(),
        dns.rdatatype.to_text(question.rdtype),
    )
    return response


def _split_listen_address(listen_addr: str) -> tuple[str, int]:
    idx = listen_addr.rfind(":")
    if not listen_addr or idx < 0:
        raise ValueError(f"Missing port in address [{listen_addr}]")
    host, port_str = listen_addr[:idx], listen_addr[idx + 1 :]
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not port_str.isdigit():
        raise ValueError(f"Invalid port in address [{listen_addr}]")
    return host, int(port_str)


def _bind_udp(listen_addr: str) -> socket.socket:
    host, port = _split_listen_address(listen_addr)
    first = listen_addr[:1]
    family = socket.AF_INET if "0" <= first <= "9" else socket.AF_UNSPEC
    infos = socket.getaddrinfo(host or None, port, family, socket.SOCK_DGRAM, 0, socket.AI_PASSIVE)
    fam, sock_type, proto, _, sockaddr = infos[0]
    sock = socket.socket(fam, sock_type, proto)
    try:
        sock.bind(sockaddr)
    except OSError:
        sock.close()
        raise
    return sock


class CaptivePortalHandler:
    """UDP listeners answering captive portal queries until stopped."""

    def __init__(self, ips_map: CaptivePortalMap) -> None:
        self.ips_map = ips_map
        self.addresses: list[tuple] = []
        self._cancel = threading.Event()
        self._threads: list[threading.Thread] = []

    def respond(self, packet: bytes) -> bytes | None:
        """Packed response to a packed query, or None if it is not handled."""
        try:
            msg = dns.message.from_wire(packet)
        except (dns.exception.DNSException, ValueError):
            return None
        entry = self.ips_map.get_entry(msg)
        if entry is None:
            return None
        question, ips = entry
        try:
            return handle_captive_portal_query(msg, question, ips).to_wire()
        except dns.exception.DNSException:
            return None

    def add_listener(self, listen_addr: str) -> None:
        """Bind a UDP socket to listen_addr ('host:port') and serve it in a thread."""
        sock = _bind_udp(listen_addr)
        self.addresses.append(sock.getsockname())
        thread = threading.Thread(
            target=self._serve, args=(sock,), name=f"captive-portal-{listen_addr}", daemon=True
        )
        self._threads.append(thread)
        thread.start()

    def _serve(self, sock: socket.socket) -> None:
        with sock:
            sock.settimeout(1.0)
            while not self._cancel.is_set():
                try:
                    packet, client_addr = sock.recvfrom(MAX_DNS_PACKET_SIZE - 1)
                except TimeoutError:
                    continue
                except OSError as exc:
                    if not self._cancel.is_set():
                        log.warning("%s", exc)
                    break
                if self._cancel.is_set():
                    break
                response = self.respond(packet)
                if response is not None:
                    try:
                        sock.sendto(response, client_addr)
                    except OSError:
                        pass

    @property
    def running(self) -> bool:
        """True while any listener thread is alive."""
        return any(thread.is_alive() for thread in self._threads)

    def stop(self) -> None:
        """Stop every listener and wait for it to finish."""
        self._cancel.set()
        for thread in self._threads:
            thread.join()

    def __enter__(self) -> CaptivePortalHandler:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()


def cold_start(map_file: str | None, listen_addresses) -> CaptivePortalHandler | None:
    """Load the map and answer captive portal queries while the network comes up.

    Returns None when no map file is configured. Raises the last listener
    error if no listener could be started.
    """
    if not map_file:
        return None
    ips_map = parse_captive_portal_map(read_text_file(map_file))
    handler = CaptivePortalHandler(ips_map)
    last_error: Exception | None = None
    started = False
    for listen_addr in listen_addresses:
        try:
            handler.add_listener(listen_addr)
        except (OSError, ValueError) as exc:
            last_error = exc
        else:
            started = True
    if not started and last_error is not None:
        handler.stop()
        raise last_error
    return handler


class CaptivePortalPlugin:
    """Answers the test queries operating systems send to detect captive portals."""

    name = "captive portal handlers"
    description = "Handle test queries operating systems make to detect Wi-Fi captive portal"

    def __init__(self, captive_portal_map: CaptivePortalMap) -> None:
        self.captive_portal_map = captive_portal_map
        log.info("Captive portals handler enabled")

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        entry = self.captive_portal_map.get_entry(msg)
        if entry is None:
            return
        question, ips = entry
        ctx.synthesize(handle_captive_portal_query(msg, question, ips))