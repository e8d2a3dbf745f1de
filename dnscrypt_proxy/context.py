"""Per-query state shared by the plugins."""

from __future__ import annotations

import enum
import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import dns.message

from .common import MAX_DNS_PACKET_SIZE

CLIENT_PROTOCOLS = ("udp", "tcp", "local_doh")


class PluginAction(enum.Enum):
    """What the proxy should do with a query after a plugin ran."""

    NONE = "none"
    CONTINUE = "continue"
    REJECT = "reject"
    SYNTH = "synth"


class ReturnCode(enum.Enum):
    """How a query was answered, as written to the query log."""

    @staticmethod
    def _generate_next_value_(name, start, count, last_values):
        return name

    PASS = enum.auto()
    FORWARD = enum.auto()
    REJECT = enum.auto()
    SYNTH = enum.auto()
    CLOAK = enum.auto()
    PARSE_ERROR = enum.auto()


@dataclass
class QueryContext:
    """State of one query while it goes through the plugin chain."""

    qname: str = ""
    client_proto: str = "udp"
    client_addr: tuple | None = None
    question_msg: dns.message.Message | None = None
    session_data: dict[str, Any] = field(default_factory=dict)
    action: PluginAction = PluginAction.CONTINUE
    return_code: ReturnCode = ReturnCode.PASS
    synth_response: dns.message.Message | None = None
    cache_hit: bool = False
    dnssec: bool = False
    server_name: str = "-"
    server_proto: str = "udp"
    timeout: float = 5.0
    request_start: datetime | None = None
    request_end: datetime | None = None
    max_payload_size: int = 0
    original_max_payload_size: int = 0
    max_unencrypted_udp_safe_payload_size: int = 0
    cache_size: int = 512
    cache_min_ttl: int = 60
    cache_max_ttl: int = 86400
    cache_neg_min_ttl: int = 60
    cache_neg_max_ttl: int = 600
    max_dns_packet_size: int = MAX_DNS_PACKET_SIZE

    def client_ip(self) -> str | None:
        """The client's address, or None for internal queries."""
        if self.client_proto not in CLIENT_PROTOCOLS or not self.client_addr:
            return None
        ip = ipaddress.ip_address(str(self.client_addr[0]).split("%", 1)[0])
        if ip.version == 6 and ip.ipv4_mapped is not None:
            return str(ip.ipv4_mapped)
        return str(ip)

    def reject(self) -> None:
        """Mark the query as rejected."""
        self.action = PluginAction.REJECT
        self.return_code = ReturnCode.REJECT

    def synthesize(self, response: dns.message.Message, return_code: ReturnCode | None = None) -> None:
        """Answer the query locally with the given response."""
        self.synth_response = response
        self.action = PluginAction.SYNTH
        if return_code is not None:
            self.return_code = return_code

    @property
    def request_duration_ms(self) -> int:
        """Milliseconds between the start and end of the request, or 0."""
        if self.request_start is None or self.request_end is None:
            return 0
        return int((self.request_end - self.request_start).total_seconds() * 1000)


def log_timestamp(now: datetime | None = None) -> str:
    """Timestamp in the bracketed form used by the TSV logs."""
    now = now or datetime.now()
    return (
        f"[{now.year}-{now.month:02d}-{now.day:02d} "
        f"{now.hour:02d}:{now.minute:02d}:{now.second:02d}]"
    )