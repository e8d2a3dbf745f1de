"""Blocking and allowing of responses by the IP addresses they contain."""

from __future__ import annotations

import ipaddress
import logging
import time
from dataclasses import dataclass, field
from typing import Iterator

import dns.message
import dns.rdataclass
import dns.rdatatype

from .common import read_text_file, string_quote, trim_and_strip_inline_comments
from .context import QueryContext, log_timestamp
from .logger import open_log

log = logging.getLogger(__name__)

LOG_FORMATS = ("tsv", "ltsv")


@dataclass
class IPRuleSet:
    """Exact addresses and address prefixes (rules ending with '*')."""

    ips: set[str] = field(default_factory=set)
    prefixes: set[str] = field(default_factory=set)

    def match(self, ip_str: str) -> str | None:
        """Return the rule matching the address, or None."""
        if ip_str in self.ips:
            return ip_str
        for length in range(len(ip_str), 0, -1):
            candidate = ip_str[:length]
            if candidate in self.prefixes:
                if length == len(ip_str) or ip_str[length] in ".:":
                    return candidate + "*"
                return None
        return None


def _is_ip(text: str) -> bool:
    if "%" in text:
        return False
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def parse_ip_rules(text: str) -> IPRuleSet:
    """Parse one address or 'prefix*' rule per line; bad rules are logged and skipped."""
    rules = IPRuleSet()
    for line_no, line in enumerate(text.split("\n")):
        line = trim_and_strip_inline_comments(line)
        if not line:
            continue
        trailing_star = line.endswith("*")
        if len(line) < 2 or (trailing_star and _is_ip(line)):
            log.error("Suspicious IP rule [%s] at line %d", line, line_no)
            continue
        if trailing_star:
            line = line[:-1]
        if line.endswith((":", ".")):
            line = line[:-1]
        if not line:
            log.error("Empty IP rule at line %d", line_no)
            continue
        if "*" in line:
            log.error(
                "Invalid rule: [%s] - wildcards can only be used as a suffix at line %d",
                line,
                line_no,
            )
            continue
        line = line.lower()
        if trailing_star:
            rules.prefixes.add(line)
        else:
            rules.ips.add(line)
    return rules


def answer_ips(msg: dns.message.Message) -> Iterator[str]:
    """Addresses of the IN A and AAAA records in the answer section.

    IPv4-mapped IPv6 addresses are given in IPv4 form.
    """
    for rrset in msg.answer:
        if rrset.rdclass != dns.rdataclass.IN:
            continue
        if rrset.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
            continue
        for rdata in rrset:
            ip = ipaddress.ip_address(rdata.address)
            if ip.version == 6 and ip.ipv4_mapped is not None:
                ip = ip.ipv4_mapped
            yield str(ip)


def _find_match(rules: IPRuleSet, msg: dns.message.Message) -> tuple[str, str] | None:
    for ip_str in answer_ips(msg):
        reason = rules.match(ip_str)
        if reason is not None:
            return ip_str, reason
    return None


class _IPFilterPlugin:
    def __init__(self, rules: IPRuleSet, logger=None, log_format: str = "tsv") -> None:
        if log_format not in LOG_FORMATS:
            raise ValueError(f"Unexpected log format: [{log_format}]")
        self.rules = rules
        self.logger = logger
        self.log_format = log_format

    @classmethod
    def from_file(
        cls,
        rules_file: str,
        log_file: str | None = None,
        log_format: str = "tsv",
        max_size: float = 10,
        max_age: int = 7,
        max_backups: int = 1,
    ):
        """Load the rules from a file and open the optional log file."""
        log.info("Loading the set of IP rules from [%s]", rules_file)
        rules = parse_ip_rules(read_text_file(rules_file))
        logger = open_log(log_file, max_size, max_age, max_backups) if log_file else None
        return cls(rules, logger, log_format)

    def _log(self, ctx: QueryContext, ip_str: str, reason: str) -> None:
        if self.logger is None:
            return
        client_ip = ctx.client_ip()
        if client_ip is None:
            return
        if self.log_format == "tsv":
            line = (
                f"{log_timestamp()}\t{client_ip}\t{string_quote(ctx.qname)}\t"
                f"{string_quote(ip_str)}\t{string_quote(reason)}\n"
            )
        else:
            line = (
                f"time:{int(time.time())}\thost:{client_ip}\tqname:{string_quote(ctx.qname)}\t"
                f"ip:{string_quote(ip_str)}\tmessage:{string_quote(reason)}\n"
            )
        self.logger.write(line)


class BlockIPPlugin(_IPFilterPlugin):
    """Rejects responses containing blocked addresses."""

    name = "block_ip"
    description = "Block responses containing specific IP addresses"

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if ctx.session_data.get("whitelisted") is not None:
            return
        found = _find_match(self.rules, msg)
        if found is None:
            return
        ctx.reject()
        self._log(ctx, *found)


class AllowIPPlugin(_IPFilterPlugin):
    """Marks responses containing allowed addresses as whitelisted."""

    name = "allow_ip"
    description = "Allows DNS queries containing specific IP addresses"

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        found = _find_match(self.rules, msg)
        if found is None:
            return
        ctx.session_data["whitelisted"] = True
        self._log(ctx, *found)