"""Blocking and allowing of queries by name, with optional weekly schedules."""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping

import dns.message
import dns.rdataclass
import dns.rdatatype

from .common import read_text_file, string_quote, trim_and_strip_inline_comments
from .context import QueryContext, log_timestamp
from .dnsutils import normalize_qname
from .logger import open_log
from .pattern_matcher import PatternMatcher, PatternSyntaxError

log = logging.getLogger(__name__)

ALIASES_LIMIT = 8
LOG_FORMATS = ("tsv", "ltsv")


def parse_name_rules(text: str, weekly_ranges: Mapping[str, Any] | None = None) -> PatternMatcher:
    """Parse name rules, each optionally followed by '@schedule'.

    A schedule is any object with a match() method telling whether it is
    active now. Malformed rules are logged and skipped.
    """
    weekly_ranges = weekly_ranges or {}
    matcher = PatternMatcher()
    for line_no, line in enumerate(text.split("\n"), start=1):
        line = trim_and_strip_inline_comments(line)
        if not line:
            continue
        parts = line.split("@")
        time_range_name = ""
        if len(parts) == 2:
            line = parts[0].strip()
            time_range_name = parts[1].strip()
        elif len(parts) > 2:
            log.error("Syntax error in name rules at line %d -- Unexpected @ character", line_no)
            continue
        ranges = None
        if time_range_name:
            ranges = weekly_ranges.get(time_range_name)
            if ranges is None:
                log.error("Time range [%s] not found at line %d", time_range_name, line_no)
        try:
            matcher.add(line, ranges, line_no)
        except PatternSyntaxError as exc:
            log.error("%s", exc)
    return matcher


def _log_line(log_format: str, client_ip: str, qname: str, reason: str) -> str:
    if log_format == "tsv":
        return f"{log_timestamp()}\t{client_ip}\t{string_quote(qname)}\t{string_quote(reason)}\n"
    return (
        f"time:{int(time.time())}\thost:{client_ip}\tqname:{string_quote(qname)}\t"
        f"message:{string_quote(reason)}\n"
    )


def _check_format(log_format: str) -> None:
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unexpected log format: [{log_format}]")


def _load(rules_file, weekly_ranges, log_file, max_size, max_age, max_backups):
    log.info("Loading the set of name rules from [%s]", rules_file)
    matcher = parse_name_rules(read_text_file(rules_file), weekly_ranges)
    logger = open_log(log_file, max_size, max_age, max_backups) if log_file else None
    return matcher, logger


class BlockedNames:
    """Block rules shared by the query and response name plugins."""

    def __init__(self, pattern_matcher: PatternMatcher, logger=None, log_format: str = "tsv") -> None:
        _check_format(log_format)
        self.pattern_matcher = pattern_matcher
        self.logger = logger
        self.log_format = log_format

    @classmethod
    def from_file(
        cls,
        rules_file: str,
        weekly_ranges: Mapping[str, Any] | None = None,
        log_file: str | None = None,
        log_format: str = "tsv",
        max_size: float = 10,
        max_age: int = 7,
        max_backups: int = 1,
    ) -> BlockedNames:
        """Load the rules from a file and open the optional log file."""
        matcher, logger = _load(rules_file, weekly_ranges, log_file, max_size, max_age, max_backups)
        return cls(matcher, logger, log_format)

    def check(self, ctx: QueryContext, qname: str, alias_for: str | None = None) -> bool:
        """Reject the query if qname matches an active rule; True when logged as blocked."""
        match = self.pattern_matcher.eval(qname)
        if match is None:
            return False
        reason = match.reason
        if alias_for is not None:
            reason = f"{reason} (alias for [{alias_for}])"
        if match.value is not None and not match.value.match():
            return False
        ctx.reject()
        if self.logger is not None:
            client_ip = ctx.client_ip()
            if client_ip is None:
                return False
            self.logger.write(_log_line(self.log_format, client_ip, qname, reason))
        return True


class BlockNamePlugin:
    """Rejects queries whose name matches a block rule."""

    name = "block_name"
    description = "Block DNS queries matching name patterns"

    def __init__(self, blocked_names: BlockedNames | None) -> None:
        self.blocked_names = blocked_names

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if self.blocked_names is None or ctx.session_data.get("whitelisted") is not None:
            return
        self.blocked_names.check(ctx, ctx.qname)


def _alias_targets(msg: dns.message.Message):
    for rrset in msg.answer:
        if rrset.rdclass != dns.rdataclass.IN:
            continue
        for rdata in rrset:
            if rrset.rdtype == dns.rdatatype.CNAME:
                yield rdata.target.to_text()
            elif rrset.rdtype in (dns.rdatatype.SVCB, dns.rdatatype.HTTPS) and rdata.priority == 0:
                yield rdata.target.to_text()


class BlockNameResponsePlugin:
    """Rejects responses whose aliases (CNAME, SVCB, HTTPS) match a block rule."""

    name = "block_name"
    description = "Block DNS responses matching name patterns"

    def __init__(self, blocked_names: BlockedNames | None) -> None:
        self.blocked_names = blocked_names

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if self.blocked_names is None or ctx.session_data.get("whitelisted") is not None:
            return
        alias_for = ctx.qname
        aliases_left = ALIASES_LIMIT
        for target in _alias_targets(msg):
            target = normalize_qname(target)
            if self.blocked_names.check(ctx, target, alias_for):
                return
            aliases_left -= 1
            if aliases_left == 0:
                break


class AllowNamePlugin:
    """Marks queries whose name matches an allow rule as whitelisted."""

    name = "allow_name"
    description = "Allow names matching patterns"

    def __init__(self, pattern_matcher: PatternMatcher, logger=None, log_format: str = "tsv") -> None:
        _check_format(log_format)
        self.pattern_matcher = pattern_matcher
        self.logger = logger
        self.log_format = log_format

    @classmethod
    def from_file(
        cls,
        rules_file: str,
        weekly_ranges: Mapping[str, Any] | None = None,
        log_file: str | None = None,
        log_format: str = "tsv",
        max_size: float = 10,
        max_age: int = 7,
        max_backups: int = 1,
    ) -> AllowNamePlugin:
        """Load the rules from a file and open the optional log file."""
        matcher, logger = _load(rules_file, weekly_ranges, log_file, max_size, max_age, max_backups)
        return cls(matcher, logger, log_format)

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        match = self.pattern_matcher.eval(ctx.qname)
        if match is None:
            return
        if match.value is not None and not match.value.match():
            return
        ctx.session_data["whitelisted"] = True
        if self.logger is None:
            return
        client_ip = ctx.client_ip()
        if client_ip is None:
            return
        self.logger.write(_log_line(self.log_format, client_ip, ctx.qname, match.reason))