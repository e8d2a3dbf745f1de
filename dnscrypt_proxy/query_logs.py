"""Plugins logging queries and queries for nonexistent names."""

from __future__ import annotations

import time
from typing import Iterable

import dns.message
import dns.rcode
import dns.rdatatype

from .common import string_quote
from .context import QueryContext, ReturnCode, log_timestamp
from .logger import open_log

LOG_FORMATS = ("tsv", "ltsv")


def _check_format(log_format: str) -> None:
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unexpected log format: [{log_format}]")


def _qtype_text(rdtype: int) -> str:
    text = dns.rdatatype.to_text(rdtype)
    if text.startswith("TYPE") and text[4:].isdigit():
        return ""
    return text


def _write(logger, line: str) -> None:
    if logger is None:
        raise RuntimeError("Log file not initialized")
    logger.write(line)


class QueryLogPlugin:
    """Logs every query coming from a client."""

    name = "query_log"
    description = "Log DNS queries."

    def __init__(self, logger, log_format: str = "tsv", ignored_qtypes: Iterable[str] = ()) -> None:
        _check_format(log_format)
        self.logger = logger
        self.log_format = log_format
        self.ignored_qtypes = list(ignored_qtypes)

    @classmethod
    def from_file(
        cls,
        log_file: str,
        log_format: str = "tsv",
        ignored_qtypes: Iterable[str] = (),
        max_size: float = 10,
        max_age: int = 7,
        max_backups: int = 1,
    ) -> QueryLogPlugin:
        """Open the log file and build the plugin."""
        return cls(open_log(log_file, max_size, max_age, max_backups), log_format, ignored_qtypes)

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        client_ip = ctx.client_ip()
        if client_ip is None:
            return
        qtype = _qtype_text(msg.question[0].rdtype)
        if any(ignored.lower() == qtype.lower() for ignored in self.ignored_qtypes):
            return
        if ctx.cache_hit or ctx.return_code in (
            ReturnCode.SYNTH,
            ReturnCode.CLOAK,
            ReturnCode.PARSE_ERROR,
        ):
            ctx.server_name = "-"
        return_code = ctx.return_code.value
        duration = ctx.request_duration_ms
        qname = string_quote(ctx.qname)
        server = string_quote(ctx.server_name)
        if self.log_format == "tsv":
            line = (
                f"{log_timestamp()}\t{client_ip}\t{qname}\t{qtype}\t{return_code}\t"
                f"{duration}ms\t{server}\n"
            )
        else:
            cached = 1 if ctx.cache_hit else 0
            line = (
                f"time:{int(time.time())}\thost:{client_ip}\tmessage:{qname}\ttype:{qtype}\t"
                f"return:{return_code}\tcached:{cached}\tduration:{duration}\tserver:{server}\n"
            )
        _write(self.logger, line)


class NxLogPlugin:
    """Logs queries answered with NXDOMAIN."""

    name = "nx_log"
    description = "Log DNS queries for nonexistent zones."

    def __init__(self, logger, log_format: str = "tsv") -> None:
        _check_format(log_format)
        self.logger = logger
        self.log_format = log_format

    @classmethod
    def from_file(
        cls,
        log_file: str,
        log_format: str = "tsv",
        max_size: float = 10,
        max_age: int = 7,
        max_backups: int = 1,
    ) -> NxLogPlugin:
        """Open the log file and build the plugin."""
        return cls(open_log(log_file, max_size, max_age, max_backups), log_format)

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if msg.rcode() != dns.rcode.NXDOMAIN:
            return
        client_ip = ctx.client_ip()
        if client_ip is None:
            return
        qtype = _qtype_text(msg.question[0].rdtype)
        qname = string_quote(ctx.qname)
        if self.log_format == "tsv":
            line = f"{log_timestamp()}\t{client_ip}\t{qname}\t{qtype}\n"
        else:
            line = f"time:{int(time.time())}\thost:{client_ip}\tmessage:{qname}\ttype:{qtype}\n"
        _write(self.logger, line)