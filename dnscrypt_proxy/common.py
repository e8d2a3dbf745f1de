"""Shared constants and small helpers for packets, strings and files."""

from __future__ import annotations

import logging
import os
import posixpath
import re
import socket
import stat
import unicodedata

log = logging.getLogger(__name__)

CLIENT_MAGIC_LEN = 8
MAX_HTTP_BODY_LENGTH = 1_000_000

CERT_MAGIC = b"DNSC"
SERVER_MAGIC = bytes((0x72, 0x36, 0x66, 0x6E, 0x76, 0x57, 0x6A, 0x38))
MIN_DNS_PACKET_SIZE = 12 + 5
MAX_DNS_PACKET_SIZE = 4096
MAX_DNS_UDP_PACKET_SIZE = 4096
MAX_DNS_UDP_SAFE_PACKET_SIZE = 1252
INITIAL_MIN_QUESTION_SIZE = 512

_UTF8_BOM = b"\xef\xbb\xbf"
_PORT_RE = re.compile(r"[+-]?[0-9]+")
_SIMPLE_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}


class PacketSizeError(ValueError):
    """A length-prefixed packet is too large or too short."""


def prefix_with_size(packet: bytes) -> bytes:
    """Prepend the 16-bit big-endian length used by DNS over TCP."""
    if len(packet) > 0xFFFF:
        raise PacketSizeError("Packet too large")
    return len(packet).to_bytes(2, "big") + bytes(packet)


def read_prefixed(sock: socket.socket) -> bytes:
    """Read one length-prefixed DNS packet from a stream socket."""
    buf = bytearray()
    length: int | None = None
    while True:
        chunk = sock.recv(2 + MAX_DNS_PACKET_SIZE - len(buf))
        if not chunk:
            raise ConnectionError("Connection closed before the packet was complete")
        buf += chunk
        if length is None and len(buf) >= 2:
            length = int.from_bytes(buf[:2], "big")
            if length > MAX_DNS_PACKET_SIZE - 1:
                raise PacketSizeError("Packet too large")
            if length < MIN_DNS_PACKET_SIZE:
                raise PacketSizeError("Packet too short")
        if length is not None and len(buf) >= 2 + length:
            return bytes(buf[2 : 2 + length])


def string_reverse(s: str) -> str:
    """Return the string with its characters in reverse order."""
    return s[::-1]


def string_two_fields(s: str) -> tuple[str, str] | None:
    """Split a line at its first whitespace into two non-empty fields."""
    if len(s) < 3:
        return None
    pos = next((i for i, c in enumerate(s) if c.isspace()), -1)
    if pos == -1:
        return None
    first, second = s[:pos].strip(), s[pos + 1 :].strip()
    if not first or not second:
        return None
    return first, second


def _is_graphic(c: str) -> bool:
    category = unicodedata.category(c)
    return category[0] in "LMNPS" or category == "Zs"


def _escape_char(c: str) -> str:
    if c in ('"', "\\"):
        return "\\" + c
    if _is_graphic(c):
        return c
    if c in _SIMPLE_ESCAPES:
        return _SIMPLE_ESCAPES[c]
    cp = ord(c)
    if cp < 0x20 or cp == 0x7F:
        return f"\\x{cp:02x}"
    if 0xD800 <= cp <= 0xDFFF:
        return "\\ufffd"
    if cp < 0x10000:
        return f"\\u{cp:04x}"
    return f"\\U{cp:08x}"


def string_quote(s: str) -> str:
    """Escape a string for log output, without surrounding quotes."""
    return "".join(_escape_char(c) for c in s)


def string_strip_spaces(s: str) -> str:
    """Remove every whitespace character."""
    return "".join(c for c in s if not c.isspace())


def trim_and_strip_inline_comments(s: str) -> str:
    """Drop a trailing '#' comment preceded by a blank, then trim."""
    idx = s.rfind("#")
    if idx >= 0:
        if idx == 0 or s[0] == "#":
            return ""
        if s[idx - 1] in (" ", "\t"):
            s = s[: idx - 1]
    return s.strip()


def extract_host_and_port(s: str, default_port: int) -> tuple[str, int]:
    """Split 'host:port', falling back to the default port."""
    idx = s.rfind(":")
    if 0 <= idx < len(s) - 1:
        port_str = s[idx + 1 :]
        if _PORT_RE.fullmatch(port_str):
            return s[:idx], int(port_str)
    return s, default_port


def read_text_file(filename: str | os.PathLike) -> str:
    """Read a text file, dropping a leading UTF-8 byte order mark."""
    with open(filename, "rb") as fh:
        data = fh.read()
    if data.startswith(_UTF8_BOM):
        data = data[len(_UTF8_BOM) :]
    return data.decode("utf-8", errors="replace")


def is_digit(c: str | int) -> bool:
    """True for an ASCII decimal digit (character or byte value)."""
    if isinstance(c, int):
        return 0x30 <= c <= 0x39
    return len(c) == 1 and "0" <= c <= "9"


def _clean_path(p: str) -> str:
    p = posixpath.normpath(p)
    if p.startswith("//"):
        p = "/" + p.lstrip("/")
    return p


def maybe_writable_by_other_users(p: str | os.PathLike) -> str | None:
    """Return the first path component others can write to, or None.

    Raises OSError if a component cannot be examined.
    """
    p = _clean_path(os.fspath(p))
    while p not in ("/", "."):
        st = os.stat(p)
        is_dir = stat.S_ISDIR(st.st_mode)
        sticky = bool(st.st_mode & stat.S_ISVTX)
        if st.st_mode & 0o002 and not (is_dir and sticky):
            return p
        p = posixpath.dirname(p) or "."
    return None


def warn_if_maybe_writable_by_other_users(p: str | os.PathLike) -> None:
    """Log a warning when a file could be modified by other users."""
    p = os.fspath(p)
    try:
        writable = maybe_writable_by_other_users(p)
    except OSError as exc:
        log.warning("Error while checking if [%s] is accessible: [%s] : [%s]", p, exc.filename, exc)
        return
    if writable is None:
        return
    if writable == p:
        log.critical(
            "[%s] is writable by other system users - If this is not intentional, "
            "it is recommended to fix the access permissions",
            p,
        )
    else:
        log.warning(
            "[%s] can be modified by other system users because [%s] is writable by other users"
            " - If this is not intentional, it is recommended to fix the access permissions",
            p,
            writable,
        )