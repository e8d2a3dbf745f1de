"""DNSCrypt query padding and size constants."""

from __future__ import annotations

from .common import CLIENT_MAGIC_LEN, MAX_DNS_UDP_PACKET_SIZE, SERVER_MAGIC

NONCE_SIZE = 24
HALF_NONCE_SIZE = NONCE_SIZE // 2
TAG_SIZE = 16
PUBLIC_KEY_SIZE = 32
QUERY_OVERHEAD = CLIENT_MAGIC_LEN + PUBLIC_KEY_SIZE + HALF_NONCE_SIZE + TAG_SIZE
RESPONSE_OVERHEAD = len(SERVER_MAGIC) + NONCE_SIZE + TAG_SIZE


class PaddingError(ValueError):
    """The padding of a decrypted packet is malformed."""


def pad(packet: bytes, min_size: int) -> bytes:
    """Append the 0x80 delimiter and zeros up to min_size bytes."""
    padded = bytes(packet) + b"\x80"
    if len(padded) < min_size:
        padded += b"\x00" * (min_size - len(padded))
    return padded


def unpad(packet: bytes) -> bytes:
    """Remove trailing zeros and the 0x80 delimiter."""
    stripped = bytes(packet).rstrip(b"\x00")
    if not stripped:
        raise PaddingError("Invalid padding (short packet)")
    if stripped[-1] != 0x80:
        raise PaddingError("Invalid padding (delimiter not found)")
    return stripped[:-1]


def padded_query_length(min_question_size: int) -> int:
    """Length of a padded query: a multiple of 64, capped at the UDP maximum."""
    rounded = (max(min_question_size, QUERY_OVERHEAD) + 1 + 63) & ~63
    return min(MAX_DNS_UDP_PACKET_SIZE, rounded)