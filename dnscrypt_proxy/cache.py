"""DNS response cache with SIEVE eviction."""

from __future__ import annotations

import copy
import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Generic, Hashable, TypeVar

import dns.flags
import dns.message
import dns.rcode

from .context import QueryContext
from .dnsutils import get_min_ttl, normalize_raw_qname, update_ttl

STALE_RESPONSE_TTL = 30
DEFAULT_CACHE_SIZE = 512

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def _hasher():
    try:
        return hashlib.new("sha512_256")
    except ValueError:
        return hashlib.blake2b(digest_size=32)


def compute_cache_key(msg: dns.message.Message, dnssec: bool) -> bytes:
    """32-byte key from the question's type, class, name and the DO bit."""
    question = msg.question[0]
    h = _hasher()
    h.update(question.rdtype.to_bytes(2, "little"))
    h.update(question.rdclass.to_bytes(2, "little"))
    h.update(b"\x01" if dnssec else b"\x00")
    h.update(normalize_raw_qname(question.name.to_text().encode("ascii", "replace")))
    return h.digest()


class _Node:
    __slots__ = ("key", "value", "visited", "prev", "next")

    def __init__(self, key, value) -> None:
        self.key = key
        self.value = value
        self.visited = False
        self.prev: _Node | None = None
        self.next: _Node | None = None


class SieveCache(Generic[K, V]):
    """Fixed-capacity map evicting entries with the SIEVE algorithm."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("cache capacity must be positive")
        self.capacity = capacity
        self._nodes: dict[K, _Node] = {}
        self._head: _Node | None = None
        self._tail: _Node | None = None
        self._hand: _Node | None = None

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, key: object) -> bool:
        return key in self._nodes

    def get(self, key: K) -> V | None:
        """Return the value for key, or None, marking it as recently used."""
        node = self._nodes.get(key)
        if node is None:
            return None
        node.visited = True
        return node.value

    def add(self, key: K, value: V) -> None:
        """Insert or replace a value, evicting one entry if full."""
        node = self._nodes.get(key)
        if node is not None:
            node.value = value
            node.visited = True
            return
        if len(self._nodes) >= self.capacity:
            self._evict()
        node = _Node(key, value)
        node.next = self._head
        if self._head is not None:
            self._head.prev = node
        self._head = node
        if self._tail is None:
            self._tail = node
        self._nodes[key] = node

    def _evict(self) -> None:
        node = self._hand or self._tail
        while node.visited:
            node.visited = False
            node = node.prev or self._tail
        self._hand = node.prev
        self._unlink(node)
        del self._nodes[node.key]

    def _unlink(self, node: _Node) -> None:
        if node.prev is not None:
            node.prev.next = node.next
        else:
            self._head = node.next
        if node.next is not None:
            node.next.prev = node.prev
        else:
            self._tail = node.prev
        node.prev = node.next = None


@dataclass
class CachedResponse:
    """A cached message and when it expires, in epoch seconds."""

    msg: dns.message.Message
    expiration: float


class ResponseCache:
    """Thread-safe response cache, created on first store."""

    def __init__(self, size: int | None = None) -> None:
        self.size = size
        self._lock = threading.RLock()
        self._cache: SieveCache[bytes, CachedResponse] | None = None

    def lookup(self, key: bytes) -> CachedResponse | None:
        """Return a copy of the cached entry, or None."""
        with self._lock:
            if self._cache is None:
                return None
            entry = self._cache.get(key)
            if entry is None:
                return None
            return CachedResponse(copy.deepcopy(entry.msg), entry.expiration)

    def store(self, key: bytes, msg: dns.message.Message, expiration: float) -> None:
        """Cache a copy of msg until expiration (epoch seconds)."""
        entry = CachedResponse(copy.deepcopy(msg), expiration)
        with self._lock:
            if self._cache is None:
                self._cache = SieveCache(self.size or DEFAULT_CACHE_SIZE)
            self._cache.add(key, entry)


class CacheReaderPlugin:
    """Answers queries from the cache; expired entries are kept as stale answers."""

    name = "cache"
    description = "DNS cache (reader)."

    def __init__(self, cache: ResponseCache) -> None:
        self.cache = cache

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        entry = self.cache.lookup(compute_cache_key(msg, ctx.dnssec))
        if entry is None:
            return
        synth = entry.msg
        synth.id = msg.id
        synth.flags |= dns.flags.QR
        synth.question = list(msg.question)
        now = time.time()
        if now > entry.expiration:
            update_ttl(synth, now + STALE_RESPONSE_TTL)
            ctx.session_data["stale"] = synth
            return
        update_ttl(synth, entry.expiration)
        ctx.synthesize(synth)
        ctx.cache_hit = True


class CacheWriterPlugin:
    """Stores cacheable responses."""

    name = "cache_response"
    description = "DNS cache (writer)."

    def __init__(self, cache: ResponseCache) -> None:
        self.cache = cache

    def eval(self, ctx: QueryContext, msg: dns.message.Message) -> None:
        if msg.rcode() not in (dns.rcode.NOERROR, dns.rcode.NXDOMAIN, dns.rcode.NOTAUTH):
            return
        if msg.flags & dns.flags.TC:
            return
        key = compute_cache_key(msg, ctx.dnssec)
        ttl = get_min_ttl(
            msg,
            ctx.cache_min_ttl,
            ctx.cache_max_ttl,
            ctx.cache_neg_min_ttl,
            ctx.cache_neg_max_ttl,
        )
        expiration = time.time() + ttl
        if self.cache.size is None:
            self.cache.size = ctx.cache_size
        self.cache.store(key, msg, expiration)
        update_ttl(msg, expiration)