"""Matching of query names against block, allow and cloaking rules."""

from __future__ import annotations

import enum
import functools
import logging
import re
from dataclasses import dataclass
from typing import Any

from .common import string_reverse

log = logging.getLogger(__name__)


class PatternType(enum.Enum):
    """How a rule is matched against a name."""

    PREFIX = "prefix"
    SUFFIX = "suffix"
    SUBSTRING = "substring"
    PATTERN = "pattern"
    EXACT = "exact"


class PatternSyntaxError(ValueError):
    """A rule cannot be parsed."""


class BadPatternError(ValueError):
    """A glob pattern is malformed."""


@dataclass(frozen=True)
class PatternMatch:
    """A successful match: the rule that matched and the value stored with it."""

    reason: str
    value: Any = None


def is_glob_candidate(s: str) -> bool:
    """True if the rule needs glob matching rather than a simpler form."""
    last = len(s) - 1
    for i, c in enumerate(s):
        if c in ("?", "["):
            return True
        if c == "*" and i != 0 and i != last:
            return True
    return False


def _class_char(pattern: str, i: int) -> tuple[str, int]:
    if i >= len(pattern) or pattern[i] in "-]":
        raise BadPatternError("syntax error in pattern")
    if pattern[i] == "\\":
        i += 1
        if i >= len(pattern):
            raise BadPatternError("syntax error in pattern")
    return pattern[i], i + 1


def _compile_class(pattern: str, i: int) -> tuple[str, int]:
    negated = i < len(pattern) and pattern[i] == "^"
    if negated:
        i += 1
    ranges: list[tuple[str, str]] = []
    while True:
        if i < len(pattern) and pattern[i] == "]" and ranges:
            i += 1
            break
        lo, i = _class_char(pattern, i)
        hi = lo
        if i < len(pattern) and pattern[i] == "-":
            hi, i = _class_char(pattern, i + 1)
        ranges.append((lo, hi))
    alternatives = "|".join(
        f"[{re.escape(lo)}-{re.escape(hi)}]" for lo, hi in ranges if lo <= hi
    )
    if negated:
        regex = f"(?!(?:{alternatives}))." if alternatives else "."
    else:
        regex = f"(?:{alternatives})" if alternatives else "(?!)"
    return regex, i


@functools.lru_cache(maxsize=1024)
def _compile_glob(pattern: str) -> re.Pattern:
    parts: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            parts.append("[^/]*")
            i += 1
        elif c == "?":
            parts.append("[^/]")
            i += 1
        elif c == "\\":
            i += 1
            if i >= n:
                raise BadPatternError("syntax error in pattern")
            parts.append(re.escape(pattern[i]))
            i += 1
        elif c == "[":
            regex, i = _compile_class(pattern, i + 1)
            parts.append(regex)
        else:
            parts.append(re.escape(c))
            i += 1
    return re.compile("".join(parts), re.DOTALL)


def glob_match(pattern: str, name: str) -> bool:
    """Shell-style match where '*' and '?' never match '/'; '^' negates a class."""
    return _compile_glob(pattern).fullmatch(name) is not None


def _longest_prefix(table: dict[str, Any], key: str) -> tuple[str, Any] | None:
    for length in range(len(key), -1, -1):
        candidate = key[:length]
        if candidate in table:
            return candidate, table[candidate]
    return None


class PatternMatcher:
    """A set of name rules: exact, prefix, suffix, substring and glob."""

    def __init__(self) -> None:
        self._prefixes: dict[str, Any] = {}
        self._suffixes: dict[str, Any] = {}
        self._substrings: list[str] = []
        self._patterns: list[str] = []
        self._exact: dict[str, Any] = {}
        self._indirect_vals: dict[str, Any] = {}

    def add(self, pattern: str, val: Any = None, position: int = 0) -> None:
        """Add a rule; position is used in error messages."""
        error = f"Syntax error in block rules at pattern {position}"
        leading_star = pattern.startswith("*")
        trailing_star = pattern.endswith("*")
        if is_glob_candidate(pattern):
            pattern_type = PatternType.PATTERN
            try:
                glob_match(pattern, "example.com")
            except BadPatternError:
                raise PatternSyntaxError(error) from None
            if len(pattern) < 2:
                raise PatternSyntaxError(error)
        elif leading_star and trailing_star:
            pattern_type = PatternType.SUBSTRING
            if len(pattern) < 3:
                raise PatternSyntaxError(error)
            pattern = pattern[1:-1]
        elif trailing_star:
            pattern_type = PatternType.PREFIX
            if len(pattern) < 2:
                raise PatternSyntaxError(error)
            pattern = pattern[:-1]
        elif pattern.startswith("="):
            pattern_type = PatternType.EXACT
            if len(pattern) < 2:
                raise PatternSyntaxError(error)
            pattern = pattern[1:]
        else:
            pattern_type = PatternType.SUFFIX
            if leading_star:
                pattern = pattern[1:]
            if pattern.startswith("."):
                pattern = pattern[1:]
        if not pattern:
            log.error("Syntax error in block rule at line %d", position)

        pattern = pattern.lower()
        if pattern_type is PatternType.SUBSTRING:
            self._substrings.append(pattern)
            if val is not None:
                self._indirect_vals[pattern] = val
        elif pattern_type is PatternType.PATTERN:
            self._patterns.append(pattern)
            if val is not None:
                self._indirect_vals[pattern] = val
        elif pattern_type is PatternType.PREFIX:
            self._prefixes.setdefault(pattern, val)
        elif pattern_type is PatternType.SUFFIX:
            self._suffixes.setdefault(string_reverse(pattern), val)
        else:
            self._exact[pattern] = val

    def eval(self, qname: str) -> PatternMatch | None:
        """Return the first matching rule for a normalized name, or None."""
        if len(qname) < 2:
            return None

        if qname in self._exact:
            return PatternMatch(qname, self._exact[qname])

        rev_qname = string_reverse(qname)
        found = _longest_prefix(self._suffixes, rev_qname)
        if found is not None:
            match, value = found
            if len(match) == len(rev_qname) or rev_qname[len(match)] == ".":
                return PatternMatch("*." + string_reverse(match), value)
            if len(match) < len(rev_qname):
                i = rev_qname.rfind(".")
                if i > 0:
                    parent = rev_qname[:i]
                    found_parent = _longest_prefix(self._suffixes, parent)
                    if found_parent is not None:
                        parent_match = found_parent[0]
                        if len(parent_match) == len(parent) or parent[len(parent_match)] == ".":
                            return PatternMatch("*." + string_reverse(parent_match), value)

        found = _longest_prefix(self._prefixes, qname)
        if found is not None:
            return PatternMatch(found[0] + "*", found[1])

        for substring in self._substrings:
            if substring in qname:
                return PatternMatch("*" + substring + "*", self._indirect_vals.get(substring))

        for pattern in self._patterns:
            if glob_match(pattern, qname):
                return PatternMatch(pattern, self._indirect_vals.get(pattern))

        return None