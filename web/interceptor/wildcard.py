from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Tuple, TypeVar

from interceptor.errors import InvalidPatternError


logger = logging.getLogger(__name__)

_WILDCARD = "*"


@dataclass(frozen=True)
class WildcardMatcher:
    pattern: str
    regex: "re.Pattern[str]"

    def test(self, url: str) -> bool:
        return self.regex.fullmatch(url or "") is not None


def wildcard_to_regex(pattern: str) -> str:
    # Escape every literal run, then join the runs with a match-anything group.
    return ".*".join(re.escape(part) for part in pattern.split(_WILDCARD))


def compile_wildcard(pattern: str) -> WildcardMatcher:
    """Compile a `*` wildcard pattern into a full-string, case-sensitive matcher.

    `*` matches any substring, including the empty one. Every other character
    is literal. The match is anchored at both ends, so
    `https://example.com/*` does not match `https://evil.com/https://example.com/a`.
    """
    if not isinstance(pattern, str):
        raise InvalidPatternError(f"Pattern must be a string, got {type(pattern).__name__}.")
    try:
        rx = re.compile(wildcard_to_regex(pattern), re.DOTALL)
    except (re.error, OverflowError, RecursionError) as e:
        raise InvalidPatternError(f"Invalid pattern {pattern!r}: {e}") from e
    return WildcardMatcher(pattern=pattern, regex=rx)


def try_compile_wildcard(pattern: str) -> Optional[WildcardMatcher]:
    try:
        return compile_wildcard(pattern)
    except InvalidPatternError:
        logger.warning("Skipping invalid pattern %r", pattern, exc_info=True)
        return None


_R = TypeVar("_R")


def compile_rules(rules: Iterable[_R], *, pattern_of=lambda r: r.pattern) -> List[Tuple[WildcardMatcher, _R]]:
    """Pair each rule with its compiled matcher, keeping rule order.

    Rules with uncompilable patterns are dropped here, once, rather than on
    every lookup.
    """
    out: List[Tuple[WildcardMatcher, _R]] = []
    for rule in rules:
        matcher = try_compile_wildcard(pattern_of(rule))
        if matcher is not None:
            out.append((matcher, rule))
    return out


def iter_matches(compiled: Iterable[Tuple[WildcardMatcher, _R]], url: str) -> Iterator[_R]:
    """Yield each rule whose matcher accepts `url`, in order.

    Callers that only need the first usable hit stop iterating, which keeps
    the scan short-circuiting.
    """
    for matcher, rule in compiled:
        if matcher.test(url):
            yield rule
