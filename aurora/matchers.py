"""String and number matchers used to evaluate Sigma detection patterns."""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Pattern, Union

__all__ = [
    "TextPatternModifier",
    "ContentPattern",
    "PrefixPattern",
    "SuffixPattern",
    "RegexPattern",
    "GlobPattern",
    "StringMatchers",
    "StringMatchersConj",
    "NumPattern",
    "NumMatchers",
    "StringMatcher",
    "NumMatcher",
    "new_string_matcher",
]


class TextPatternModifier(enum.Enum):
    """How a Sigma value is compared with event data."""

    NONE = enum.auto()
    CONTAINS = enum.auto()
    PREFIX = enum.auto()
    SUFFIX = enum.auto()
    REGEX = enum.auto()


def _normalize(text: str, lowercase: bool, no_collapse_ws: bool) -> str:
    if not no_collapse_ws:
        text = " ".join(text.split())
    if lowercase:
        text = text.lower()
    return text


@dataclass(frozen=True)
class _TokenPattern:
    token: str
    lowercase: bool = False
    no_collapse_ws: bool = False

    def _prepare(self, text: str) -> str:
        return _normalize(text, self.lowercase, self.no_collapse_ws)


@dataclass(frozen=True)
class ContentPattern(_TokenPattern):
    """Matches values equal to the token."""

    def string_match(self, value: str) -> bool:
        return self._prepare(value) == self._prepare(self.token)


@dataclass(frozen=True)
class PrefixPattern(_TokenPattern):
    """Matches values that start with the token."""

    def string_match(self, value: str) -> bool:
        return self._prepare(value).startswith(self._prepare(self.token))


@dataclass(frozen=True)
class SuffixPattern(_TokenPattern):
    """Matches values that end with the token."""

    def string_match(self, value: str) -> bool:
        return self._prepare(value).endswith(self._prepare(self.token))


@dataclass(frozen=True)
class RegexPattern:
    """Matches values in which the regular expression is found."""

    regex: Pattern[str]

    def string_match(self, value: str) -> bool:
        return self.regex.search(value) is not None


def _glob_to_regex(pattern: str) -> str:
    parts = []
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            following = next(chars, None)
            if following is None:
                parts.append(re.escape("\\"))
            elif following in "*?\\":
                parts.append(re.escape(following))
            else:
                parts.append(re.escape("\\" + following))
        elif ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return "".join(parts)


def _has_wildcard(pattern: str) -> bool:
    chars = iter(pattern)
    for ch in chars:
        if ch == "\\":
            next(chars, None)
        elif ch in "*?":
            return True
    return False


@dataclass(frozen=True)
class GlobPattern:
    """Matches whole values against a Sigma wildcard pattern.

    ``*`` stands for any run of characters and ``?`` for one character;
    a backslash makes them literal.
    """

    glob: str
    lowercase: bool = False
    no_collapse_ws: bool = False
    _compiled: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        prepared = _normalize(self.glob, self.lowercase, self.no_collapse_ws)
        object.__setattr__(
            self, "_compiled", re.compile(_glob_to_regex(prepared), re.DOTALL)
        )

    def string_match(self, value: str) -> bool:
        prepared = _normalize(value, self.lowercase, self.no_collapse_ws)
        return self._compiled.fullmatch(prepared) is not None


class StringMatchers(tuple):
    """Matches when any of the inner matchers matches."""

    __slots__ = ()

    def string_match(self, value: str) -> bool:
        return any(matcher.string_match(value) for matcher in self)


class StringMatchersConj(tuple):
    """Matches when every inner matcher matches."""

    __slots__ = ()

    def string_match(self, value: str) -> bool:
        return all(matcher.string_match(value) for matcher in self)


@dataclass(frozen=True)
class NumPattern:
    """Matches one integer value."""

    val: int

    def num_match(self, value: int) -> bool:
        return value == self.val


class NumMatchers(tuple):
    """Matches when any of the inner number matchers matches."""

    __slots__ = ()

    def num_match(self, value: int) -> bool:
        return any(matcher.num_match(value) for matcher in self)


StringMatcher = Union[
    ContentPattern,
    PrefixPattern,
    SuffixPattern,
    RegexPattern,
    GlobPattern,
    StringMatchers,
    StringMatchersConj,
]
NumMatcher = Union[NumPattern, NumMatchers]


def _build_matcher(
    modifier: TextPatternModifier, lowercase: bool, no_collapse_ws: bool, pattern: str
) -> StringMatcher:
    if modifier is TextPatternModifier.REGEX:
        try:
            return RegexPattern(re.compile(pattern))
        except re.error as err:
            raise ValueError(f"invalid regex {pattern!r}: {err}") from err
    if modifier is TextPatternModifier.CONTAINS:
        return GlobPattern(f"*{pattern}*", lowercase, no_collapse_ws)
    if _has_wildcard(pattern):
        if modifier is TextPatternModifier.PREFIX:
            pattern = pattern + "*"
        elif modifier is TextPatternModifier.SUFFIX:
            pattern = "*" + pattern
        return GlobPattern(pattern, lowercase, no_collapse_ws)
    if modifier is TextPatternModifier.PREFIX:
        return PrefixPattern(pattern, lowercase, no_collapse_ws)
    if modifier is TextPatternModifier.SUFFIX:
        return SuffixPattern(pattern, lowercase, no_collapse_ws)
    return ContentPattern(pattern, lowercase, no_collapse_ws)


def new_string_matcher(
    modifier: TextPatternModifier,
    lowercase: bool,
    match_all: bool,
    no_collapse_ws: bool,
    *args: str,
) -> StringMatcher:
    """Build a matcher for one or more patterns.

    Several patterns are combined with OR, or with AND when ``match_all``
    is set. Raises :class:`ValueError` when no pattern is given or a
    regular expression does not compile.
    """
    if not args:
        raise ValueError("no patterns defined for matcher object")
    matchers = [
        _build_matcher(modifier, lowercase, no_collapse_ws, pattern) for pattern in args
    ]
    if len(matchers) == 1:
        return matchers[0]
    if match_all:
        return StringMatchersConj(matchers)
    return StringMatchers(matchers)