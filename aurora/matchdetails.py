"""Rule metadata and match evidence: which rule patterns matched which fields."""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

import yaml

from aurora.matchers import (
    ContentPattern,
    GlobPattern,
    NumMatcher,
    NumMatchers,
    NumPattern,
    PrefixPattern,
    RegexPattern,
    StringMatcher,
    StringMatchers,
    StringMatchersConj,
    SuffixPattern,
    TextPatternModifier,
    new_string_matcher,
)

__all__ = [
    "RuleFieldPattern",
    "FieldPatternMatch",
    "RuleMetadata",
    "rule_lookup_key",
    "parse_field_selector",
    "text_pattern_from_modifiers",
    "new_rule_field_pattern",
    "collect_field_pattern_entry",
    "collect_field_patterns_from_selection_value",
    "extract_detection_field_patterns",
    "format_match_evidence",
    "unique_strings",
    "selection_string_value",
    "selection_int_value",
    "describe_string_matcher_patterns",
    "describe_num_matcher_patterns",
    "stringify_rule_metadata_value",
    "read_rule_date_metadata",
]

_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

FieldPatterns = dict[str, list["RuleFieldPattern"]]


@dataclass
class RuleFieldPattern:
    """One pattern from a rule's detection section with its modifiers."""

    modifiers: list[str] = field(default_factory=list)
    pattern: str = ""
    matcher: Optional[StringMatcher] = None

    def matches(self, event_value: str) -> bool:
        """Return whether the pattern matches an event value."""
        if self.matcher is None:
            return False
        return self.matcher.string_match(event_value)


@dataclass(frozen=True)
class FieldPatternMatch:
    """A rule pattern that matched an event field."""

    field: str
    pattern: str


@dataclass
class RuleMetadata:
    """Descriptive data of a Sigma rule and its detection patterns by field."""

    id: str = ""
    title: str = ""
    level: str = ""
    author: str = ""
    description: str = ""
    status: str = ""
    date: str = ""
    modified: str = ""
    path: str = ""
    references: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    false_positives: list[str] = field(default_factory=list)
    no_collapse_ws: bool = False
    field_patterns: FieldPatterns = field(default_factory=dict)

    def matching_rule_patterns(self, field: str, event_value: str) -> list[str]:
        """Return the sorted, distinct rule patterns that match ``event_value``."""
        if not self.field_patterns:
            return []
        candidates = self.field_patterns.get(field.strip().lower())
        if not candidates:
            return []
        return unique_strings(
            candidate.pattern for candidate in candidates if candidate.matches(event_value)
        )


def rule_lookup_key(rule_id: str, title: str) -> str:
    """Return the rule ID, or the title when the ID is empty."""
    rule_id = rule_id.strip()
    if rule_id:
        return rule_id
    return title.strip()


def parse_field_selector(selector: str) -> tuple[str, list[str]]:
    """Split ``Field|mod1|mod2`` into the field name and its modifiers."""
    selector = selector.strip()
    if not selector:
        return "", []
    bits = selector.split("|")
    field_name = bits[0].strip()
    if not field_name:
        return "", []
    modifiers = [bit.strip() for bit in bits[1:] if bit.strip()]
    return field_name, modifiers


def text_pattern_from_modifiers(modifiers: Optional[list[str]]) -> tuple[TextPatternModifier, bool]:
    """Return the text modifier and whether ``all`` was given."""
    modifier = TextPatternModifier.NONE
    match_all = False
    for raw in modifiers or ():
        name = raw.strip().lower()
        if name == "contains":
            modifier = TextPatternModifier.CONTAINS
        elif name == "startswith":
            modifier = TextPatternModifier.PREFIX
        elif name == "endswith":
            modifier = TextPatternModifier.SUFFIX
        elif name == "re":
            modifier = TextPatternModifier.REGEX
        elif name == "all":
            match_all = True
    return modifier, match_all


def new_rule_field_pattern(
    modifiers: Optional[list[str]], pattern: str, no_collapse_ws: bool
) -> RuleFieldPattern:
    """Build a pattern with a matcher; the matcher is ``None`` if it cannot be built."""
    modifier, match_all = text_pattern_from_modifiers(modifiers)
    try:
        matcher: Optional[StringMatcher] = new_string_matcher(
            modifier, False, match_all, no_collapse_ws, pattern
        )
    except ValueError:
        matcher = None
    return RuleFieldPattern(list(modifiers or ()), pattern, matcher)


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digits, exponent = Decimal(repr(value)).as_tuple()
    digits = list(digits)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    text = "".join(map(str, digits))
    count = len(digits)
    point = count + exponent
    exp = point - 1
    if exp < -4 or exp >= 6:
        mantissa = text[0] + ("." + text[1:] if count > 1 else "")
        out = f"{mantissa}e{'+' if exp >= 0 else '-'}{abs(exp):02d}"
    elif point <= 0:
        out = "0." + "0" * (-point) + text
    elif point >= count:
        out = text + "0" * (point - count)
    else:
        out = text[:point] + "." + text[point:]
    return "-" + out if sign else out


def _render(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return _format_float(value)
    return str(value)


def collect_field_patterns_from_selection_value(
    dst: FieldPatterns, value: Any, no_collapse_ws: bool
) -> None:
    """Add the patterns of a selection (map or list of maps) to ``dst``."""
    if isinstance(value, Mapping):
        for selector, pattern_value in value.items():
            if isinstance(selector, str):
                collect_field_pattern_entry(dst, selector, pattern_value, no_collapse_ws)
    elif isinstance(value, (list, tuple)):
        for inner in value:
            collect_field_patterns_from_selection_value(dst, inner, no_collapse_ws)


def collect_field_pattern_entry(
    dst: FieldPatterns, selector: str, value: Any, no_collapse_ws: bool
) -> None:
    """Add the patterns of one ``Field|modifiers: value`` entry to ``dst``."""
    field_name, modifiers = parse_field_selector(selector)
    if not field_name:
        collect_field_patterns_from_selection_value(dst, value, no_collapse_ws)
        return

    key = field_name.lower()

    def append(pattern: str) -> None:
        if pattern:
            dst.setdefault(key, []).append(
                new_rule_field_pattern(modifiers, pattern, no_collapse_ws)
            )

    if isinstance(value, str):
        append(value)
    elif isinstance(value, (bool, int, float)):
        append(_render(value))
    elif isinstance(value, (list, tuple)):
        for item in value:
            if isinstance(item, (Mapping, list, tuple)):
                collect_field_patterns_from_selection_value(dst, item, no_collapse_ws)
            else:
                append(_render(item))
    elif isinstance(value, Mapping):
        collect_field_patterns_from_selection_value(dst, value, no_collapse_ws)


def extract_detection_field_patterns(
    detection: Optional[Mapping[str, Any]], no_collapse_ws: bool
) -> FieldPatterns:
    """Collect every pattern of a detection section, keyed by lower-case field."""
    out: FieldPatterns = {}
    if not detection:
        return out
    for key, value in detection.items():
        if isinstance(key, str) and key.casefold() == "condition":
            continue
        collect_field_patterns_from_selection_value(out, value, no_collapse_ws)
    return out


def format_match_evidence(
    matches: Optional[list[FieldPatternMatch]],
) -> tuple[list[str], dict[str, list[str]], list[str]]:
    """Return ``(fields, patterns_by_field, match_strings)``, all sorted."""
    details: dict[str, list[str]] = {}
    for match in matches or ():
        field_name = match.field.strip()
        if not field_name or not match.pattern:
            continue
        details.setdefault(field_name, []).append(match.pattern)
    if not details:
        return [], {}, []

    match_strings: list[str] = []
    for field_name, patterns in details.items():
        distinct = unique_strings(patterns)
        details[field_name] = distinct
        match_strings.extend(
            "'{}' in {}".format(pattern.replace("'", "\\'"), field_name)
            for pattern in distinct
        )
    return sorted(details), details, sorted(match_strings)


def unique_strings(values: Any) -> list[str]:
    """Return the distinct non-empty strings, sorted."""
    if not values:
        return []
    return sorted({value for value in values if value})


def selection_string_value(value: Any) -> Optional[str]:
    """Render a selected event value as a string, or ``None`` if unsupported."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value))
    return None


def selection_int_value(value: Any) -> Optional[int]:
    """Convert a selected event value to an integer, or ``None`` if impossible."""
    if isinstance(value, str):
        if not _INT_RE.fullmatch(value):
            return None
        number = int(value)
        if not _INT64_MIN <= number <= _INT64_MAX:
            return None
        return number
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    return None


def describe_string_matcher_patterns(matcher: StringMatcher, value: str) -> list[str]:
    """Describe the parts of a string matcher that match ``value``."""
    if isinstance(matcher, (StringMatchers, StringMatchersConj)):
        out: list[str] = []
        for inner in matcher:
            out.extend(describe_string_matcher_patterns(inner, value))
        return unique_strings(out)
    if not matcher.string_match(value):
        return []
    if isinstance(matcher, ContentPattern):
        return [matcher.token]
    if isinstance(matcher, PrefixPattern):
        return [matcher.token + "*"]
    if isinstance(matcher, SuffixPattern):
        return ["*" + matcher.token]
    if isinstance(matcher, RegexPattern):
        return ["/" + matcher.regex.pattern + "/"]
    if isinstance(matcher, GlobPattern):
        return ["<glob>"]
    return ["<pattern>"]


def describe_num_matcher_patterns(matcher: NumMatcher, value: int) -> list[str]:
    """Describe the parts of a number matcher that match ``value``."""
    if isinstance(matcher, NumMatchers):
        out: list[str] = []
        for inner in matcher:
            out.extend(describe_num_matcher_patterns(inner, value))
        return unique_strings(out)
    if not matcher.num_match(value):
        return []
    if isinstance(matcher, NumPattern):
        return [str(matcher.val)]
    return [str(value)]


def stringify_rule_metadata_value(value: Any) -> str:
    """Render a YAML metadata value; dates become ``YYYY-MM-DD``."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")
    return _render(value).strip()


def read_rule_date_metadata(path: str) -> tuple[str, str]:
    """Return the ``date`` and ``modified`` entries of a rule file, or empty strings."""
    path = path.strip()
    if not path:
        return "", ""
    try:
        with open(path, "rb") as handle:
            meta = yaml.safe_load(handle)
    except (OSError, yaml.YAMLError):
        return "", ""
    if not isinstance(meta, Mapping):
        return "", ""
    return (
        stringify_rule_metadata_value(meta.get("date")),
        stringify_rule_metadata_value(meta.get("modified")),
    )