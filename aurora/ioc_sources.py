"""Loading of filename and C2 indicator-of-compromise lists."""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Pattern

__all__ = [
    "DEFAULT_C2_SCORE",
    "MissingIOCSourceError",
    "C2IOC",
    "FilenameIOC",
    "load_c2_iocs",
    "load_filename_iocs",
    "is_likely_domain",
    "normalize_domain",
    "normalize_ip",
]

log = logging.getLogger(__name__)

DEFAULT_C2_SCORE = 80
"""Score of a C2 indicator that carries no explicit score."""

_MAX_LINE_BYTES = 2 * 1024 * 1024
_INT_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_DOMAIN_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789.-")


class MissingIOCSourceError(Exception):
    """A required IOC file could not be opened."""

    def __init__(self, kind: str, path: str, cause: BaseException) -> None:
        super().__init__(f'opening {kind} IOC file "{path}": {cause}')
        self.kind = kind
        self.path = path
        self.cause = cause


class _LineTooLongError(OSError):
    """A line in an IOC file exceeds the supported length."""


@dataclass(frozen=True)
class C2IOC:
    """A C2 indicator (domain or IP address) with its score."""

    indicator: str
    score: int = DEFAULT_C2_SCORE


@dataclass(frozen=True)
class FilenameIOC:
    """A filename regex with score and optional false-positive regex."""

    pattern: Pattern[str]
    false_positive: Optional[Pattern[str]]
    raw_pattern: str
    raw_false_positive: str
    score: int
    line: int


def _parse_int(text: str) -> Optional[int]:
    if not _INT_RE.fullmatch(text):
        return None
    number = int(text)
    if not _INT64_MIN <= number <= _INT64_MAX:
        return None
    return number


def _warn_skip_line(path: str, line_no: int, reason: str) -> None:
    log.warning("Skipping IOC line: %s (path=%s line=%d)", reason, path, line_no)


def _open_source(
    kind: str, label: str, path: str, required: bool
) -> Optional[BinaryIO]:
    try:
        return open(path, "rb")
    except OSError as err:
        if required:
            raise MissingIOCSourceError(kind, path, err) from err
        if isinstance(err, FileNotFoundError):
            log.warning(
                "%s IOC file not found; %s IOC matching disabled (path=%s)",
                label, kind, path,
            )
        else:
            log.warning(
                "Failed to open %s IOC file; %s IOC matching disabled (path=%s): %s",
                kind, kind, path, err,
            )
        return None


def _iter_lines(handle: BinaryIO) -> Iterator[tuple[int, str]]:
    """Yield ``(line_number, stripped_text)`` for every line of the file."""
    for line_no, raw in enumerate(handle, start=1):
        body = raw.rstrip(b"\n")
        if len(body) > _MAX_LINE_BYTES:
            raise _LineTooLongError(f"line {line_no} is too long")
        yield line_no, body.decode("utf-8", "surrogateescape").strip()


def load_c2_iocs(
    path: str, required: bool
) -> tuple[dict[str, C2IOC], dict[str, C2IOC]]:
    """Load a C2 IOC file and return ``(domains, ips)`` keyed by normalized value.

    Each line holds ``INDICATOR`` or ``INDICATOR;SCORE``; blank lines and
    lines starting with ``#`` are ignored and malformed lines are skipped.
    """
    path = path.strip()
    domains: dict[str, C2IOC] = {}
    ips: dict[str, C2IOC] = {}
    if not path:
        return domains, ips

    handle = _open_source("c2", "C2", path, required)
    if handle is None:
        return domains, ips

    with handle:
        try:
            for line_no, raw in _iter_lines(handle):
                if not raw or raw.startswith("#"):
                    continue
                if " " in raw or "\t" in raw:
                    _warn_skip_line(path, line_no, "unexpected whitespace")
                    continue

                indicator = raw
                score = DEFAULT_C2_SCORE
                head, sep, tail = raw.rpartition(";")
                if sep:
                    parsed = _parse_int(tail.strip())
                    # A non-numeric suffix keeps the whole line as the indicator.
                    if parsed is not None:
                        indicator = head.strip()
                        score = parsed

                ip = normalize_ip(indicator)
                if ip:
                    ips[ip] = C2IOC(ip, score)
                    continue

                host = normalize_domain(indicator)
                if not is_likely_domain(host):
                    if ":" in indicator:
                        _warn_skip_line(
                            path,
                            line_no,
                            "indicator contains ':' (not valid in FQDN — use ';' "
                            "as score separator)",
                        )
                    else:
                        _warn_skip_line(path, line_no, "invalid domain or IP")
                    continue
                domains[host] = C2IOC(host, score)
        except OSError as err:
            if required:
                raise
            log.warning(
                "Error while reading C2 IOC file; using parsed entries (path=%s): %s",
                path, err,
            )

    return domains, ips


def load_filename_iocs(path: str, required: bool) -> list[FilenameIOC]:
    """Load a filename IOC file of ``REGEX;SCORE[;FALSE_POSITIVE_REGEX]`` lines.

    Duplicate entries are dropped; malformed lines are skipped with a warning.
    """
    path = path.strip()
    entries: list[FilenameIOC] = []
    if not path:
        return entries

    handle = _open_source("filename", "Filename", path, required)
    if handle is None:
        return entries

    seen: set[str] = set()
    with handle:
        try:
            for line_no, raw in _iter_lines(handle):
                if not raw or raw.startswith("#"):
                    continue

                parts = raw.split(";", 2)
                if len(parts) < 2:
                    _warn_skip_line(
                        path, line_no,
                        "expected format REGEX;SCORE[;FALSE_POSITIVE_REGEX]",
                    )
                    continue

                pattern_raw = parts[0].strip()
                score_raw = parts[1].strip()
                if not pattern_raw:
                    _warn_skip_line(path, line_no, "empty regex")
                    continue
                if not score_raw:
                    _warn_skip_line(path, line_no, "empty score")
                    continue

                score = _parse_int(score_raw)
                if score is None:
                    _warn_skip_line(path, line_no, "invalid score")
                    continue

                try:
                    compiled = re.compile(pattern_raw)
                except re.error:
                    _warn_skip_line(path, line_no, "invalid regex")
                    continue

                false_positive_raw = ""
                false_positive: Optional[Pattern[str]] = None
                if len(parts) == 3:
                    false_positive_raw = parts[2].strip()
                    if false_positive_raw:
                        try:
                            false_positive = re.compile(false_positive_raw)
                        except re.error:
                            _warn_skip_line(
                                path, line_no, "invalid false positive regex"
                            )
                            continue

                key = f"{pattern_raw};{score};{false_positive_raw}"
                if key in seen:
                    continue
                seen.add(key)

                entries.append(
                    FilenameIOC(
                        pattern=compiled,
                        false_positive=false_positive,
                        raw_pattern=pattern_raw,
                        raw_false_positive=false_positive_raw,
                        score=score,
                        line=line_no,
                    )
                )
        except OSError as err:
            if required:
                raise
            log.warning(
                "Error while reading filename IOC file; using parsed entries "
                "(path=%s): %s",
                path, err,
            )

    return entries


def is_likely_domain(value: str) -> bool:
    """Return whether ``value`` looks like a lower-case fully qualified domain."""
    if not value:
        return False
    if value.startswith(".") or value.endswith("."):
        return False
    if ".." in value or "." not in value:
        return False
    return all(ch in _DOMAIN_CHARS for ch in value)


def normalize_domain(value: str) -> str:
    """Lower-case a host name and drop one trailing dot."""
    value = value.strip().lower()
    if value.endswith("."):
        value = value[:-1]
    return value


def normalize_ip(value: str) -> str:
    """Return the canonical text of an IP address, or ``""`` if it is not one."""
    value = value.strip()
    if not value:
        return ""
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return ""
    if isinstance(address, ipaddress.IPv6Address):
        mapped = address.ipv4_mapped
        if mapped is not None:
            text = f"::ffff:{mapped}"
            if address.scope_id:
                text += f"%{address.scope_id}"
            return text
    return str(address)