"""Consumer that matches events against filename and C2 IOC lists."""

from __future__ import annotations

import logging
import os
import re
import sys
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional

from aurora.distributor import EventConsumer
from aurora.events import Event
from aurora.ioc_sources import (
    C2IOC,
    FilenameIOC,
    load_c2_iocs,
    load_filename_iocs,
    normalize_domain,
    normalize_ip,
)

__all__ = [
    "IOCConfig",
    "IOCConsumer",
    "score_to_level",
    "sanitize_field_for_logging",
    "default_ioc_paths",
    "resolve_ioc_paths",
]

log = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

_SENSITIVE_FIELD_MARKERS = ("password", "passwd", "secret", "token", "api_key", "apikey")
_WS = r"[\t\n\f\r ]"
_VALUE_GROUP = r"""([^\t\n\f\r "'`]+)"""
_SENSITIVE_WORDS = r"password|passwd|pwd|token|secret|api[_-]?key"
_CMDLINE_INLINE_RE = re.compile(
    "(" + _SENSITIVE_WORDS + ")" + "(" + _WS + "*[:=]" + _WS + "*)" + _VALUE_GROUP,
    re.IGNORECASE,
)
_CMDLINE_FLAG_RE = re.compile(
    "(--?(?:" + _SENSITIVE_WORDS + "))" + "(?:" + _WS + "+|=)" + _VALUE_GROUP,
    re.IGNORECASE,
)

_FILENAME_MATCH_FIELDS = (
    "Image",
    "ParentImage",
    "TargetFilename",
    "CommandLine",
    "ParentCommandLine",
)
_C2_MATCH_FIELDS = ("DestinationIp", "DestinationHostname")


@dataclass
class IOCConfig:
    """Configuration of the IOC consumer."""

    filename_ioc_path: str = ""
    c2_ioc_path: str = ""
    filename_ioc_required: bool = False
    c2_ioc_required: bool = False
    logger: Optional[logging.Logger] = None


class IOCConsumer(EventConsumer):
    """Matches event fields against loaded filename and C2 indicators.

    Each match is logged as ``"IOC match"`` with its details in the
    record's ``fields`` attribute.
    """

    def __init__(self, config: Optional[IOCConfig] = None) -> None:
        self._config = replace(config) if config is not None else IOCConfig()
        self._logger = self._config.logger
        self._filename_entries: list[FilenameIOC] = []
        self._c2_domains: dict[str, C2IOC] = {}
        self._c2_ips: dict[str, C2IOC] = {}
        self._matches = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "IOCConsumer"

    @property
    def config(self) -> IOCConfig:
        """The effective configuration, with paths resolved after initialize."""
        return self._config

    def initialize(self) -> None:
        """Load the IOC files; raise if a required file cannot be opened."""
        filename_path, c2_path, filename_required, c2_required = resolve_ioc_paths(
            self._config.filename_ioc_path, self._config.c2_ioc_path
        )
        self._config.filename_ioc_path = filename_path
        self._config.c2_ioc_path = c2_path

        filename_entries = load_filename_iocs(
            filename_path, filename_required or self._config.filename_ioc_required
        )
        c2_domains, c2_ips = load_c2_iocs(
            c2_path, c2_required or self._config.c2_ioc_required
        )

        self._filename_entries = filename_entries
        self._c2_domains = c2_domains
        self._c2_ips = c2_ips

        log.info(
            "IOC sets loaded (filename_iocs=%d c2_domains=%d c2_ips=%d "
            "filename_path=%s c2_path=%s)",
            len(filename_entries),
            len(c2_domains),
            len(c2_ips),
            filename_path.strip(),
            c2_path.strip(),
        )

    def handle_event(self, event: Event) -> None:
        """Evaluate one event against every loaded indicator."""
        for key in _FILENAME_MATCH_FIELDS:
            value = event.value(key).string.strip()
            if not value:
                continue
            for entry in self._filename_entries:
                if entry.pattern.search(value) is None:
                    continue
                if entry.false_positive is not None and entry.false_positive.search(value):
                    continue
                self._count_match()
                self._emit_filename_match(event, key, value, entry)

        for key in _C2_MATCH_FIELDS:
            value = event.value(key).string.strip()
            if not value:
                continue
            if key == "DestinationIp":
                ip = normalize_ip(value)
                entry = self._c2_ips.get(ip) if ip else None
            else:
                host = normalize_domain(value)
                entry = self._c2_domains.get(host) if host else None
            if entry is not None:
                self._count_match()
                self._emit_c2_match(event, key, value, entry)

    def _count_match(self) -> None:
        with self._lock:
            self._matches += 1

    def _base_fields(self, event: Event, kind: str, field: str, value: str,
                     score: int, source_path: str) -> dict[str, object]:
        _, level_name = score_to_level(score)
        identifier = event.identifier
        return {
            "ioc_type": kind,
            "ioc_field": field,
            "ioc_value": sanitize_field_for_logging(field, value),
            "ioc_score": score,
            "ioc_level": level_name,
            "ioc_source": _base_name(source_path),
            "event_provider": identifier.provider_name,
            "event_id": identifier.event_id,
            "event_source": event.source,
            "event_process": event.process,
            "event_time": _format_rfc3339_nano(event.time),
        }

    def _emit_filename_match(self, event: Event, field: str, value: str,
                             entry: FilenameIOC) -> None:
        fields = self._base_fields(
            event, "filename", field, value, entry.score, self._config.filename_ioc_path
        )
        fields["ioc_regex"] = entry.raw_pattern
        fields["ioc_line"] = entry.line
        if entry.raw_false_positive:
            fields["ioc_false_positive_regex"] = entry.raw_false_positive
        self._emit(event, fields, entry.score)

    def _emit_c2_match(self, event: Event, field: str, value: str, entry: C2IOC) -> None:
        fields = self._base_fields(
            event, "c2", field, value, entry.score, self._config.c2_ioc_path
        )
        fields["ioc_indicator"] = entry.indicator
        self._emit(event, fields, entry.score)

    def _emit(self, event: Event, fields: dict[str, object], score: int) -> None:
        _add_event_fields(fields, event)
        level, _ = score_to_level(score)
        logger = self._logger if self._logger is not None else log
        logger.log(level, "IOC match", extra={"fields": fields})

    @property
    def matches(self) -> int:
        """Number of IOC matches emitted."""
        with self._lock:
            return self._matches

    def close(self) -> None:
        """Drop the loaded indicators and mark the consumer as closed."""
        self._filename_entries = []
        self._c2_domains = {}
        self._c2_ips = {}
        super().close()


def _add_event_fields(fields: dict[str, object], event: Event) -> None:
    for key, value in event.string_items():
        safe_value = sanitize_field_for_logging(key, value)
        if key in fields:
            key = "event_" + key
            if key in fields:
                continue
        fields[key] = safe_value


def _format_rfc3339_nano(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    fraction = f"{moment.microsecond:06d}".rstrip("0")
    if fraction:
        text += "." + fraction
    return text + "Z"


def _base_name(path: str) -> str:
    path = path.strip()
    if not path:
        return "."
    trimmed = path.rstrip("/" + os.sep)
    if not trimmed:
        return os.sep
    return os.path.basename(trimmed)


def score_to_level(score: int) -> tuple[int, str]:
    """Map an IOC score to a :mod:`logging` level and a Sigma-style level name."""
    if score >= 90:
        return logging.ERROR, "critical"
    if score >= 75:
        return logging.ERROR, "high"
    if score >= 60:
        return logging.WARNING, "medium"
    if score >= 40:
        return logging.INFO, "low"
    return logging.INFO, "info"


def sanitize_field_for_logging(key: str, value: str) -> str:
    """Redact sensitive values from a field before it is logged."""
    key_lower = key.lower()
    if any(marker in key_lower for marker in _SENSITIVE_FIELD_MARKERS):
        return REDACTED
    if key in ("CommandLine", "ParentCommandLine"):
        value = _CMDLINE_INLINE_RE.sub(r"\1\2" + REDACTED, value)
        value = _CMDLINE_FLAG_RE.sub(r"\1 " + REDACTED, value)
    return value


def default_ioc_paths() -> tuple[str, str]:
    """Return the IOC files shipped next to the running program."""
    program = sys.argv[0] if sys.argv else ""
    if not program:
        return "", ""
    directory = os.path.dirname(os.path.abspath(program))
    base = os.path.join(directory, "resources", "iocs")
    return (
        os.path.join(base, "filename-iocs.txt"),
        os.path.join(base, "c2-iocs.txt"),
    )


def resolve_ioc_paths(filename_path: str, c2_path: str) -> tuple[str, str, bool, bool]:
    """Return ``(filename_path, c2_path, filename_required, c2_required)``.

    Explicitly configured paths are required; missing ones fall back to the
    default locations and are optional.
    """
    resolved_filename = filename_path.strip()
    resolved_c2 = c2_path.strip()
    filename_required = bool(resolved_filename)
    c2_required = bool(resolved_c2)

    if resolved_filename and resolved_c2:
        return resolved_filename, resolved_c2, filename_required, c2_required

    default_filename, default_c2 = default_ioc_paths()
    if not resolved_filename:
        resolved_filename = default_filename
    if not resolved_c2:
        resolved_c2 = default_c2
    return resolved_filename, resolved_c2, filename_required, c2_required