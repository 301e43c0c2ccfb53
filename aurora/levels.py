"""Sigma severity levels: normalization, filtering and log-level mapping."""

from __future__ import annotations

import logging
from typing import Optional

__all__ = [
    "LEVEL_INFO",
    "LEVEL_LOW",
    "LEVEL_MEDIUM",
    "LEVEL_HIGH",
    "LEVEL_CRITICAL",
    "LEVEL_PRIORITY",
    "normalize_sigma_level",
    "is_valid_min_level",
    "passes_min_level",
    "sigma_rule_level_to_log_level",
]

LEVEL_INFO = "info"
LEVEL_LOW = "low"
LEVEL_MEDIUM = "medium"
LEVEL_HIGH = "high"
LEVEL_CRITICAL = "critical"

LEVEL_PRIORITY: dict[str, int] = {
    LEVEL_INFO: 0,
    LEVEL_LOW: 1,
    LEVEL_MEDIUM: 2,
    LEVEL_HIGH: 3,
    LEVEL_CRITICAL: 4,
}

_ALIASES = {"informational": LEVEL_INFO}


def normalize_sigma_level(level: str) -> Optional[tuple[str, int]]:
    """Return ``(normalized_level, priority)``, or ``None`` for unknown levels."""
    normalized = level.strip().lower()
    normalized = _ALIASES.get(normalized, normalized)
    priority = LEVEL_PRIORITY.get(normalized)
    if priority is None:
        return None
    return normalized, priority


def is_valid_min_level(level: str) -> bool:
    """Return whether ``level`` is one of the supported Sigma severities."""
    return normalize_sigma_level(level) is not None


def passes_min_level(rule_level: str, min_priority: int) -> bool:
    """Return whether a rule of ``rule_level`` meets the minimum priority.

    Rules with an unknown level pass only when the minimum is ``info``.
    """
    result = normalize_sigma_level(rule_level)
    if result is None:
        return min_priority == LEVEL_PRIORITY[LEVEL_INFO]
    return result[1] >= min_priority


def sigma_rule_level_to_log_level(rule_level: str) -> int:
    """Map a Sigma rule level to a :mod:`logging` level."""
    result = normalize_sigma_level(rule_level)
    if result is None:
        return logging.WARNING
    normalized = result[0]
    if normalized in (LEVEL_INFO, LEVEL_LOW):
        return logging.INFO
    if normalized == LEVEL_MEDIUM:
        return logging.WARNING
    return logging.ERROR