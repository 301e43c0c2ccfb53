"""Event field storage, enrichment callbacks and the process correlation cache."""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

__all__ = [
    "DataValue",
    "DataFieldsMap",
    "ProcessInfo",
    "Correlator",
    "EventEnricher",
    "Manipulator",
]


@dataclass(frozen=True)
class DataValue:
    """A single field value that may or may not be set."""

    valid: bool = False
    string: str = ""


class DataFieldsMap(dict):
    """Field name to value mapping; values are rendered with ``str()``.

    A value of ``None`` counts as unset.
    """

    def value(self, fieldname: str) -> DataValue:
        """Return the field as a :class:`DataValue`."""
        raw = self.get(fieldname)
        if raw is None:
            return DataValue()
        return DataValue(valid=True, string=str(raw))

    def add_field(self, key: str, value: str) -> None:
        """Set a field to a string value."""
        self[key] = str(value)

    def rename_field(self, old_key: str, new_key: str) -> bool:
        """Move a field to a new key. Return whether the old key existed."""
        if old_key not in self:
            return False
        value = self[old_key]
        self[new_key] = value
        del self[old_key]
        return True

    def string_items(self) -> Iterator[tuple[str, str]]:
        """Yield ``(key, value)`` pairs for every field that is set."""
        for key, value in list(self.items()):
            if value is not None:
                yield key, str(value)


@dataclass
class ProcessInfo:
    """Cached data about a previously observed process."""

    pid: int = 0
    image: str = ""
    command_line: str = ""
    user: str = ""
    current_directory: str = ""


class Correlator:
    """LRU cache of process information used for parent lookups."""

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ValueError("correlator size must be positive")
        self._size = size
        self._cache: OrderedDict[int, ProcessInfo] = OrderedDict()
        self._lock = threading.Lock()

    def store(self, pid: int, info: ProcessInfo) -> None:
        """Add or update the entry for ``pid``, evicting the oldest if full."""
        with self._lock:
            if pid in self._cache:
                self._cache.move_to_end(pid)
                self._cache[pid] = info
                return
            self._cache[pid] = info
            if len(self._cache) > self._size:
                self._cache.popitem(last=False)

    def lookup(self, pid: int) -> Optional[ProcessInfo]:
        """Return the cached info for ``pid``, or ``None``."""
        with self._lock:
            info = self._cache.get(pid)
            if info is None:
                return None
            self._cache.move_to_end(pid)
            return info

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


Manipulator = Callable[[DataFieldsMap], None]


class EventEnricher:
    """Applies registered manipulators to event fields by event key."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._manipulators: dict[str, list[Manipulator]] = {}

    def register(self, key: str, fn: Manipulator) -> None:
        """Add a manipulator for a ``provider:event_id`` key."""
        with self._lock:
            self._manipulators.setdefault(key, []).append(fn)

    def enrich(self, key: str, fields: DataFieldsMap) -> None:
        """Run every manipulator registered for ``key``, in registration order."""
        with self._lock:
            manipulators = tuple(self._manipulators.get(key, ()))
        for fn in manipulators:
            fn(fields)