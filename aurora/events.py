"""Normalized event model shared by providers, the distributor and consumers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, Optional

from aurora.enrichment import DataFieldsMap, DataValue

__all__ = ["EventIdentifier", "Event", "FieldsEvent"]


@dataclass(frozen=True)
class EventIdentifier:
    """Identifies an event by its provider and numeric event ID."""

    provider_name: str
    event_id: int


class Event(ABC):
    """A normalized event delivered by a provider."""

    @property
    @abstractmethod
    def identifier(self) -> EventIdentifier:
        """Provider and event ID of this event."""

    @property
    @abstractmethod
    def process(self) -> int:
        """PID of the process that caused the event."""

    @property
    @abstractmethod
    def source(self) -> str:
        """Name of the source inside the provider."""

    @property
    @abstractmethod
    def time(self) -> datetime:
        """When the event happened."""

    @abstractmethod
    def value(self, fieldname: str) -> DataValue:
        """Return one data field."""

    @abstractmethod
    def string_items(self) -> Iterator[tuple[str, str]]:
        """Yield every set data field as ``(key, value)``."""


class FieldsEvent(Event):
    """An event whose data lives in a mutable :class:`DataFieldsMap`.

    The distributor's enrichment functions modify ``fields`` in place.
    """

    def __init__(
        self,
        provider_name: str,
        event_id: int,
        fields: Optional[Mapping[str, object]] = None,
        process: int = 0,
        source: str = "",
        time: Optional[datetime] = None,
    ) -> None:
        self._identifier = EventIdentifier(provider_name, event_id)
        if isinstance(fields, DataFieldsMap):
            self.fields = fields
        else:
            self.fields = DataFieldsMap(fields or {})
        self._process = process
        self._source = source
        self._time = time if time is not None else datetime.now(timezone.utc)

    @property
    def identifier(self) -> EventIdentifier:
        return self._identifier

    @property
    def process(self) -> int:
        return self._process

    @property
    def source(self) -> str:
        return self._source

    @property
    def time(self) -> datetime:
        return self._time

    def value(self, fieldname: str) -> DataValue:
        return self.fields.value(fieldname)

    def string_items(self) -> Iterator[tuple[str, str]]:
        return self.fields.string_items()

    def __repr__(self) -> str:
        return (
            f"FieldsEvent({self._identifier.provider_name!r}, "
            f"{self._identifier.event_id!r}, {dict(self.fields)!r})"
        )