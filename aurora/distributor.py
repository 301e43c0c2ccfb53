"""Fan-out of provider events through enrichment to registered consumers."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from aurora.enrichment import Correlator, DataFieldsMap, EventEnricher, ProcessInfo
from aurora.events import Event, EventIdentifier

__all__ = [
    "EventConsumer",
    "Distributor",
    "enrichment_key",
    "register_linux_enrichments",
    "enrich_parent_fields",
    "enrich_image_from_cache",
]

log = logging.getLogger(__name__)

_PROCESS_CREATION = 1
_UINT32_MAX = 0xFFFFFFFF


class EventConsumer(ABC):
    """Processes normalized events after enrichment."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return getattr(self, "_closed", False)

    def initialize(self) -> None:
        """Prepare the consumer before events arrive."""

    @abstractmethod
    def handle_event(self, event: Event) -> None:
        """Process one event."""

    def close(self) -> None:
        """Mark the consumer as closed."""
        self._closed = True


class Distributor:
    """Enriches provider events and forwards them to every consumer."""

    def __init__(
        self,
        enricher: Optional[EventEnricher] = None,
        correlator: Optional[Correlator] = None,
    ) -> None:
        self._enricher = enricher
        self._correlator = correlator
        self._lock = threading.Lock()
        # Immutable snapshot, replaced wholesale on registration so that
        # handle_event never waits for the lock.
        self._consumers: tuple[EventConsumer, ...] = ()
        self._processed = 0
        self._count_lock = threading.Lock()

    def register_consumer(self, consumer: EventConsumer) -> None:
        """Add a consumer that receives every subsequent event."""
        with self._lock:
            self._consumers = (*self._consumers, consumer)

    def handle_event(self, event: Event) -> None:
        """Enrich the event, cache process data and pass it to all consumers."""
        consumers = self._consumers

        if self._enricher is not None:
            fields = getattr(event, "fields", None)
            if isinstance(fields, DataFieldsMap):
                self._enricher.enrich(enrichment_key(event.identifier), fields)

        self._cache_process_data(event)

        for consumer in consumers:
            try:
                consumer.handle_event(event)
            except Exception:
                log.exception("Consumer %s failed to handle event", consumer.name)

        with self._count_lock:
            self._processed += 1

    def _cache_process_data(self, event: Event) -> None:
        if self._correlator is None:
            return
        if event.identifier.event_id != _PROCESS_CREATION:
            return
        info = ProcessInfo(
            pid=event.process,
            image=event.value("Image").string,
            command_line=event.value("CommandLine").string,
            user=event.value("User").string,
            current_directory=event.value("CurrentDirectory").string,
        )
        self._correlator.store(event.process, info)

    @property
    def processed(self) -> int:
        """Number of events handled so far."""
        with self._count_lock:
            return self._processed

    @property
    def correlator(self) -> Optional[Correlator]:
        """The correlation cache shared with the enrichment functions."""
        return self._correlator


def enrichment_key(identifier: EventIdentifier) -> str:
    """Return the ``provider:event_id`` key used to look up enrichments."""
    return f"{identifier.provider_name}:{identifier.event_id}"


def register_linux_enrichments(
    enricher: EventEnricher, correlator: Optional[Correlator]
) -> None:
    """Register the enrichment functions for the Linux eBPF provider."""
    enricher.register(
        "LinuxEBPF:1", lambda fields: enrich_parent_fields(fields, correlator)
    )
    enricher.register(
        "LinuxEBPF:11", lambda fields: enrich_image_from_cache(fields, correlator)
    )
    enricher.register(
        "LinuxEBPF:3", lambda fields: enrich_image_from_cache(fields, correlator)
    )


def _parse_pid(text: str) -> Optional[int]:
    if not text or not text.isascii() or not text.isdigit():
        return None
    pid = int(text)
    if pid > _UINT32_MAX:
        return None
    return pid


def enrich_parent_fields(
    fields: DataFieldsMap, correlator: Optional[Correlator]
) -> None:
    """Fill ParentImage and ParentCommandLine from the cache when missing."""
    if correlator is None:
        return
    ppid_value = fields.value("ParentProcessId")
    if not ppid_value.valid:
        return
    parent_image = fields.value("ParentImage")
    parent_cmdline = fields.value("ParentCommandLine")

    ppid = _parse_pid(ppid_value.string)
    if ppid is None:
        return
    info = correlator.lookup(ppid)
    if info is None:
        return

    if not parent_image.string:
        fields.add_field("ParentImage", info.image)
    if not parent_cmdline.string:
        fields.add_field("ParentCommandLine", info.command_line)


def enrich_image_from_cache(
    fields: DataFieldsMap, correlator: Optional[Correlator]
) -> None:
    """Fill Image from the cache when the provider could not resolve it."""
    if correlator is None:
        return
    if fields.value("Image").string:
        return
    pid_value = fields.value("ProcessId")
    if not pid_value.valid:
        return
    pid = _parse_pid(pid_value.string)
    if pid is None:
        return
    info = correlator.lookup(pid)
    if info is not None and info.image:
        fields.add_field("Image", info.image)