"""Compacted log of realtime protocol events.

The protocol emits some events many times per second (per-chunk audio
appends and deltas). The aggregator collapses runs of consecutive events
with the same source and type into one entry with a repeat count, and trims
raw audio out of payloads so the log never retains audio bytes.

Design:
    raw event → trim audio fields → same (source, type) as last entry?
        yes → increment last entry's count
        no  → append new entry
"""

import copy
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Final

from realtime_console.transport.base import EventSource

logger = logging.getLogger(__name__)

ERROR_CATEGORY: Final[str] = "error"

# Event type → payload field carrying base64 audio
AUDIO_FIELDS: Final[dict[str, str]] = {
    "input_audio_buffer.append": "audio",
    "response.audio.delta": "delta",
}


def trimmed_marker(length: int) -> str:
    """Placeholder stored in place of an audio field."""
    return f"[trimmed: {length} bytes]"


def trim_payload(event_type: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Copy a payload with raw audio replaced by a byte-length marker.

    Known audio fields are trimmed by event type; any bytes value at the
    top level is trimmed regardless of type.

    Args:
        event_type: Protocol event type
        payload: Event payload (not modified)

    Returns:
        Trimmed deep copy of the payload
    """
    trimmed: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, (bytes, bytearray, memoryview)):
            trimmed[key] = trimmed_marker(len(value))
        else:
            trimmed[key] = copy.deepcopy(value)

    audio_field = AUDIO_FIELDS.get(event_type)
    if audio_field is not None and isinstance(trimmed.get(audio_field), str):
        if not trimmed[audio_field].startswith("[trimmed:"):
            trimmed[audio_field] = trimmed_marker(len(trimmed[audio_field]))
    return trimmed


def format_elapsed(start: datetime, timestamp: datetime) -> str:
    """Format the time since ``start`` as MM:SS.hh (hundredths)."""
    delta_ms = max(0, int((timestamp - start).total_seconds() * 1000))
    hundredths = delta_ms // 10 % 100
    seconds = delta_ms // 1000 % 60
    minutes = delta_ms // 60_000 % 60
    return f"{minutes:02d}:{seconds:02d}.{hundredths:02d}"


@dataclass
class EventLogEntry:
    """One displayed log line, possibly standing for a run of events.

    Attributes:
        timestamp: Time of the first event of the run
        source: Direction of the events
        type: Protocol event type
        payload: Trimmed payload of the first event of the run
        count: Number of consecutive events collapsed into this entry
    """

    timestamp: datetime
    source: EventSource
    type: str
    payload: dict[str, Any]
    count: int = 1

    @property
    def category(self) -> str:
        """Display category: "error" for error events, otherwise the source."""
        return ERROR_CATEGORY if self.is_error else self.source.value

    @property
    def is_error(self) -> bool:
        return self.type == ERROR_CATEGORY

    @property
    def display_count(self) -> int | None:
        """Repeat count for display, None for a single event."""
        return self.count if self.count > 1 else None


class EventLogAggregator:
    """Ordered, append-or-increment log of protocol events."""

    def __init__(self) -> None:
        self._entries: list[EventLogEntry] = []
        self._raw_count = 0
        self.started_at: datetime = datetime.now(timezone.utc)

    def ingest(
        self,
        source: EventSource | str,
        event_type: str,
        payload: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> EventLogEntry:
        """Add a raw event to the log.

        Args:
            source: Event direction
            event_type: Protocol event type
            payload: Event payload (audio fields are trimmed before storage)
            timestamp: Observation time (defaults to now)

        Returns:
            The entry the event was recorded in
        """
        source = EventSource(source)
        self._raw_count += 1

        last = self._entries[-1] if self._entries else None
        if last is not None and last.source is source and last.type == event_type:
            last.count += 1
            return last

        entry = EventLogEntry(
            timestamp=timestamp or datetime.now(timezone.utc),
            source=source,
            type=event_type,
            payload=trim_payload(event_type, payload or {}),
        )
        self._entries.append(entry)

        if entry.is_error:
            logger.warning(
                "Realtime error event logged",
                extra={"source": source.value, "error": entry.payload.get("error")},
            )
        return entry

    @property
    def entries(self) -> tuple[EventLogEntry, ...]:
        """Read-only view of the log in arrival order."""
        return tuple(self._entries)

    @property
    def last(self) -> EventLogEntry | None:
        return self._entries[-1] if self._entries else None

    @property
    def raw_count(self) -> int:
        """Total raw events ingested since the last reset."""
        return self._raw_count

    def errors(self) -> list[EventLogEntry]:
        """Entries tagged with the error category."""
        return [entry for entry in self._entries if entry.is_error]

    def elapsed(self, entry: EventLogEntry) -> str:
        """Entry time relative to the log start, as MM:SS.hh."""
        return format_elapsed(self.started_at, entry.timestamp)

    def reset(self, started_at: datetime | None = None) -> None:
        """Clear the log for a new session."""
        self._entries.clear()
        self._raw_count = 0
        self.started_at = started_at or datetime.now(timezone.utc)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[EventLogEntry]:
        return iter(tuple(self._entries))
