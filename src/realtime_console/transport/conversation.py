"""Conversation item store.

Builds the list of conversation items (user and assistant messages, tool
calls) from server events, accumulating streamed audio, transcripts and
text into a per-item ``formatted`` view.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from realtime_console.audio.pcm import BYTES_PER_SAMPLE, decode_pcm, pcm_to_wav

logger = logging.getLogger(__name__)


@dataclass
class FormattedItem:
    """Accumulated, display-ready content of an item."""

    audio: bytearray = field(default_factory=bytearray)
    text: str = ""
    transcript: str = ""
    tool_arguments: str = ""
    # WAV rendering of the audio, set once the item completes
    file: bytes | None = None


@dataclass
class ConversationItem:
    """A conversation item as reported by the server.

    Attributes:
        id: Server item id (also the playback track id of its audio)
        type: Item type ("message", "function_call", ...)
        role: "user", "assistant", "system" or None for non-message items
        status: "in_progress", "completed" or "incomplete"
        content: Raw content parts
        formatted: Accumulated audio/transcript/text
    """

    id: str
    type: str = "message"
    role: str | None = None
    status: str = "in_progress"
    content: list[dict[str, Any]] = field(default_factory=list)
    formatted: FormattedItem = field(default_factory=FormattedItem)

    @classmethod
    def from_event_item(cls, item: dict[str, Any]) -> "ConversationItem":
        """Build an item from the "item" object of a server event."""
        new_item = cls(
            id=item["id"],
            type=item.get("type", "message"),
            role=item.get("role"),
            status=item.get("status") or "in_progress",
            content=list(item.get("content") or []),
        )
        for part in new_item.content:
            if part.get("type") in ("text", "input_text"):
                new_item.formatted.text += part.get("text") or ""
            elif part.get("transcript"):
                new_item.formatted.transcript += part["transcript"]
        return new_item


ItemDelta = dict[str, Any]


class Conversation:
    """Ordered conversation items maintained from server events.

    process_event() returns the affected item and the delta it received
    (audio bytes, transcript or text fragment), or (None, None) for events
    that do not touch an item.
    """

    def __init__(self, sample_rate: int = 24000) -> None:
        self.sample_rate = sample_rate
        self._items: list[ConversationItem] = []
        self._by_id: dict[str, ConversationItem] = {}
        # Transcriptions that arrived before their item was created
        self._pending_transcripts: dict[str, str] = {}

    def get_items(self) -> list[ConversationItem]:
        """Snapshot of the items in conversation order."""
        return list(self._items)

    def get_item(self, item_id: str) -> ConversationItem | None:
        return self._by_id.get(item_id)

    def clear(self) -> None:
        self._items.clear()
        self._by_id.clear()
        self._pending_transcripts.clear()

    def __len__(self) -> int:
        return len(self._items)

    def process_event(
        self, event: dict[str, Any]
    ) -> tuple[ConversationItem | None, ItemDelta | None]:
        """Apply a server event to the conversation.

        Args:
            event: Decoded server event

        Returns:
            (item, delta) for item-affecting events, else (None, None)
        """
        event_type = event.get("type", "")

        if event_type == "conversation.item.created":
            raw = event.get("item")
            if not isinstance(raw, dict) or not raw.get("id"):
                logger.warning("Ignoring item without an id", extra={"event_type": event_type})
                return None, None
            return self._item_created(raw), None

        if event_type == "conversation.item.truncated":
            item = self._by_id.get(event.get("item_id", ""))
            if item is None:
                return None, None
            end_sample = int(event.get("audio_end_ms", 0) * self.sample_rate / 1000)
            del item.formatted.audio[end_sample * BYTES_PER_SAMPLE :]
            item.formatted.transcript = ""
            if item.formatted.file is not None:
                item.formatted.file = pcm_to_wav(bytes(item.formatted.audio), self.sample_rate)
            return item, None

        if event_type == "conversation.item.deleted":
            item = self._by_id.pop(event.get("item_id", ""), None)
            if item is None:
                return None, None
            self._items.remove(item)
            return item, None

        if event_type == "conversation.item.input_audio_transcription.completed":
            transcript = event.get("transcript") or ""
            item = self._by_id.get(event.get("item_id", ""))
            if item is None:
                self._pending_transcripts[event.get("item_id", "")] = transcript
                return None, None
            # A single space marks "transcribed, but empty"
            item.formatted.transcript = transcript or " "
            return item, {"transcript": transcript}

        if event_type in ("response.output_item.added", "response.output_item.done"):
            raw = event.get("item")
            if not isinstance(raw, dict):
                return None, None
            item = self._by_id.get(raw.get("id", ""))
            if item is None:
                if event_type == "response.output_item.added" and raw.get("id"):
                    return self._item_created(raw), None
                return None, None
            if raw.get("status"):
                item.status = raw["status"]
            if item.status == "completed" and item.formatted.audio:
                item.formatted.file = pcm_to_wav(bytes(item.formatted.audio), self.sample_rate)
            return item, None

        if event_type == "response.content_part.added":
            item = self._by_id.get(event.get("item_id", ""))
            if item is None:
                return None, None
            item.content.append(event.get("part") or {})
            return item, None

        if event_type == "response.audio_transcript.delta":
            item = self._by_id.get(event.get("item_id", ""))
            if item is None:
                return None, None
            delta = event.get("delta") or ""
            item.formatted.transcript += delta
            return item, {"transcript": delta}

        if event_type == "response.audio.delta":
            item = self._by_id.get(event.get("item_id", ""))
            if item is None:
                return None, None
            try:
                audio = decode_pcm(event.get("delta") or "")
            except ValueError as e:
                logger.warning(
                    "Discarding undecodable audio delta",
                    extra={"item_id": item.id, "error": str(e)},
                )
                return None, None
            item.formatted.audio.extend(audio)
            return item, {"audio": audio}

        if event_type == "response.text.delta":
            item = self._by_id.get(event.get("item_id", ""))
            if item is None:
                return None, None
            delta = event.get("delta") or ""
            item.formatted.text += delta
            return item, {"text": delta}

        if event_type == "response.function_call_arguments.delta":
            item = self._by_id.get(event.get("item_id", ""))
            if item is None:
                return None, None
            delta = event.get("delta") or ""
            item.formatted.tool_arguments += delta
            return item, {"arguments": delta}

        return None, None

    def _item_created(self, raw: dict[str, Any]) -> ConversationItem:
        existing = self._by_id.get(raw["id"])
        if existing is not None:
            return existing

        item = ConversationItem.from_event_item(raw)
        pending = self._pending_transcripts.pop(item.id, None)
        if pending is not None:
            item.formatted.transcript = pending or " "

        self._items.append(item)
        self._by_id[item.id] = item
        return item
