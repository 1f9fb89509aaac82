"""Turn records derived from conversation updates.

A turn is one continuous utterance by the user or the assistant. Turns are
created as conversation items begin and finalized when the item completes
or is cut short by an interruption. At most one turn per role is in
progress at any time.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from realtime_console.audio.pcm import sample_count
from realtime_console.transport.conversation import ConversationItem

logger = logging.getLogger(__name__)


class TurnRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"


class TurnStatus(Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    TRUNCATED = "truncated"


@dataclass
class Turn:
    """One user or assistant turn.

    Attributes:
        id: Conversation item id
        role: Speaker
        status: Lifecycle status
        audio_track_id: Playback track of the turn's audio, once audio arrives
        sample_offset_played: Samples heard before truncation
        samples_received: Audio samples received for the turn
        transcript: Latest transcript text
    """

    id: str
    role: TurnRole
    status: TurnStatus = TurnStatus.IN_PROGRESS
    audio_track_id: str | None = None
    sample_offset_played: int | None = None
    samples_received: int = 0
    transcript: str = ""

    @property
    def is_final(self) -> bool:
        return self.status is not TurnStatus.IN_PROGRESS


class TurnTracker:
    """Maintains Turn records from conversation item updates."""

    def __init__(self) -> None:
        self._turns: dict[str, Turn] = {}

    def observe(self, item: ConversationItem, delta: dict[str, Any] | None = None) -> Turn | None:
        """Update turns from a conversation item change.

        Args:
            item: The changed item
            delta: The change (audio bytes, transcript or text fragment)

        Returns:
            The affected turn, or None for non-message items
        """
        try:
            role = TurnRole(item.role)
        except ValueError:
            return None

        turn = self._turns.get(item.id)
        if turn is None:
            turn = Turn(id=item.id, role=role)
            if item.status == "in_progress":
                self._complete_in_progress(role)
            self._turns[item.id] = turn

        if delta and delta.get("audio"):
            turn.audio_track_id = item.id
            turn.samples_received += sample_count(delta["audio"])

        if item.formatted.transcript.strip():
            turn.transcript = item.formatted.transcript

        if turn.status is not TurnStatus.TRUNCATED:
            if item.status == "completed":
                turn.status = TurnStatus.COMPLETED
            elif item.status == "incomplete":
                turn.status = TurnStatus.TRUNCATED
        return turn

    def truncate(self, item_id: str, sample_offset: int) -> Turn | None:
        """Mark a turn as interrupted at ``sample_offset``."""
        turn = self._turns.get(item_id)
        if turn is None:
            return None
        turn.status = TurnStatus.TRUNCATED
        turn.audio_track_id = turn.audio_track_id or item_id
        turn.sample_offset_played = sample_offset
        return turn

    def prune(self, live_ids: set[str]) -> None:
        """Drop turns whose items no longer exist in the conversation."""
        for item_id in [item_id for item_id in self._turns if item_id not in live_ids]:
            del self._turns[item_id]

    def in_progress(self, role: TurnRole) -> Turn | None:
        for turn in self._turns.values():
            if turn.role is role and turn.status is TurnStatus.IN_PROGRESS:
                return turn
        return None

    def get(self, item_id: str) -> Turn | None:
        return self._turns.get(item_id)

    @property
    def turns(self) -> list[Turn]:
        return list(self._turns.values())

    def clear(self) -> None:
        self._turns.clear()

    def _complete_in_progress(self, role: TurnRole) -> None:
        previous = self.in_progress(role)
        if previous is not None:
            logger.debug(
                "New turn started before previous completed",
                extra={"turn_id": previous.id, "role": role.value},
            )
            previous.status = TurnStatus.COMPLETED
