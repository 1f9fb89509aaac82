"""Realtime protocol message definitions.

Pydantic models for the parts of server events the console interprets, and
builders for the client events it sends. Events travel as JSON objects with
a "type" field.
"""

import uuid
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Server events the console acts on
SESSION_CREATED = "session.created"
ERROR = "error"
RESPONSE_DONE = "response.done"
SPEECH_STARTED = "input_audio_buffer.speech_started"

# Client events
SESSION_UPDATE = "session.update"
INPUT_AUDIO_APPEND = "input_audio_buffer.append"
INPUT_AUDIO_COMMIT = "input_audio_buffer.commit"
RESPONSE_CREATE = "response.create"
RESPONSE_CANCEL = "response.cancel"
ITEM_TRUNCATE = "conversation.item.truncate"
ITEM_DELETE = "conversation.item.delete"


class CachedTokensDetails(BaseModel):
    """Cached subset of input tokens, by modality."""

    model_config = ConfigDict(extra="ignore")

    text_tokens: int = Field(default=0, ge=0)
    audio_tokens: int = Field(default=0, ge=0)


class InputTokenDetails(BaseModel):
    """Input token breakdown of a response."""

    model_config = ConfigDict(extra="ignore")

    text_tokens: int = Field(default=0, ge=0)
    audio_tokens: int = Field(default=0, ge=0)
    cached_tokens: int = Field(default=0, ge=0)
    cached_tokens_details: CachedTokensDetails = Field(default_factory=CachedTokensDetails)


class OutputTokenDetails(BaseModel):
    """Output token breakdown of a response."""

    model_config = ConfigDict(extra="ignore")

    text_tokens: int = Field(default=0, ge=0)
    audio_tokens: int = Field(default=0, ge=0)


class ResponseUsage(BaseModel):
    """Token usage reported in ``response.done``."""

    model_config = ConfigDict(extra="ignore")

    total_tokens: int = Field(default=0, ge=0)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    input_token_details: InputTokenDetails = Field(default_factory=InputTokenDetails)
    output_token_details: OutputTokenDetails = Field(default_factory=OutputTokenDetails)

    @classmethod
    def from_response_done(cls, event: dict[str, Any]) -> "ResponseUsage | None":
        """Extract usage from a ``response.done`` event.

        Returns:
            Parsed usage, or None if the response carries no usage block
        """
        usage = (event.get("response") or {}).get("usage")
        if not usage:
            return None
        return cls.model_validate(usage)


class ServerError(BaseModel):
    """Error payload of a server ``error`` event."""

    model_config = ConfigDict(extra="ignore")

    type: str = "error"
    code: str | None = None
    message: str = "Unknown error"
    event_id: str | None = None


def new_event_id() -> str:
    """Generate a client event id."""
    return f"evt_{uuid.uuid4().hex[:20]}"


def client_event(event_type: str, **data: Any) -> dict[str, Any]:
    """Build a client event.

    Args:
        event_type: Event type (e.g. "response.create")
        **data: Event fields

    Returns:
        Event dictionary ready for JSON encoding
    """
    return {"event_id": new_event_id(), "type": event_type, **data}


def session_update(session: dict[str, Any]) -> dict[str, Any]:
    return client_event(SESSION_UPDATE, session=session)


def input_audio_append(audio_b64: str) -> dict[str, Any]:
    return client_event(INPUT_AUDIO_APPEND, audio=audio_b64)


def item_truncate(item_id: str, audio_end_ms: int, content_index: int = 0) -> dict[str, Any]:
    return client_event(
        ITEM_TRUNCATE, item_id=item_id, content_index=content_index, audio_end_ms=audio_end_ms
    )


def item_delete(item_id: str) -> dict[str, Any]:
    return client_event(ITEM_DELETE, item_id=item_id)
