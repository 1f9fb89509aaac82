"""Base realtime transport abstraction.

Defines the interface of a duplex connection to the remote realtime
service, the closed set of events it emits, and the handler registry shared
by all implementations.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from realtime_console.transport.conversation import Conversation

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[None] | None]


class TransportEvent(str, Enum):
    """Events emitted by a realtime transport.

    - REALTIME_EVENT: Every raw protocol event, inbound or outbound
      (payload: RealtimeEvent)
    - ERROR: Server reported a protocol error (payload: event dict)
    - CLOSE: Connection closed without a local disconnect
      (payload: {"error": bool})
    - CONVERSATION_INTERRUPTED: Server detected user speech
      (payload: event dict)
    - CONVERSATION_UPDATED: A conversation item changed
      (payload: {"item": ConversationItem, "delta": dict | None})
    """

    REALTIME_EVENT = "realtime.event"
    ERROR = "error"
    CLOSE = "close"
    CONVERSATION_INTERRUPTED = "conversation.interrupted"
    CONVERSATION_UPDATED = "conversation.updated"


class EventSource(str, Enum):
    """Direction of a protocol event."""

    CLIENT = "client"
    SERVER = "server"


@dataclass(frozen=True)
class RealtimeEvent:
    """A raw protocol event observed on the wire.

    Attributes:
        source: CLIENT for outbound, SERVER for inbound
        event: Decoded JSON event (always has a "type" key)
        time: Wall-clock time the event was observed
    """

    source: EventSource
    event: dict[str, Any]
    time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def type(self) -> str:
        return str(self.event.get("type", "unknown"))


class RealtimeTransport(ABC):
    """Duplex connection to the remote realtime service.

    Handlers registered with on() are invoked in event arrival order; an
    async handler is awaited before the next event is dispatched, so no two
    handlers run concurrently.
    """

    def __init__(self) -> None:
        self._handlers: dict[TransportEvent, list[EventHandler]] = {
            event: [] for event in TransportEvent
        }

    def on(self, event_name: TransportEvent | str, handler: EventHandler) -> None:
        """Register a handler for an event.

        Args:
            event_name: One of TransportEvent (or its string value)
            handler: Sync or async callable receiving the event payload

        Raises:
            ValueError: If the event name is not a known TransportEvent
        """
        self._handlers[TransportEvent(event_name)].append(handler)

    async def _emit(self, event_name: TransportEvent, payload: Any) -> None:
        """Dispatch an event to its handlers in registration order.

        Handler failures are logged and do not stop dispatch.
        """
        for handler in list(self._handlers[event_name]):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "Transport event handler failed",
                    extra={"event": event_name.value},
                )

    @property
    @abstractmethod
    def conversation(self) -> "Conversation":
        """Conversation item store maintained from server events."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection.

        Raises:
            TransportClosedError: If the connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection without emitting CLOSE."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the connection is open."""
        pass

    @abstractmethod
    async def wait_for_session_created(self) -> None:
        """Wait until the server acknowledges the session.

        Raises:
            TransportClosedError: If the connection closes first
        """
        pass

    @abstractmethod
    def append_input_audio(self, pcm: bytes) -> None:
        """Queue a captured PCM16 chunk for sending, preserving call order.

        Raises:
            TransportClosedError: If not connected
        """
        pass

    @abstractmethod
    async def cancel_response(self, track_id: str | None, sample_offset: int = 0) -> None:
        """Cancel the in-flight response and truncate the played item.

        Args:
            track_id: Item whose audio was interrupted (None = cancel only)
            sample_offset: Samples of the item's audio the user heard
        """
        pass

    @abstractmethod
    async def create_response(self) -> None:
        """Request a response, committing buffered input audio if needed."""
        pass

    @abstractmethod
    async def update_session(self, **session: Any) -> None:
        """Merge session settings and send them if connected."""
        pass

    @abstractmethod
    async def delete_item(self, item_id: str) -> None:
        """Ask the server to delete a conversation item."""
        pass
