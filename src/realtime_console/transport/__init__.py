"""Transport layer for the realtime service connection.

Provides the transport abstraction the session controller drives, the
conversation item store, and a WebSocket implementation.
"""

from realtime_console.transport.base import (
    EventSource,
    RealtimeEvent,
    RealtimeTransport,
    TransportEvent,
)
from realtime_console.transport.conversation import (
    Conversation,
    ConversationItem,
    FormattedItem,
)
from realtime_console.transport.websocket_client import RealtimeWebSocketClient

__all__ = [
    "Conversation",
    "ConversationItem",
    "EventSource",
    "FormattedItem",
    "RealtimeEvent",
    "RealtimeTransport",
    "RealtimeWebSocketClient",
    "TransportEvent",
]
