"""WebSocket realtime transport.

Connects to the realtime service (or a local relay) over WebSocket,
dispatches inbound events to registered handlers, and sends outbound
client events through a single ordered queue so captured audio reaches the
service in capture order.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from realtime_console.audio.pcm import encode_pcm, sample_count, samples_to_ms
from realtime_console.config import RealtimeConfig
from realtime_console.errors import TransportClosedError, TransportError
from realtime_console.transport import protocol
from realtime_console.transport.base import (
    EventSource,
    RealtimeEvent,
    RealtimeTransport,
    TransportEvent,
)
from realtime_console.transport.conversation import Conversation

logger = logging.getLogger(__name__)

_QueuedEvent = tuple[dict[str, Any], "asyncio.Future[None] | None"]


class RealtimeWebSocketClient(RealtimeTransport):
    """Realtime transport over a WebSocket connection.

    Inbound events are handled by one receive task; outbound events by one
    send task draining a FIFO. Awaiting an outbound operation (e.g.
    update_session) returns once that event has been written to the socket.
    """

    def __init__(
        self,
        config: RealtimeConfig | None = None,
        sample_rate: int = 24000,
        connect_fn: Callable[..., Any] | None = None,
    ) -> None:
        """Initialize client.

        Args:
            config: Realtime connection configuration
            sample_rate: PCM16 sample rate of both audio directions
            connect_fn: WebSocket connect coroutine (websockets.connect by default)
        """
        super().__init__()
        self.config = config or RealtimeConfig()
        self.sample_rate = sample_rate
        self._connect_fn = connect_fn or websockets.connect

        self._conversation = Conversation(sample_rate=sample_rate)
        self._session: dict[str, Any] = {
            "modalities": ["text", "audio"],
            "instructions": self.config.instructions,
            "voice": self.config.voice,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": (
                {"model": self.config.input_audio_transcription_model}
                if self.config.input_audio_transcription_model
                else None
            ),
            "turn_detection": None,
        }

        self._ws: Any = None
        self._connected = False
        self._closing = False
        self._outbound: asyncio.Queue[_QueuedEvent] = asyncio.Queue()
        self._receive_task: asyncio.Task[None] | None = None
        self._send_task: asyncio.Task[None] | None = None
        self._session_created: asyncio.Future[None] | None = None
        self._uncommitted_samples = 0

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    @property
    def session_config(self) -> dict[str, Any]:
        """Copy of the session settings sent on connect and on update."""
        return dict(self._session)

    def get_turn_detection_type(self) -> str | None:
        turn_detection = self._session.get("turn_detection")
        return turn_detection.get("type") if turn_detection else None

    def is_connected(self) -> bool:
        return self._connected

    def _url(self) -> str:
        if self.config.model:
            separator = "&" if "?" in self.config.url else "?"
            return f"{self.config.url}{separator}model={self.config.model}"
        return self.config.url

    async def connect(self) -> None:
        if self._connected:
            raise TransportClosedError("Already connected; call disconnect() first")

        headers = {}
        if self.config.api_key:
            headers = {
                "Authorization": f"Bearer {self.config.api_key}",
                "OpenAI-Beta": "realtime=v1",
            }

        url = self._url()
        logger.info("Connecting to realtime service", extra={"url": url})

        try:
            self._ws = await self._connect_fn(
                url,
                additional_headers=headers or None,
                max_size=self.config.max_message_size,
            )
        except (OSError, InvalidURI, InvalidHandshake, TimeoutError) as e:
            logger.error("Realtime connection failed", extra={"url": url, "error": str(e)})
            raise TransportClosedError(f"Could not connect to {url}: {e}") from e

        loop = asyncio.get_running_loop()
        self._connected = True
        self._closing = False
        self._uncommitted_samples = 0
        self._outbound = asyncio.Queue()
        self._session_created = loop.create_future()
        self._receive_task = asyncio.create_task(self._receive_loop())
        self._send_task = asyncio.create_task(self._send_loop())

        await self._send(protocol.session_update(self._session))
        logger.info("Realtime connection open", extra={"url": url})

    async def disconnect(self) -> None:
        if self._ws is None and not self._connected:
            return

        self._closing = True
        self._connected = False

        for task in (self._send_task, self._receive_task):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Transport task failed before disconnect")
        self._send_task = None
        self._receive_task = None

        if self._ws is not None:
            try:
                await self._ws.close()
            except ConnectionClosed:
                pass
            self._ws = None

        self._fail_pending(TransportClosedError("Disconnected"))
        self._conversation.clear()
        logger.info("Realtime connection closed by client")

    async def wait_for_session_created(self) -> None:
        if self._session_created is None:
            raise TransportClosedError("Not connected")
        await asyncio.shield(self._session_created)

    def append_input_audio(self, pcm: bytes) -> None:
        if not self._connected:
            raise TransportClosedError("Cannot append audio: not connected")
        if not pcm:
            return
        self._uncommitted_samples += sample_count(pcm)
        self._outbound.put_nowait((protocol.input_audio_append(encode_pcm(pcm)), None))

    async def cancel_response(self, track_id: str | None, sample_offset: int = 0) -> None:
        await self._send(protocol.client_event(protocol.RESPONSE_CANCEL))
        if track_id is None:
            return

        item = self._conversation.get_item(track_id)
        if item is None:
            logger.warning("Cannot truncate unknown item", extra={"item_id": track_id})
            return
        if item.role != "assistant":
            logger.warning(
                "Refusing to truncate non-assistant item",
                extra={"item_id": track_id, "role": item.role},
            )
            return

        audio_end_ms = samples_to_ms(sample_offset, self.sample_rate)
        await self._send(protocol.item_truncate(track_id, audio_end_ms))

    async def create_response(self) -> None:
        if self.get_turn_detection_type() is None and self._uncommitted_samples > 0:
            await self._send(protocol.client_event(protocol.INPUT_AUDIO_COMMIT))
            self._uncommitted_samples = 0
        await self._send(protocol.client_event(protocol.RESPONSE_CREATE))

    async def update_session(self, **session: Any) -> None:
        self._session.update(session)
        if self._connected:
            await self._send(protocol.session_update(self._session))

    async def delete_item(self, item_id: str) -> None:
        await self._send(protocol.item_delete(item_id))

    async def _send(self, event: dict[str, Any]) -> None:
        """Queue an event and wait until it has been written."""
        if not self._connected:
            raise TransportClosedError(f"Cannot send {event['type']}: not connected")
        sent: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._outbound.put_nowait((event, sent))
        await sent

    async def _send_loop(self) -> None:
        while True:
            event, sent = await self._outbound.get()
            try:
                await self._ws.send(json.dumps(event))
            except ConnectionClosed as e:
                self._connected = False
                if sent is not None and not sent.done():
                    sent.set_exception(TransportClosedError(f"Connection closed: {e}"))
                self._fail_pending(TransportClosedError("Connection closed"))
                return
            except Exception as e:
                logger.exception(
                    "Failed to send realtime event", extra={"event_type": event["type"]}
                )
                if sent is not None and not sent.done():
                    sent.set_exception(TransportError(f"Failed to send {event['type']}: {e}"))
                continue

            await self._emit(
                TransportEvent.REALTIME_EVENT, RealtimeEvent(EventSource.CLIENT, event)
            )
            if sent is not None and not sent.done():
                sent.set_result(None)

    async def _receive_loop(self) -> None:
        error = False
        try:
            async for raw_message in self._ws:
                try:
                    event = json.loads(raw_message)
                except json.JSONDecodeError as e:
                    logger.error("Invalid JSON from realtime service", extra={"error": str(e)})
                    continue
                if not isinstance(event, dict) or "type" not in event:
                    logger.warning("Ignoring malformed realtime event")
                    continue
                try:
                    await self._handle_server_event(event)
                except Exception:
                    logger.exception(
                        "Failed to handle realtime event", extra={"event_type": event["type"]}
                    )
        except ConnectionClosed as e:
            error = e.rcvd is None or e.rcvd.code != 1000
        except Exception:
            logger.exception("Realtime receive loop failed")
            error = True
        finally:
            if not self._closing:
                self._connected = False
                closed = TransportClosedError("Connection closed by server")
                if self._session_created is not None and not self._session_created.done():
                    self._session_created.set_exception(closed)
                    # Consumed by wait_for_session_created() or never awaited
                    self._session_created.exception()
                logger.warning("Realtime connection closed", extra={"error": error})

        if not self._closing:
            if self._send_task is not None:
                self._send_task.cancel()
            self._fail_pending(TransportClosedError("Connection closed by server"))
            await self._emit(TransportEvent.CLOSE, {"error": error})

    async def _handle_server_event(self, event: dict[str, Any]) -> None:
        event_type = event["type"]
        await self._emit(TransportEvent.REALTIME_EVENT, RealtimeEvent(EventSource.SERVER, event))

        if event_type == protocol.SESSION_CREATED:
            if self._session_created is not None and not self._session_created.done():
                self._session_created.set_result(None)
        elif event_type == protocol.ERROR:
            await self._emit(TransportEvent.ERROR, event)
        elif event_type == protocol.SPEECH_STARTED:
            await self._emit(TransportEvent.CONVERSATION_INTERRUPTED, event)

        item, delta = self._conversation.process_event(event)
        if item is None:
            return

        await self._emit(TransportEvent.CONVERSATION_UPDATED, {"item": item, "delta": delta})

    def _fail_pending(self, error: TransportClosedError) -> None:
        while not self._outbound.empty():
            _, sent = self._outbound.get_nowait()
            if sent is not None and not sent.done():
                sent.set_exception(error)
