"""In-memory audio devices and transport for orchestrator tests.

The fakes record every call they receive into a shared journal so tests
can assert cross-component ordering (e.g. session update before capture
pause).
"""

import asyncio
import base64
import json
from typing import Any

from websockets.exceptions import ConnectionClosed

from realtime_console.audio.base import (
    CaptureDevice,
    CaptureStatus,
    ChunkCallback,
    PlaybackDevice,
    TrackOffset,
)
from realtime_console.audio.pcm import BYTES_PER_SAMPLE
from realtime_console.errors import DeviceUnavailableError, TransportClosedError
from realtime_console.transport.base import (
    EventSource,
    RealtimeEvent,
    RealtimeTransport,
    TransportEvent,
)
from realtime_console.transport.conversation import Conversation

Journal = list[tuple[str, Any]]


def pcm_silence(samples: int) -> bytes:
    """PCM16 silence of the given length."""
    return b"\x00" * (samples * BYTES_PER_SAMPLE)


def audio_delta(item_id: str, samples: int) -> dict[str, Any]:
    """A response.audio.delta event carrying ``samples`` samples of silence."""
    return {
        "type": "response.audio.delta",
        "item_id": item_id,
        "delta": base64.b64encode(pcm_silence(samples)).decode("ascii"),
    }


def assistant_item_created(item_id: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.created",
        "item": {"id": item_id, "type": "message", "role": "assistant", "status": "in_progress"},
    }


def user_item_created(item_id: str) -> dict[str, Any]:
    return {
        "type": "conversation.item.created",
        "item": {"id": item_id, "type": "message", "role": "user", "status": "completed"},
    }


class FakeCapture(CaptureDevice):
    """Capture device whose chunks are pushed by the test."""

    def __init__(self, deny: bool = False, journal: Journal | None = None) -> None:
        self.deny = deny
        self.journal: Journal = journal if journal is not None else []
        self.status = CaptureStatus.ENDED
        self.on_chunk: ChunkCallback | None = None

    async def begin(self) -> None:
        self.journal.append(("capture.begin", None))
        if self.deny:
            raise DeviceUnavailableError("Permission denied")
        self.status = CaptureStatus.PAUSED

    async def record(self, on_chunk: ChunkCallback) -> None:
        self.journal.append(("capture.record", None))
        self.on_chunk = on_chunk
        self.status = CaptureStatus.RECORDING

    async def pause(self) -> None:
        self.journal.append(("capture.pause", None))
        self.status = CaptureStatus.PAUSED

    async def end(self) -> None:
        self.journal.append(("capture.end", None))
        self.on_chunk = None
        self.status = CaptureStatus.ENDED

    def get_status(self) -> CaptureStatus:
        return self.status

    def push(self, chunk: bytes) -> None:
        """Deliver a captured chunk if recording."""
        if self.status is CaptureStatus.RECORDING and self.on_chunk is not None:
            self.on_chunk(chunk)


class FakePlayback(PlaybackDevice):
    """Playback device with a simulated play-out position."""

    def __init__(self, journal: Journal | None = None) -> None:
        self.journal: Journal = journal if journal is not None else []
        self.connected = False
        self.queue: list[tuple[str, int]] = []
        self.played: dict[str, int] = {}
        self.added: list[tuple[str, int]] = []
        self.reported_offset: int | None = None

    async def connect(self) -> None:
        self.journal.append(("playback.connect", None))
        self.connected = True

    def add_chunk(self, pcm: bytes, track_id: str) -> None:
        samples = len(pcm) // BYTES_PER_SAMPLE
        self.added.append((track_id, samples))
        self.queue.append((track_id, samples))

    def play(self, samples: int) -> None:
        """Advance play-out by ``samples`` samples."""
        while samples > 0 and self.queue:
            track_id, remaining = self.queue[0]
            take = min(remaining, samples)
            self.played[track_id] = self.played.get(track_id, 0) + take
            samples -= take
            if take == remaining:
                self.queue.pop(0)
            else:
                self.queue[0] = (track_id, remaining - take)

    async def disconnect(self) -> None:
        self.journal.append(("playback.disconnect", None))
        self.connected = False
        self.queue.clear()

    async def interrupt(self) -> TrackOffset | None:
        self.journal.append(("playback.interrupt", None))
        if not self.queue:
            return None
        track_id = self.queue[0][0]
        offset = self.played.get(track_id, 0)
        if self.reported_offset is not None:
            offset = self.reported_offset
        self.queue.clear()
        return TrackOffset(track_id=track_id, sample_offset=offset)


class FakeTransport(RealtimeTransport):
    """Transport that records outbound calls and replays scripted server events."""

    def __init__(
        self,
        auto_ack: bool = True,
        connect_error: Exception | None = None,
        journal: Journal | None = None,
    ) -> None:
        super().__init__()
        self.auto_ack = auto_ack
        self.connect_error = connect_error
        self.journal: Journal = journal if journal is not None else []
        self.connected = False
        self.appended: list[bytes] = []
        self.session: dict[str, Any] = {}
        self._conversation = Conversation()
        self._session_created = asyncio.Event()

    @property
    def conversation(self) -> Conversation:
        return self._conversation

    def calls(self, name: str) -> list[Any]:
        """Arguments of every journaled call with the given name."""
        return [args for call, args in self.journal if call == name]

    async def connect(self) -> None:
        self.journal.append(("transport.connect", None))
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        self._session_created.clear()
        if self.auto_ack:
            self._session_created.set()

    async def disconnect(self) -> None:
        self.journal.append(("transport.disconnect", None))
        self.connected = False
        self._conversation.clear()

    def is_connected(self) -> bool:
        return self.connected

    async def wait_for_session_created(self) -> None:
        await self._session_created.wait()

    def append_input_audio(self, pcm: bytes) -> None:
        if not self.connected:
            raise TransportClosedError("not connected")
        self.appended.append(pcm)

    async def cancel_response(self, track_id: str | None, sample_offset: int = 0) -> None:
        self.journal.append(("transport.cancel_response", (track_id, sample_offset)))

    async def create_response(self) -> None:
        self.journal.append(("transport.create_response", None))

    async def update_session(self, **session: Any) -> None:
        self.journal.append(("transport.update_session", session))
        self.session.update(session)

    async def delete_item(self, item_id: str) -> None:
        self.journal.append(("transport.delete_item", item_id))

    async def receive(self, event: dict[str, Any]) -> None:
        """Dispatch a server event the way a live transport does."""
        await self._emit(TransportEvent.REALTIME_EVENT, RealtimeEvent(EventSource.SERVER, event))
        if event["type"] == "error":
            await self._emit(TransportEvent.ERROR, event)
        elif event["type"] == "input_audio_buffer.speech_started":
            await self._emit(TransportEvent.CONVERSATION_INTERRUPTED, event)

        item, delta = self._conversation.process_event(event)
        if item is not None:
            await self._emit(TransportEvent.CONVERSATION_UPDATED, {"item": item, "delta": delta})

    async def close_from_server(self) -> None:
        """Simulate the server dropping the connection."""
        self.connected = False
        await self._emit(TransportEvent.CLOSE, {"error": True})


class FakeWebSocket:
    """Scripted WebSocket connection for the real transport client."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def feed(self, event: dict[str, Any] | str) -> None:
        """Queue an inbound message (dicts are JSON-encoded)."""
        self._incoming.put_nowait(event if isinstance(event, str) else json.dumps(event))

    def drop(self) -> None:
        """Simulate an abnormal connection loss."""
        self._incoming.put_nowait(ConnectionClosed(None, None))

    def feed_exception(self, error: Exception) -> None:
        """Make the next receive raise ``error``."""
        self._incoming.put_nowait(error)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        if isinstance(message, Exception):
            raise message
        return message

    def sent_types(self) -> list[str]:
        return [event["type"] for event in self.sent]


async def settle() -> None:
    """Let background send and receive tasks run."""
    for _ in range(10):
        await asyncio.sleep(0)
