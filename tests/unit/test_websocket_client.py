"""Unit tests for the WebSocket realtime transport."""

import asyncio
import base64
from typing import Any
from unittest.mock import AsyncMock

import pytest

from realtime_console.config import RealtimeConfig
from realtime_console.errors import TransportClosedError, TransportError
from realtime_console.transport.base import EventSource, RealtimeEvent, TransportEvent
from realtime_console.transport.websocket_client import RealtimeWebSocketClient
from tests.helpers.fakes import FakeWebSocket, settle


async def connected_client(**config: Any) -> tuple[RealtimeWebSocketClient, FakeWebSocket]:
    ws = FakeWebSocket()
    client = RealtimeWebSocketClient(
        RealtimeConfig(**config), connect_fn=AsyncMock(return_value=ws)
    )
    await client.connect()
    return client, ws


@pytest.mark.asyncio
async def test_connect_sends_session_update() -> None:
    """Test connecting sends the session configuration first."""
    client, ws = await connected_client()

    assert client.is_connected()
    assert ws.sent_types() == ["session.update"]
    session = ws.sent[0]["session"]
    assert session["input_audio_format"] == "pcm16"
    assert session["output_audio_format"] == "pcm16"
    assert session["turn_detection"] is None

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_passes_auth_headers() -> None:
    """Test the API key is sent as a bearer token."""
    ws = FakeWebSocket()
    connect_fn = AsyncMock(return_value=ws)
    client = RealtimeWebSocketClient(
        RealtimeConfig(url="wss://api.example.com/v1/realtime", api_key="sk-test", model="m1"),
        connect_fn=connect_fn,
    )

    await client.connect()

    connect_fn.assert_awaited_once()
    args, kwargs = connect_fn.await_args
    assert args == ("wss://api.example.com/v1/realtime?model=m1",)
    assert kwargs["additional_headers"]["Authorization"] == "Bearer sk-test"

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_failure_raises_transport_closed() -> None:
    """Test connection errors surface as TransportClosedError."""
    client = RealtimeWebSocketClient(
        RealtimeConfig(), connect_fn=AsyncMock(side_effect=OSError("Connection refused"))
    )

    with pytest.raises(TransportClosedError):
        await client.connect()

    assert not client.is_connected()


@pytest.mark.asyncio
async def test_session_created_resolves_wait() -> None:
    """Test wait_for_session_created returns once the server acknowledges."""
    client, ws = await connected_client()

    ws.feed({"type": "session.created", "session": {}})
    await asyncio.wait_for(client.wait_for_session_created(), timeout=1.0)

    await client.disconnect()


@pytest.mark.asyncio
async def test_audio_sent_in_capture_order_then_committed() -> None:
    """Test manual mode commits buffered audio before requesting a response."""
    client, ws = await connected_client()
    chunks = [bytes([i, 0]) * 4 for i in range(3)]

    for chunk in chunks:
        client.append_input_audio(chunk)
    await client.create_response()

    assert ws.sent_types() == [
        "session.update",
        "input_audio_buffer.append",
        "input_audio_buffer.append",
        "input_audio_buffer.append",
        "input_audio_buffer.commit",
        "response.create",
    ]
    sent_audio = [base64.b64decode(event["audio"]) for event in ws.sent[1:4]]
    assert sent_audio == chunks

    await client.disconnect()


@pytest.mark.asyncio
async def test_create_response_without_commit_in_vad_mode() -> None:
    """Test the server owns commits while its VAD is active."""
    client, ws = await connected_client()
    await client.update_session(turn_detection={"type": "server_vad"})
    client.append_input_audio(b"\x00\x00" * 4)

    await client.create_response()

    assert "input_audio_buffer.commit" not in ws.sent_types()
    assert ws.sent_types()[-1] == "response.create"
    assert client.get_turn_detection_type() == "server_vad"

    await client.disconnect()


@pytest.mark.asyncio
async def test_append_when_disconnected_raises() -> None:
    """Test audio cannot be appended without a connection."""
    client = RealtimeWebSocketClient(RealtimeConfig())

    with pytest.raises(TransportClosedError):
        client.append_input_audio(b"\x00\x00")


@pytest.mark.asyncio
async def test_cancel_response_truncates_at_offset() -> None:
    """Test cancelling truncates the assistant item at the heard position."""
    client, ws = await connected_client()
    ws.feed(
        {
            "type": "conversation.item.created",
            "item": {"id": "item_a", "type": "message", "role": "assistant"},
        }
    )
    await settle()

    await client.cancel_response("item_a", 4800)

    assert ws.sent_types()[-2:] == ["response.cancel", "conversation.item.truncate"]
    truncate = ws.sent[-1]
    assert truncate["item_id"] == "item_a"
    assert truncate["content_index"] == 0
    assert truncate["audio_end_ms"] == 200

    await client.disconnect()


@pytest.mark.asyncio
async def test_cancel_response_skips_truncate_for_user_item() -> None:
    """Test user items are never truncated."""
    client, ws = await connected_client()
    ws.feed(
        {
            "type": "conversation.item.created",
            "item": {"id": "item_u", "type": "message", "role": "user"},
        }
    )
    await settle()

    await client.cancel_response("item_u", 100)

    assert ws.sent_types()[-1] == "response.cancel"
    assert "conversation.item.truncate" not in ws.sent_types()

    await client.disconnect()


@pytest.mark.asyncio
async def test_speech_started_emits_interrupted() -> None:
    """Test server VAD speech start is surfaced as an interruption."""
    client, ws = await connected_client()
    interrupted: list[dict[str, Any]] = []
    client.on(TransportEvent.CONVERSATION_INTERRUPTED, interrupted.append)

    ws.feed({"type": "input_audio_buffer.speech_started", "audio_start_ms": 120})
    await settle()

    assert len(interrupted) == 1
    assert interrupted[0]["audio_start_ms"] == 120

    await client.disconnect()


@pytest.mark.asyncio
async def test_realtime_events_tagged_with_source() -> None:
    """Test every client and server event is reported with its direction."""
    client, ws = await connected_client()
    observed: list[RealtimeEvent] = []
    client.on("realtime.event", observed.append)

    await client.delete_item("item_x")
    ws.feed({"type": "conversation.item.deleted", "item_id": "item_x"})
    await settle()

    assert [(event.source, event.type) for event in observed] == [
        (EventSource.CLIENT, "conversation.item.delete"),
        (EventSource.SERVER, "conversation.item.deleted"),
    ]

    await client.disconnect()


@pytest.mark.asyncio
async def test_conversation_updated_carries_audio_delta() -> None:
    """Test decoded audio deltas are delivered with their item."""
    client, ws = await connected_client()
    updates: list[dict[str, Any]] = []
    client.on(TransportEvent.CONVERSATION_UPDATED, updates.append)
    pcm = b"\x01\x00" * 10

    ws.feed(
        {
            "type": "conversation.item.created",
            "item": {"id": "item_a", "type": "message", "role": "assistant"},
        }
    )
    ws.feed(
        {
            "type": "response.audio.delta",
            "item_id": "item_a",
            "delta": base64.b64encode(pcm).decode("ascii"),
        }
    )
    await settle()

    assert len(updates) == 2
    assert updates[1]["item"].id == "item_a"
    assert updates[1]["delta"] == {"audio": pcm}

    await client.disconnect()


@pytest.mark.asyncio
async def test_invalid_json_is_skipped() -> None:
    """Test malformed messages do not stop the receive loop."""
    client, ws = await connected_client()
    errors: list[dict[str, Any]] = []
    client.on(TransportEvent.ERROR, errors.append)

    ws.feed("not json{")
    ws.feed({"type": "error", "error": {"message": "Invalid audio"}})
    await settle()

    assert client.is_connected()
    assert len(errors) == 1

    await client.disconnect()


@pytest.mark.asyncio
async def test_server_drop_emits_close() -> None:
    """Test an abnormal connection loss emits CLOSE with the error flag."""
    client, ws = await connected_client()
    closed: list[dict[str, Any]] = []
    client.on(TransportEvent.CLOSE, closed.append)

    ws.drop()
    await settle()

    assert closed == [{"error": True}]
    assert not client.is_connected()
    with pytest.raises(TransportClosedError):
        await client.wait_for_session_created()


@pytest.mark.asyncio
async def test_disconnect_does_not_emit_close() -> None:
    """Test a local disconnect is silent."""
    client, ws = await connected_client()
    closed: list[dict[str, Any]] = []
    client.on(TransportEvent.CLOSE, closed.append)

    await client.disconnect()
    await settle()

    assert closed == []
    assert ws.closed
    assert not client.is_connected()


def test_on_rejects_unknown_event() -> None:
    """Test handlers can only be registered for known events."""
    client = RealtimeWebSocketClient(RealtimeConfig())

    with pytest.raises(ValueError):
        client.on("conversation.exploded", lambda payload: None)


@pytest.mark.asyncio
async def test_failing_event_does_not_stop_receive_loop(caplog: pytest.LogCaptureFixture) -> None:
    """Test an event whose handling raises is logged and later events still arrive."""
    client, ws = await connected_client()
    updates: list[dict[str, Any]] = []
    closed: list[dict[str, Any]] = []
    client.on(TransportEvent.CONVERSATION_UPDATED, updates.append)
    client.on(TransportEvent.CLOSE, closed.append)
    client.conversation.process_event = lambda event: 1 / 0  # type: ignore[method-assign]

    ws.feed({"type": "conversation.item.created", "item": {"id": "item_a"}})
    await settle()

    assert client.is_connected()
    assert closed == []
    assert "Failed to handle realtime event" in caplog.text

    del client.conversation.process_event
    ws.feed({"type": "conversation.item.created", "item": {"id": "item_b"}})
    await settle()

    assert [update["item"].id for update in updates] == ["item_b"]

    await client.disconnect()


@pytest.mark.asyncio
async def test_item_without_id_is_ignored() -> None:
    """Test an item event missing its id leaves the connection up."""
    client, ws = await connected_client()

    ws.feed({"type": "conversation.item.created", "item": {}})
    ws.feed({"type": "session.created", "session": {}})
    await settle()

    assert client.is_connected()
    await asyncio.wait_for(client.wait_for_session_created(), timeout=1.0)
    assert len(client.conversation) == 0

    await client.disconnect()


@pytest.mark.asyncio
async def test_receive_failure_emits_close() -> None:
    """Test an unexpected socket error closes the transport with the error flag."""
    client, ws = await connected_client()
    closed: list[dict[str, Any]] = []
    client.on(TransportEvent.CLOSE, closed.append)

    ws.feed_exception(RuntimeError("socket exploded"))
    await settle()

    assert closed == [{"error": True}]
    assert not client.is_connected()

    await client.disconnect()
    assert ws.closed


@pytest.mark.asyncio
async def test_disconnect_closes_socket_after_task_failure() -> None:
    """Test disconnect still closes the socket when a background task has failed."""
    client, ws = await connected_client()

    async def failed() -> None:
        raise KeyError("id")

    client._receive_task.cancel()
    client._receive_task = asyncio.create_task(failed())
    await settle()

    await client.disconnect()

    assert ws.closed
    assert client._ws is None
    assert not client.is_connected()


@pytest.mark.asyncio
async def test_send_failure_fails_only_that_event() -> None:
    """Test a send error is reported to its caller and the queue keeps draining."""
    client, ws = await connected_client()
    original_send = ws.send
    ws.send = AsyncMock(side_effect=[RuntimeError("boom")])  # type: ignore[method-assign]

    with pytest.raises(TransportError):
        await client.delete_item("item_x")

    ws.send = original_send  # type: ignore[method-assign]
    await client.delete_item("item_y")

    assert ws.sent_types()[-1] == "conversation.item.delete"
    assert ws.sent[-1]["item_id"] == "item_y"

    await client.disconnect()
