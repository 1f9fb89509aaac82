"""Realtime voice session orchestration.

The SessionController owns the capture device, the playback device and the
realtime transport for the lifetime of a session. It wires captured audio
to the transport and inbound audio to playback, drives turn-taking and
interruption, and keeps the event log, usage ledger and conversation view
current.

State Transitions:
    IDLE → CONNECTING (connect requested)
    CONNECTING → ACTIVE (session acknowledged by the server)
    CONNECTING → DISCONNECTING (device or transport failure)
    ACTIVE → DISCONNECTING (disconnect requested or transport closed)
    DISCONNECTING → IDLE (teardown complete)

All operations that change session state are serialized by one asyncio
lock; transport handlers run on the transport's single dispatch loop.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from realtime_console.audio.base import CaptureDevice, CaptureStatus, PlaybackDevice
from realtime_console.audio.tracks import TrackSampleLedger
from realtime_console.config import ConsoleConfig
from realtime_console.errors import (
    ConsoleError,
    DeviceUnavailableError,
    TransportClosedError,
    TransportError,
)
from realtime_console.event_log import EventLogAggregator, EventLogEntry
from realtime_console.interruption import InterruptionCoordinator, InterruptionRequest
from realtime_console.timer import SessionTimer
from realtime_console.transport.base import (
    EventSource,
    RealtimeEvent,
    RealtimeTransport,
    TransportEvent,
)
from realtime_console.transport.conversation import ConversationItem
from realtime_console.transport.protocol import RESPONSE_DONE, ServerError
from realtime_console.turn_mode import TurnMode, TurnModeManager
from realtime_console.turns import TurnTracker
from realtime_console.usage import UsageAccountant

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Session lifecycle states.

    - IDLE: No session; devices and transport released
    - CONNECTING: Acquiring devices and opening the transport
    - ACTIVE: Connected and acknowledged; audio flowing
    - DISCONNECTING: Tearing down
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTING = "disconnecting"


# Valid state transitions
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.DISCONNECTING},
    SessionState.ACTIVE: {SessionState.DISCONNECTING},
    SessionState.DISCONNECTING: {SessionState.IDLE},
}

StateListener = Callable[[SessionState, SessionState], None]


@dataclass
class Session:
    """The single live session of a controller."""

    id: str = field(default_factory=lambda: f"sess-{uuid.uuid4().hex[:12]}")
    state: SessionState = SessionState.IDLE
    turn_mode: TurnMode = TurnMode.AUTO_VAD
    started_at: datetime | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the observable session state."""

    session_id: str
    state: SessionState
    turn_mode: TurnMode
    connected: bool
    started_at: datetime | None
    elapsed_seconds: int
    elapsed_display: str
    manual_turn_active: bool
    events: tuple[EventLogEntry, ...]
    usage: dict[str, Any]
    items: tuple[ConversationItem, ...]
    latest_transcript: str
    last_error: str | None


class SessionController:
    """Top-level realtime voice session state machine.

    No public operation raises: failures are logged, recorded in
    ``last_error`` and reported through return values or state changes.

    Example:
        ```python
        controller = SessionController(capture, playback, transport, config)
        if await controller.connect():
            ...
            await controller.disconnect()
        print(controller.usage.ledger.format_total())
        ```
    """

    def __init__(
        self,
        capture: CaptureDevice,
        playback: PlaybackDevice,
        transport: RealtimeTransport,
        config: ConsoleConfig | None = None,
    ) -> None:
        """Initialize session controller.

        Args:
            capture: Microphone device
            playback: Speaker device
            transport: Realtime service transport
            config: Console configuration (defaults if None)
        """
        self.config = config or ConsoleConfig()
        self._capture = capture
        self._playback = playback
        self._transport = transport

        self._tracks = TrackSampleLedger()
        self.event_log = EventLogAggregator()
        self.usage = UsageAccountant(self.config.pricing)
        self.turns = TurnTracker()
        self.interruption = InterruptionCoordinator(playback, self._tracks)
        self.turn_mode = TurnModeManager(
            capture,
            transport,
            on_chunk=self._forward_capture_chunk,
            preempt=self._preempt_playback,
            mode=TurnMode(self.config.session.turn_mode),
        )
        self.timer = SessionTimer(interval_s=self.config.session.timer_interval_s)

        self.session = Session(turn_mode=self.turn_mode.mode)
        self.items: list[ConversationItem] = []
        self.latest_transcript = ""
        self.last_error: ConsoleError | None = None
        self.chunks_forwarded = 0

        self._lock = asyncio.Lock()
        self._listeners: list[StateListener] = []

        transport.on(TransportEvent.REALTIME_EVENT, self._on_realtime_event)
        transport.on(TransportEvent.ERROR, self._on_error)
        transport.on(TransportEvent.CONVERSATION_INTERRUPTED, self._on_interrupted)
        transport.on(TransportEvent.CONVERSATION_UPDATED, self._on_conversation_updated)
        transport.on(TransportEvent.CLOSE, self._on_close)

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_active(self) -> bool:
        """Active and the transport still reports connected."""
        return self.session.state is SessionState.ACTIVE and self._transport.is_connected()

    def add_state_listener(self, listener: StateListener) -> None:
        """Subscribe to state transitions (called with old and new state)."""
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def transition_state(self, new_state: SessionState) -> None:
        """Transition session to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            ValueError: If transition is invalid
        """
        old_state = self.session.state
        if new_state not in VALID_TRANSITIONS[old_state]:
            raise ValueError(f"Invalid state transition: {old_state.value} → {new_state.value}")

        self.session.state = new_state
        logger.info(
            "Session state transition",
            extra={
                "session_id": self.session.id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception:
                logger.exception("Session state listener failed")

    async def connect(self) -> bool:
        """Start a session.

        Returns:
            True once the server acknowledged the session; False if a
            device or the transport failed (the session is back to IDLE)
        """
        async with self._lock:
            if self.session.state is not SessionState.IDLE:
                logger.warning(
                    "Connect ignored: session not idle",
                    extra={"session_id": self.session.id, "state": self.session.state.value},
                )
                return self.session.state is SessionState.ACTIVE

            self.session = Session(turn_mode=self.turn_mode.mode)
            self.last_error = None
            self.transition_state(SessionState.CONNECTING)

            try:
                await self._capture.begin()
            except DeviceUnavailableError as e:
                logger.error(
                    "Microphone unavailable",
                    extra={"session_id": self.session.id, "code": e.code, "error": str(e)},
                )
                self.last_error = e
                await self._teardown(reason="capture unavailable", touch_transport=False)
                return False

            self._reset_session_views()

            try:
                await self._playback.connect()
                await self._transport.connect()
                await self._transport.update_session(**self._session_settings())
                await self.turn_mode.resume_if_automatic()
                await asyncio.wait_for(
                    self._transport.wait_for_session_created(),
                    timeout=self.config.realtime.session_ready_timeout_s,
                )
            except (ConsoleError, OSError, TimeoutError) as e:
                if isinstance(e, ConsoleError):
                    error = e
                else:
                    error = TransportClosedError(str(e) or "Timed out waiting for session")
                logger.error(
                    "Session connect failed",
                    extra={"session_id": self.session.id, "code": error.code, "error": str(e)},
                )
                self.last_error = error
                await self._teardown(reason="connect failed")
                return False

            if not self._transport.is_connected():
                self.last_error = TransportClosedError("Transport closed during connect")
                await self._teardown(reason="transport closed during connect")
                return False

            self.session.started_at = datetime.now(timezone.utc)
            self.items = self._transport.conversation.get_items()
            self.transition_state(SessionState.ACTIVE)
            self.timer.start()
            return True

    async def disconnect(self) -> None:
        """End the session. No-op while idle."""
        if self.session.state is SessionState.IDLE:
            return

        async with self._lock:
            if self.session.state is SessionState.IDLE:
                return
            await self._teardown(reason="client disconnect")

    async def set_turn_mode(self, mode: TurnMode) -> bool:
        """Switch between manual and automatic turn detection.

        Returns:
            False if the change could not be sent
        """
        async with self._lock:
            try:
                await self.turn_mode.set_mode(mode)
            except ConsoleError as e:
                self._record_failure("Turn mode change failed", e)
                return False
            self.session.turn_mode = mode
            return True

    async def start_manual_turn(self) -> bool:
        """Begin a push-to-talk turn (MANUAL mode, active session only)."""
        async with self._lock:
            if self.session.state is not SessionState.ACTIVE:
                logger.warning("Manual turn ignored: session not active")
                return False
            try:
                await self.turn_mode.start_manual_turn()
            except ConsoleError as e:
                self._record_failure("Manual turn start rejected", e)
                return False
            return True

    async def stop_manual_turn(self) -> bool:
        """End a push-to-talk turn and request a response."""
        async with self._lock:
            if self.session.state is not SessionState.ACTIVE:
                logger.warning("Manual turn stop ignored: session not active")
                return False
            try:
                return await self.turn_mode.stop_manual_turn()
            except ConsoleError as e:
                self._record_failure("Manual turn stop rejected", e)
                return False

    async def interrupt(self) -> InterruptionRequest | None:
        """Stop assistant playback and cancel the response at the heard offset."""
        async with self._lock:
            if self.session.state is not SessionState.ACTIVE:
                return None
            try:
                return await self._preempt_playback()
            except ConsoleError as e:
                self._record_failure("Interruption failed", e)
                return None

    async def delete_turn(self, item_id: str) -> bool:
        """Ask the server to delete a conversation item.

        Local state changes only when the server's deletion event arrives.
        """
        if not self._transport.is_connected():
            logger.warning("Delete ignored: not connected", extra={"item_id": item_id})
            return False
        try:
            await self._transport.delete_item(item_id)
        except ConsoleError as e:
            self._record_failure("Delete failed", e)
            return False
        return True

    def snapshot(self) -> SessionSnapshot:
        """Current observable state."""
        return SessionSnapshot(
            session_id=self.session.id,
            state=self.session.state,
            turn_mode=self.turn_mode.mode,
            connected=self._transport.is_connected(),
            started_at=self.session.started_at,
            elapsed_seconds=self.timer.elapsed_seconds,
            elapsed_display=self.timer.display(),
            manual_turn_active=self.turn_mode.manual_turn_active,
            events=self.event_log.entries,
            usage=self.usage.ledger.snapshot(),
            items=tuple(self.items),
            latest_transcript=self.latest_transcript,
            last_error=str(self.last_error) if self.last_error else None,
        )

    def _session_settings(self) -> dict[str, Any]:
        realtime = self.config.realtime
        return {
            "instructions": realtime.instructions,
            "voice": realtime.voice,
            "input_audio_transcription": (
                {"model": realtime.input_audio_transcription_model}
                if realtime.input_audio_transcription_model
                else None
            ),
            "turn_detection": self.turn_mode.mode.turn_detection,
        }

    def _reset_session_views(self) -> None:
        self.event_log.reset()
        self.usage.reset()
        self.turns.clear()
        self._tracks.clear()
        self.latest_transcript = ""
        self.chunks_forwarded = 0

    async def _preempt_playback(self) -> InterruptionRequest | None:
        """Interrupt playback and forward the cancellation at the heard offset."""
        request = await self.interruption.interrupt()
        if request is None:
            return None

        self.turns.truncate(request.track_id, request.sample_offset)
        await self._transport.cancel_response(request.track_id, request.sample_offset)
        return request

    async def _teardown(self, reason: str, touch_transport: bool = True) -> None:
        """Release devices and transport and settle at IDLE.

        Each step runs even if an earlier one fails.
        """
        if self.session.state is not SessionState.DISCONNECTING:
            self.transition_state(SessionState.DISCONNECTING)

        self.timer.stop()
        self.turn_mode.reset()

        try:
            if self._capture.get_status() is not CaptureStatus.ENDED:
                await self._capture.end()
        except Exception as e:
            logger.warning("Capture release failed", extra={"error": str(e)})

        if touch_transport:
            try:
                await self._transport.disconnect()
            except Exception as e:
                logger.warning("Transport disconnect failed", extra={"error": str(e)})

            try:
                await self._playback.interrupt()
            except Exception as e:
                logger.warning("Playback interrupt failed", extra={"error": str(e)})

        self._tracks.clear()
        self.transition_state(SessionState.IDLE)
        logger.info(
            "Session ended",
            extra={
                "session_id": self.session.id,
                "reason": reason,
                "total_cost": self.usage.ledger.total_cost,
            },
        )

    def _record_failure(self, message: str, error: ConsoleError) -> None:
        self.last_error = error
        logger.warning(
            message,
            extra={"session_id": self.session.id, "code": error.code, "error": str(error)},
        )

    def _forward_capture_chunk(self, chunk: bytes) -> None:
        if not self._transport.is_connected():
            return
        try:
            self._transport.append_input_audio(chunk)
        except TransportClosedError:
            logger.debug("Dropped capture chunk: transport closed")
            return
        self.chunks_forwarded += 1

    def _on_realtime_event(self, realtime_event: RealtimeEvent) -> None:
        event = realtime_event.event
        self.event_log.ingest(
            realtime_event.source,
            realtime_event.type,
            event,
            timestamp=realtime_event.time,
        )

        if realtime_event.source is EventSource.SERVER and realtime_event.type == RESPONSE_DONE:
            try:
                breakdown = self.usage.apply_response_done(event)
            except ValueError as e:
                logger.warning("Ignoring malformed usage block", extra={"error": str(e)})
                return
            if breakdown is not None:
                logger.info(
                    "Response usage recorded",
                    extra={
                        "session_id": self.session.id,
                        "response_cost": breakdown.total,
                        "total_cost": self.usage.ledger.total_cost,
                    },
                )

    def _on_error(self, event: dict[str, Any]) -> None:
        error = ServerError.model_validate(event.get("error") or {})
        self.last_error = TransportError(error.message)
        logger.error(
            "Realtime service error",
            extra={
                "session_id": self.session.id,
                "code": error.code,
                "error": error.message,
            },
        )

    async def _on_interrupted(self, event: dict[str, Any]) -> None:
        async with self._lock:
            if self.session.state is not SessionState.ACTIVE:
                return
            try:
                await self._preempt_playback()
            except ConsoleError as e:
                self._record_failure("Interruption failed", e)

    def _on_conversation_updated(self, payload: dict[str, Any]) -> None:
        item: ConversationItem = payload["item"]
        delta: dict[str, Any] | None = payload.get("delta")

        self.items = self._transport.conversation.get_items()
        live_ids = {live.id for live in self.items}
        self.turns.prune(live_ids)
        if item.id not in live_ids:
            return

        audio = delta.get("audio") if delta else None
        if audio and self.session.state is SessionState.ACTIVE:
            if self._tracks.record(item.id, audio):
                self._playback.add_chunk(audio, item.id)

        self.turns.observe(item, delta)
        if item.role == "assistant" and item.formatted.transcript:
            self.latest_transcript = item.formatted.transcript

    async def _on_close(self, payload: dict[str, Any]) -> None:
        if self.session.state in (SessionState.IDLE, SessionState.DISCONNECTING):
            return

        async with self._lock:
            if self.session.state in (SessionState.IDLE, SessionState.DISCONNECTING):
                return
            self.last_error = TransportClosedError("Connection closed by server")
            logger.warning(
                "Transport closed; tearing down session",
                extra={"session_id": self.session.id, "error": payload.get("error")},
            )
            await self._teardown(reason="transport closed")
