"""Turn-taking mode management.

Two policies decide when a user turn ends:

- MANUAL: push-to-talk; the user starts and stops each turn and stopping
  requests a response.
- AUTO_VAD: capture runs continuously and the remote service's voice
  activity detector decides turn boundaries.

A mode change is sent to the service before local capture changes, so no
audio is ever captured under a mode the service does not know about.
"""

import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from realtime_console.audio.base import CaptureDevice, CaptureStatus, ChunkCallback
from realtime_console.errors import InvalidModeTransitionError, TransportClosedError
from realtime_console.interruption import InterruptionRequest
from realtime_console.transport.base import RealtimeTransport

logger = logging.getLogger(__name__)

PreemptCallback = Callable[[], Awaitable[InterruptionRequest | None]]


class TurnMode(Enum):
    """Turn detection mode; values match the configuration file."""

    MANUAL = "none"
    AUTO_VAD = "server_vad"

    @property
    def turn_detection(self) -> dict[str, Any] | None:
        """Session ``turn_detection`` setting for this mode."""
        if self is TurnMode.AUTO_VAD:
            return {"type": "server_vad"}
        return None


class TurnModeManager:
    """Holds the active turn mode and drives capture accordingly.

    Thread-safety: Not thread-safe; the session controller serializes calls.
    """

    def __init__(
        self,
        capture: CaptureDevice,
        transport: RealtimeTransport,
        on_chunk: ChunkCallback,
        preempt: PreemptCallback,
        mode: TurnMode = TurnMode.AUTO_VAD,
    ) -> None:
        """Initialize turn mode manager.

        Args:
            capture: Capture device (owned by the session controller)
            transport: Realtime transport (owned by the session controller)
            on_chunk: Receives captured chunks while recording
            preempt: Interrupts assistant playback and forwards the cancellation
            mode: Initial mode
        """
        self._capture = capture
        self._transport = transport
        self._on_chunk = on_chunk
        self._preempt = preempt
        self._mode = mode
        self._manual_turn_active = False

    @property
    def mode(self) -> TurnMode:
        return self._mode

    @property
    def manual_turn_active(self) -> bool:
        return self._manual_turn_active

    async def set_mode(self, mode: TurnMode) -> None:
        """Switch turn mode.

        The session update is sent first; capture is then paused (MANUAL)
        or resumed if connected (AUTO_VAD).
        """
        previous = self._mode
        await self._transport.update_session(turn_detection=mode.turn_detection)
        self._mode = mode

        if mode is TurnMode.MANUAL:
            if self._capture.get_status() is CaptureStatus.RECORDING:
                await self._capture.pause()
            self._manual_turn_active = False
        elif self._transport.is_connected():
            await self._record()
            self._manual_turn_active = False

        logger.info(
            "Turn mode changed",
            extra={"from_mode": previous.value, "to_mode": mode.value},
        )

    async def resume_if_automatic(self) -> bool:
        """Start capture when in AUTO_VAD mode.

        Returns:
            True if capture was started
        """
        if self._mode is not TurnMode.AUTO_VAD:
            return False
        await self._record()
        return True

    async def start_manual_turn(self) -> InterruptionRequest | None:
        """Begin a push-to-talk turn.

        Any assistant audio still playing is preempted, and its cancellation
        issued, before capture resumes.

        Returns:
            The interruption that was issued, if any

        Raises:
            InvalidModeTransitionError: If not in MANUAL mode
            TransportClosedError: If not connected
        """
        self._require_manual("start a manual turn")
        if not self._transport.is_connected():
            raise TransportClosedError("Cannot start a manual turn while disconnected")
        if self._manual_turn_active:
            logger.debug("Manual turn already in progress")
            return None

        request = await self._preempt()
        await self._record()
        self._manual_turn_active = True
        return request

    async def stop_manual_turn(self) -> bool:
        """End a push-to-talk turn and request a response.

        Returns:
            False if no manual turn was in progress

        Raises:
            InvalidModeTransitionError: If not in MANUAL mode
        """
        self._require_manual("stop a manual turn")
        if not self._manual_turn_active:
            return False

        await self._capture.pause()
        self._manual_turn_active = False
        await self._transport.create_response()
        return True

    def reset(self) -> None:
        """Forget any in-progress manual turn (session teardown)."""
        self._manual_turn_active = False

    async def _record(self) -> None:
        if self._capture.get_status() is not CaptureStatus.RECORDING:
            await self._capture.record(self._on_chunk)

    def _require_manual(self, action: str) -> None:
        if self._mode is not TurnMode.MANUAL:
            raise InvalidModeTransitionError(
                f"Cannot {action} in {self._mode.value} mode; switch to manual first"
            )
