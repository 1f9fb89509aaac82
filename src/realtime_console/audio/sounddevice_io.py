"""Capture and playback on local audio hardware via sounddevice.

PortAudio invokes stream callbacks on its own thread. Capture chunks are
marshalled onto the event loop with ``call_soon_threadsafe`` so the session
controller only ever runs on one thread. Playback state shared with the
output callback is guarded by a threading lock.
"""

import asyncio
import logging
import threading
from collections import deque
from typing import Any

from realtime_console.audio.base import (
    CaptureDevice,
    CaptureStatus,
    ChunkCallback,
    PlaybackDevice,
    TrackOffset,
)
from realtime_console.audio.pcm import BYTES_PER_SAMPLE
from realtime_console.errors import DeviceUnavailableError

logger = logging.getLogger(__name__)


def _load_sounddevice() -> Any:
    """Import sounddevice, mapping a missing PortAudio backend to a device error."""
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise DeviceUnavailableError(f"Audio backend unavailable: {e}") from e
    return sd


class SoundDeviceCapture(CaptureDevice):
    """Microphone capture using a sounddevice raw input stream."""

    def __init__(
        self,
        sample_rate: int = 24000,
        chunk_samples: int = 2400,
        device: str | int | None = None,
    ) -> None:
        """Initialize capture.

        Args:
            sample_rate: Capture sample rate in Hz
            chunk_samples: Samples per delivered chunk
            device: Input device name or index (None = default)
        """
        self.sample_rate = sample_rate
        self.chunk_samples = chunk_samples
        self.device = device

        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._on_chunk: ChunkCallback | None = None
        self._status = CaptureStatus.ENDED

    async def begin(self) -> None:
        if self._status is not CaptureStatus.ENDED:
            return

        sd = _load_sounddevice()
        self._loop = asyncio.get_running_loop()

        try:
            self._stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                blocksize=self.chunk_samples,
                channels=1,
                dtype="int16",
                device=self.device,
                callback=self._callback,
            )
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise DeviceUnavailableError(f"Microphone unavailable: {e}") from e

        self._status = CaptureStatus.PAUSED
        logger.info(
            "Capture device acquired",
            extra={"device": self.device or "default", "sample_rate": self.sample_rate},
        )

    async def record(self, on_chunk: ChunkCallback) -> None:
        if self._status is CaptureStatus.ENDED:
            raise DeviceUnavailableError("Capture device not acquired; call begin() first")

        self._on_chunk = on_chunk
        if self._status is CaptureStatus.PAUSED:
            self._stream.start()
            self._status = CaptureStatus.RECORDING

    async def pause(self) -> None:
        if self._status is CaptureStatus.RECORDING:
            self._stream.stop()
            self._status = CaptureStatus.PAUSED
        self._on_chunk = None

    async def end(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        self._on_chunk = None
        self._status = CaptureStatus.ENDED

    def get_status(self) -> CaptureStatus:
        return self._status

    def _callback(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        # PortAudio thread
        if status:
            logger.debug("Capture stream status", extra={"status": str(status)})
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self._dispatch, bytes(indata))

    def _dispatch(self, chunk: bytes) -> None:
        # Chunks still in flight after pause() are dropped here.
        if self._status is CaptureStatus.RECORDING and self._on_chunk is not None:
            self._on_chunk(chunk)


class SoundDevicePlayback(PlaybackDevice):
    """Speaker playback using a sounddevice raw output stream.

    Keeps a FIFO of (track_id, pcm) chunks and counts samples played per
    track so an interruption can report the exact offset heard.
    """

    def __init__(self, sample_rate: int = 24000, device: str | int | None = None) -> None:
        self.sample_rate = sample_rate
        self.device = device

        self._stream: Any = None
        self._lock = threading.Lock()
        self._queue: deque[tuple[str, memoryview]] = deque()
        self._played: dict[str, int] = {}
        self._interrupted: set[str] = set()

    async def connect(self) -> None:
        # Track accounting is per session; the stream may be reused.
        with self._lock:
            self._played.clear()
            self._interrupted.clear()
        if self._stream is not None:
            return

        sd = _load_sounddevice()
        try:
            self._stream = sd.RawOutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="int16",
                device=self.device,
                callback=self._callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise DeviceUnavailableError(f"Speaker unavailable: {e}") from e

        logger.info(
            "Playback device connected",
            extra={"device": self.device or "default", "sample_rate": self.sample_rate},
        )

    def add_chunk(self, pcm: bytes, track_id: str) -> None:
        if not pcm:
            return
        with self._lock:
            if track_id in self._interrupted:
                return
            self._queue.append((track_id, memoryview(pcm)))

    async def interrupt(self) -> TrackOffset | None:
        with self._lock:
            if not self._queue:
                return None
            track_id = self._queue[0][0]
            offset = TrackOffset(track_id=track_id, sample_offset=self._played.get(track_id, 0))
            self._interrupted.add(track_id)
            self._played.pop(track_id, None)
            self._queue.clear()

        logger.debug(
            "Playback interrupted",
            extra={"track_id": offset.track_id, "sample_offset": offset.sample_offset},
        )
        return offset

    async def disconnect(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
        with self._lock:
            self._queue.clear()
            self._played.clear()
            self._interrupted.clear()

    def _callback(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        # PortAudio thread
        needed = frames * BYTES_PER_SAMPLE
        written = 0
        with self._lock:
            while written < needed and self._queue:
                track_id, chunk = self._queue[0]
                take = min(len(chunk), needed - written)
                outdata[written : written + take] = chunk[:take]
                written += take
                self._played[track_id] = self._played.get(track_id, 0) + take // BYTES_PER_SAMPLE
                if take == len(chunk):
                    self._queue.popleft()
                else:
                    self._queue[0] = (track_id, chunk[take:])

        if written < needed:
            outdata[written:needed] = bytes(needed - written)
