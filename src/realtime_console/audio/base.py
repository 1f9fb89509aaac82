"""Base audio device abstractions.

Defines the capture and playback interfaces the session controller owns.
Concrete implementations (sounddevice, test fakes) must deliver capture
chunks on the event loop thread.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

ChunkCallback = Callable[[bytes], None]


class CaptureStatus(Enum):
    """Capture device status.

    - ENDED: Device released (initial state, and after end())
    - PAUSED: Device acquired, not delivering chunks
    - RECORDING: Delivering chunks to the registered callback
    """

    ENDED = "ended"
    PAUSED = "paused"
    RECORDING = "recording"


@dataclass(frozen=True)
class TrackOffset:
    """Position within a playback track.

    Attributes:
        track_id: Track identifier (the conversation item id)
        sample_offset: Samples of the track already played out
    """

    track_id: str
    sample_offset: int


class CaptureDevice(ABC):
    """Microphone capture device yielding mono PCM16 chunks."""

    @abstractmethod
    async def begin(self) -> None:
        """Acquire the capture device.

        Raises:
            DeviceUnavailableError: If the device cannot be opened (permission
                denied, no device, backend missing)
        """
        pass

    @abstractmethod
    async def record(self, on_chunk: ChunkCallback) -> None:
        """Start delivering chunks to ``on_chunk``.

        Chunks are delivered in capture order on the event loop thread.

        Args:
            on_chunk: Callback receiving raw PCM16 mono bytes
        """
        pass

    @abstractmethod
    async def pause(self) -> None:
        """Stop delivering chunks but keep the device acquired."""
        pass

    @abstractmethod
    async def end(self) -> None:
        """Stop capture and release the device."""
        pass

    @abstractmethod
    def get_status(self) -> CaptureStatus:
        """Current capture status."""
        pass


class PlaybackDevice(ABC):
    """Speaker playback device with per-track queuing."""

    @abstractmethod
    async def connect(self) -> None:
        """Acquire the output device.

        Raises:
            DeviceUnavailableError: If the device cannot be opened
        """
        pass

    @abstractmethod
    def add_chunk(self, pcm: bytes, track_id: str) -> None:
        """Enqueue PCM16 mono audio for a track.

        Chunks for a track that was interrupted are discarded.

        Args:
            pcm: Raw PCM16 mono bytes
            track_id: Track the chunk belongs to
        """
        pass

    @abstractmethod
    async def interrupt(self) -> TrackOffset | None:
        """Stop playback immediately and clear queued audio.

        Returns:
            Track and sample offset of what was sounding, or None if
            nothing was playing
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Stop playback and release the output device."""
        pass
