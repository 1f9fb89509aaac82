"""Unit tests for sounddevice-backed capture and playback.

The sounddevice module is replaced by a mock so no audio hardware is
needed.
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from realtime_console.audio.base import CaptureStatus, TrackOffset
from realtime_console.audio.sounddevice_io import SoundDeviceCapture, SoundDevicePlayback
from realtime_console.errors import DeviceUnavailableError


class FakePortAudioError(Exception):
    pass


def mock_sounddevice() -> MagicMock:
    sd = MagicMock()
    sd.PortAudioError = FakePortAudioError
    return sd


@pytest.mark.asyncio
async def test_capture_lifecycle() -> None:
    """Test begin, record, pause and end drive the input stream."""
    sd = mock_sounddevice()
    capture = SoundDeviceCapture(sample_rate=24000, chunk_samples=2400)

    with patch("realtime_console.audio.sounddevice_io._load_sounddevice", return_value=sd):
        await capture.begin()
    stream = sd.RawInputStream.return_value
    assert capture.get_status() == CaptureStatus.PAUSED
    assert sd.RawInputStream.call_args.kwargs["blocksize"] == 2400

    await capture.record(lambda chunk: None)
    assert capture.get_status() == CaptureStatus.RECORDING
    stream.start.assert_called_once()

    await capture.pause()
    assert capture.get_status() == CaptureStatus.PAUSED

    await capture.end()
    assert capture.get_status() == CaptureStatus.ENDED
    stream.close.assert_called_once()


@pytest.mark.asyncio
async def test_capture_permission_denied() -> None:
    """Test a stream open failure maps to DeviceUnavailableError."""
    sd = mock_sounddevice()
    sd.RawInputStream.side_effect = FakePortAudioError("Permission denied")
    capture = SoundDeviceCapture()

    with patch("realtime_console.audio.sounddevice_io._load_sounddevice", return_value=sd):
        with pytest.raises(DeviceUnavailableError):
            await capture.begin()

    assert capture.get_status() == CaptureStatus.ENDED


@pytest.mark.asyncio
async def test_record_before_begin_rejected() -> None:
    """Test recording requires an acquired device."""
    with pytest.raises(DeviceUnavailableError):
        await SoundDeviceCapture().record(lambda chunk: None)


@pytest.mark.asyncio
async def test_capture_callback_delivers_on_loop() -> None:
    """Test chunks from the audio thread reach the callback only while recording."""
    sd = mock_sounddevice()
    capture = SoundDeviceCapture()
    received: list[bytes] = []

    with patch("realtime_console.audio.sounddevice_io._load_sounddevice", return_value=sd):
        await capture.begin()
    await capture.record(received.append)

    capture._callback(b"\x01\x00", 1, None, None)
    await asyncio.sleep(0)
    await capture.pause()
    capture._callback(b"\x02\x00", 1, None, None)
    await asyncio.sleep(0)

    assert received == [b"\x01\x00"]


@pytest.mark.asyncio
async def test_playback_reports_played_offset() -> None:
    """Test interrupt reports the samples actually written to the device."""
    playback = SoundDevicePlayback()
    playback.add_chunk(b"\x01\x00" * 100, "t1")
    playback.add_chunk(b"\x02\x00" * 100, "t2")

    out = bytearray(60 * 2)
    playback._callback(out, 60, None, None)

    assert bytes(out) == b"\x01\x00" * 60
    assert await playback.interrupt() == TrackOffset(track_id="t1", sample_offset=60)

    # Interrupted track refuses late chunks; nothing left to play
    playback.add_chunk(b"\x01\x00" * 10, "t1")
    assert await playback.interrupt() is None


def test_playback_pads_with_silence() -> None:
    """Test an underrun is filled with zeros."""
    playback = SoundDevicePlayback()
    playback.add_chunk(b"\x05\x00" * 10, "t1")

    out = bytearray(b"\xff" * 40)
    playback._callback(out, 20, None, None)

    assert bytes(out) == b"\x05\x00" * 10 + b"\x00" * 20


@pytest.mark.asyncio
async def test_playback_connect_failure() -> None:
    """Test a missing output device maps to DeviceUnavailableError."""
    sd = mock_sounddevice()
    sd.RawOutputStream.side_effect = FakePortAudioError("No device")
    playback = SoundDevicePlayback()

    with patch("realtime_console.audio.sounddevice_io._load_sounddevice", return_value=sd):
        with pytest.raises(DeviceUnavailableError):
            await playback.connect()


@pytest.mark.asyncio
async def test_playback_accounting_reset_per_session() -> None:
    """Test interrupted tracks and played counts do not outlive a session."""
    sd = mock_sounddevice()
    playback = SoundDevicePlayback()

    with patch("realtime_console.audio.sounddevice_io._load_sounddevice", return_value=sd):
        await playback.connect()
        playback.add_chunk(b"\x01\x00" * 100, "t1")
        playback._callback(bytearray(40 * 2), 40, None, None)
        await playback.interrupt()

        assert playback._played == {}
        assert playback._interrupted == {"t1"}

        await playback.connect()

    assert playback._interrupted == set()
    sd.RawOutputStream.assert_called_once()

    # A reused track id plays again in the new session
    playback.add_chunk(b"\x01\x00" * 10, "t1")
    assert await playback.interrupt() == TrackOffset(track_id="t1", sample_offset=0)
