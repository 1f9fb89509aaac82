"""Audio capture and playback for the realtime console.

This package defines the device contracts the session orchestrator drives,
PCM16 helpers for the service's wire format, and per-track sample
accounting used for sample-accurate interruption.
"""

from .base import CaptureDevice, CaptureStatus, ChunkCallback, PlaybackDevice, TrackOffset
from .pcm import (
    BYTES_PER_SAMPLE,
    decode_pcm,
    encode_pcm,
    pcm_to_wav,
    sample_count,
    samples_to_ms,
)
from .tracks import TrackSampleLedger

__all__ = [
    "BYTES_PER_SAMPLE",
    "CaptureDevice",
    "CaptureStatus",
    "ChunkCallback",
    "PlaybackDevice",
    "TrackOffset",
    "TrackSampleLedger",
    "decode_pcm",
    "encode_pcm",
    "pcm_to_wav",
    "sample_count",
    "samples_to_ms",
]
