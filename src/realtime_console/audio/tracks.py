"""Per-track sample accounting for playback.

Counts how many samples have been enqueued for each playback track so an
interruption offset reported by the device can never claim more audio than
was actually handed to it.
"""

import logging

from realtime_console.audio.pcm import sample_count

logger = logging.getLogger(__name__)


class TrackSampleLedger:
    """Enqueued-sample counters keyed by track id.

    A track is closed once it has been interrupted; further chunks for a
    closed track are refused so late audio deltas of a cancelled response
    are never played.
    """

    def __init__(self) -> None:
        self._enqueued: dict[str, int] = {}
        self._closed: set[str] = set()

    def record(self, track_id: str, pcm: bytes) -> bool:
        """Account for a chunk about to be enqueued.

        Args:
            track_id: Track the chunk belongs to
            pcm: Raw PCM16 mono bytes

        Returns:
            False if the track is closed and the chunk must be dropped
        """
        if track_id in self._closed:
            logger.debug("Dropping chunk for interrupted track", extra={"track_id": track_id})
            return False

        self._enqueued[track_id] = self._enqueued.get(track_id, 0) + sample_count(pcm)
        return True

    def enqueued(self, track_id: str) -> int:
        """Total samples enqueued for a track (0 if unknown)."""
        return self._enqueued.get(track_id, 0)

    def clamp(self, track_id: str, sample_offset: int) -> int:
        """Clamp an offset to the range [0, enqueued samples] for a track."""
        return max(0, min(sample_offset, self.enqueued(track_id)))

    def close_track(self, track_id: str) -> None:
        """Refuse further chunks for a track."""
        self._closed.add(track_id)

    def is_closed(self, track_id: str) -> bool:
        return track_id in self._closed

    def clear(self) -> None:
        """Forget all tracks."""
        self._enqueued.clear()
        self._closed.clear()

    def __len__(self) -> int:
        return len(self._enqueued)
