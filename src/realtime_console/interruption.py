"""Sample-accurate interruption of assistant playback.

When the user talks over the assistant, playback must stop at once and the
remote service must be told exactly how much of the response was heard, so
its record of the turn (audio and transcript) matches what the user
actually received. A wrong offset corrupts the context of later turns.
"""

import logging
from dataclasses import dataclass

from realtime_console.audio.base import PlaybackDevice
from realtime_console.audio.tracks import TrackSampleLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterruptionRequest:
    """Cancellation target produced by an interruption.

    Attributes:
        track_id: Playback track (conversation item) that was sounding
        sample_offset: Samples of the track the user heard
    """

    track_id: str
    sample_offset: int


class InterruptionCoordinator:
    """Stops playback and reports the exact offset reached.

    The returned offset is clamped to the samples actually enqueued for the
    track, and the track is closed so late audio deltas of the cancelled
    response are not played.
    """

    def __init__(self, playback: PlaybackDevice, tracks: TrackSampleLedger) -> None:
        """Initialize coordinator.

        Args:
            playback: Playback device to interrupt
            tracks: Enqueued-sample ledger for the playback device
        """
        self._playback = playback
        self._tracks = tracks
        self.interruption_count = 0

    async def interrupt(self) -> InterruptionRequest | None:
        """Stop whatever is playing.

        Returns:
            The track and offset to cancel at, or None if nothing was playing
        """
        offset = await self._playback.interrupt()
        if offset is None or not offset.track_id:
            return None

        sample_offset = self._tracks.clamp(offset.track_id, offset.sample_offset)
        if sample_offset != offset.sample_offset:
            logger.warning(
                "Playback offset clamped to enqueued samples",
                extra={
                    "track_id": offset.track_id,
                    "reported_offset": offset.sample_offset,
                    "enqueued": self._tracks.enqueued(offset.track_id),
                },
            )
        self._tracks.close_track(offset.track_id)
        self.interruption_count += 1

        logger.info(
            "Assistant playback interrupted",
            extra={"track_id": offset.track_id, "sample_offset": sample_offset},
        )
        return InterruptionRequest(track_id=offset.track_id, sample_offset=sample_offset)
