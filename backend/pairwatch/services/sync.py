from dataclasses import dataclass
from typing import Optional, Sequence

from pairwatch.config import SYNC_THRESHOLD
from pairwatch.models.state import PlaybackState


@dataclass(frozen=True)
class RemoteActions:
    """What a peer must do to its player to adopt a remote snapshot."""

    switch_video: Optional[str] = None  # set => everything else deferred
    play_all: Optional[bool] = None
    seek_to: Optional[float] = None
    rate: Optional[float] = None
    pause: bool = False
    play: bool = False

    @property
    def deferred(self) -> bool:
        return self.switch_video is not None


def apply_remote(
    local: Optional[PlaybackState],
    remote: PlaybackState,
    tolerance: float = SYNC_THRESHOLD,
) -> RemoteActions:
    """
    Reconcile a local snapshot against a remote one.

    A different video only switches the selection; time, pause state and rate
    are left for when the new media has loaded. Drift under `tolerance` is
    not corrected, so heartbeats from a peer with slightly skewed clocks do
    not cause a seek each time.
    """
    if local is None or remote.video != local.video:
        return RemoteActions(switch_video=remote.video)

    seek_to = None
    if abs(local.time - remote.time) > tolerance:
        seek_to = remote.time

    rate = None
    if local.playback_rate != remote.playback_rate:
        rate = remote.playback_rate

    return RemoteActions(
        play_all=remote.play_all,
        seek_to=seek_to,
        rate=rate,
        pause=remote.paused,
        play=not remote.paused,
    )


def next_video(playlist: Sequence[str], current: Optional[str]) -> Optional[str]:
    """Cyclic successor of `current`; the first entry when `current` is unknown."""
    if not playlist:
        return None
    try:
        index = list(playlist).index(current)
    except ValueError:
        return playlist[0]
    return playlist[(index + 1) % len(playlist)]
