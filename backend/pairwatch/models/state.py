import time as _time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PlaybackState(BaseModel):
    """Immutable snapshot of one peer's player, as sent over the wire."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    video: str = Field(min_length=1)
    paused: bool
    time: float = Field(ge=0, allow_inf_nan=False)
    playback_rate: float = Field(alias="playbackRate", gt=0, allow_inf_nan=False)
    play_all: Optional[bool] = Field(default=None, alias="playAll")
    reason: Optional[str] = None  # display only

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class CachedState(BaseModel):
    """Last applied state, kept across restarts of a single peer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    video: str = Field(min_length=1)
    time: float = Field(default=0.0, ge=0)
    paused: bool = True
    playback_rate: float = Field(default=1.0, alias="playbackRate", gt=0)
    play_all: bool = Field(default=False, alias="playAll")
    captured_at: int = Field(default_factory=lambda: int(_time.time() * 1000), alias="capturedAt")

    @classmethod
    def capture(cls, state: PlaybackState) -> "CachedState":
        return cls(
            video=state.video,
            time=state.time,
            paused=state.paused,
            playback_rate=state.playback_rate,
            play_all=bool(state.play_all),
        )

    def to_playback_state(self) -> PlaybackState:
        return PlaybackState(
            video=self.video,
            paused=self.paused,
            time=self.time,
            playback_rate=self.playback_rate,
            play_all=self.play_all,
        )
