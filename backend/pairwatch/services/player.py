import time
from typing import Any, Callable, Dict, List, Optional, Protocol

PLAYER_EVENTS = ("play", "pause", "seeked", "ratechange", "loadedmetadata", "ended")


class PlaybackRejected(Exception):
    """play() was refused, e.g. blocked by an autoplay policy."""


class Player(Protocol):
    """The media element a peer drives. Events fire synchronously from the mutating call."""

    current_time: float
    playback_rate: float

    @property
    def paused(self) -> bool: ...

    @property
    def duration(self) -> Optional[float]: ...

    def play(self) -> Any: ...

    def pause(self) -> None: ...

    def load(self, source: Optional[str]) -> None: ...

    def add_listener(self, event: str, callback: Callable[[], None]) -> None: ...


class VirtualPlayer:
    """
    Headless player whose position advances with a clock.

    Mirrors the observable behaviour of an HTML media element closely enough
    for the sync engine: every imperative call fires its event before it
    returns, loading a source resets the playhead and pauses without an
    event, and reaching the end fires `pause` then `ended`.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        autoplay_allowed: bool = True,
        load_delay: Optional[float] = None,
        scheduler: Optional[Callable[[float, Callable[[], None]], Any]] = None,
        durations: Optional[Dict[str, float]] = None,
    ):
        self._clock = clock
        self.autoplay_allowed = autoplay_allowed
        self._load_delay = load_delay
        self._scheduler = scheduler
        self._durations = durations or {}
        self._listeners: Dict[str, List[Callable[[], None]]] = {name: [] for name in PLAYER_EVENTS}

        self.source: Optional[str] = None
        self.ready = False
        self._duration: Optional[float] = None
        self._paused = True
        self._rate = 1.0
        self._position = 0.0
        self._anchor = self._clock()
        self._load_token = 0

    # -- events --

    def add_listener(self, event: str, callback: Callable[[], None]) -> None:
        if event not in self._listeners:
            raise ValueError(f"Unknown player event: {event}")
        self._listeners[event].append(callback)

    def _emit(self, event: str) -> None:
        for callback in list(self._listeners[event]):
            callback()

    # -- state --

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def duration(self) -> Optional[float]:
        return self._duration

    @property
    def current_time(self) -> float:
        position = self._position
        if not self._paused:
            position += (self._clock() - self._anchor) * self._rate
        if self._duration is not None:
            position = min(position, self._duration)
        return max(0.0, position)

    @current_time.setter
    def current_time(self, value: float) -> None:
        self._position = max(0.0, float(value))
        if self._duration is not None:
            self._position = min(self._position, self._duration)
        self._anchor = self._clock()
        self._emit("seeked")

    @property
    def playback_rate(self) -> float:
        return self._rate

    @playback_rate.setter
    def playback_rate(self, value: float) -> None:
        value = float(value)
        if value == self._rate:
            return
        self._freeze()
        self._rate = value
        self._emit("ratechange")

    def _freeze(self) -> None:
        self._position = self.current_time
        self._anchor = self._clock()

    # -- commands --

    def play(self) -> None:
        if not self.source:
            raise PlaybackRejected("No media loaded")
        if not self.autoplay_allowed:
            raise PlaybackRejected("Autoplay blocked")
        if not self._paused:
            return
        if self._duration is not None and self._position >= self._duration:
            self._position = 0.0
        self._anchor = self._clock()
        self._paused = False
        self._emit("play")

    def pause(self) -> None:
        if self._paused:
            return
        self._freeze()
        self._paused = True
        self._emit("pause")

    def load(self, source: Optional[str]) -> None:
        self.source = source
        self.ready = False
        self._duration = None
        self._paused = True
        self._position = 0.0
        self._anchor = self._clock()
        self._load_token += 1
        if source and self._load_delay is not None and self._scheduler is not None:
            token = self._load_token
            self._scheduler(self._load_delay, lambda: self._finish_if_current(token))

    def _finish_if_current(self, token: int) -> None:
        if token == self._load_token:
            self.finish_loading()

    def finish_loading(self, duration: Optional[float] = None) -> None:
        """Media metadata is available; fires `loadedmetadata`."""
        if not self.source:
            return
        self.ready = True
        self._duration = duration if duration is not None else self._durations.get(self.source)
        self._emit("loadedmetadata")

    def tick(self) -> None:
        """Detect end of media. Call periodically while playing."""
        if self._paused or self._duration is None:
            return
        if self.current_time >= self._duration:
            self._position = self._duration
            self._anchor = self._clock()
            self._paused = True
            self._emit("pause")
            self._emit("ended")
