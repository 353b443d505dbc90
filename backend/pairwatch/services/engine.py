import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence, Union

from pairwatch.config import DEBOUNCE_WINDOW, SETTLE_DELAY, SYNC_THRESHOLD
from pairwatch.models import (
    CachedState,
    CatalogEntry,
    PlaybackState,
    ReplyStateMessage,
    RequestStateMessage,
    StateMessage,
    parse,
)
from pairwatch.services.player import PlaybackRejected, Player
from pairwatch.services.store import StateStore
from pairwatch.services.sync import apply_remote, next_video

logger = logging.getLogger(__name__)

# Player event -> reason tag of the state it triggers
LOCAL_EVENTS = {
    "play": "play",
    "pause": "pause",
    "seeked": "seek",
    "ratechange": "ratechange",
}

NO_VIDEOS_NOTE = "No HLS-ready videos yet. Generate HLS output and reload."
MISSING_HLS_NOTE = "HLS not found for this file. Generate HLS output and reload."


class Transport(Protocol):
    def emit(self, event: str, data: dict) -> None: ...


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class ApplyingRemote:
    # None while the player calls are running, then the end of the settle window
    until: Optional[float] = None


GuardState = Union[Idle, ApplyingRemote]
IDLE = Idle()


@dataclass
class PlaybackSession:
    selected: Optional[str] = None
    play_all: bool = False
    # remote snapshot waiting for the selected media to load
    pending: Optional[PlaybackState] = None

    def defer(self, state: PlaybackState) -> None:
        self.pending = state

    def take_pending(self) -> Optional[PlaybackState]:
        state, self.pending = self.pending, None
        return state


def _default_call_later(delay: float, callback: Callable[[], None]):
    return asyncio.get_running_loop().call_later(delay, callback)


class SyncEngine:
    """
    Keeps one peer's player in step with the latest intent of any peer.

    All methods are meant to run on a single event loop thread. Local player
    events broadcast a fresh snapshot; remote snapshots are reconciled through
    `apply_remote`. While a remote snapshot is being applied, and for a short
    settle delay afterwards, the events the player fires in response are not
    re-broadcast.
    """

    def __init__(
        self,
        player: Player,
        transport: Transport,
        store: StateStore,
        clock: Callable[[], float] = time.monotonic,
        call_later: Callable[[float, Callable[[], None]], Any] = _default_call_later,
        tolerance: float = SYNC_THRESHOLD,
        debounce: float = DEBOUNCE_WINDOW,
        settle: float = SETTLE_DELAY,
    ):
        self.player = player
        self.transport = transport
        self.store = store
        self.clock = clock
        self.call_later = call_later
        self.tolerance = tolerance
        self.debounce = debounce
        self.settle = settle

        self.catalog: List[CatalogEntry] = []
        self.session = PlaybackSession()
        self.guard: GuardState = IDLE
        self.peer_id: Optional[str] = None
        self.connected = False
        self.status = "Idle"
        self.note = ""
        self.last_local_push = float("-inf")
        self.loaded_source: Optional[str] = None
        self.remote_applied = False
        self._settle_token = 0

        for event, reason in LOCAL_EVENTS.items():
            player.add_listener(event, self._local_handler(reason))
        player.add_listener("loadedmetadata", self.on_loaded_metadata)
        player.add_listener("ended", self.on_ended)

    def _local_handler(self, reason: str) -> Callable[[], None]:
        return lambda: self.push_state(reason)

    @property
    def playlist(self) -> List[str]:
        return [entry.name for entry in self.catalog]

    @property
    def is_applying_remote(self) -> bool:
        return isinstance(self.guard, ApplyingRemote)

    # -- catalog / selection --

    def load_catalog(self, entries: Sequence[CatalogEntry]) -> None:
        had_catalog = bool(self.catalog)
        self.catalog = [entry for entry in entries if entry.hls_ready]
        if not self.catalog:
            self.note = NO_VIDEOS_NOTE
            return
        self.note = ""
        if self.session.selected not in self.playlist:
            self._set_video(self.catalog[0].name)
        elif self.loaded_source is None:
            self._set_video(self.session.selected)
        # The join handshake waits for a catalog to play from
        if self.connected and not had_catalog and self.request_state():
            self.status = "Waiting"

    def catalog_unavailable(self, message: str) -> None:
        self.catalog = []
        self.note = message

    def _set_video(self, name: str) -> None:
        self.session.selected = name
        entry = next((e for e in self.catalog if e.name == name), None)
        if not entry or not entry.source:
            logger.warning(f"No playable HLS source for {name}")
            self.note = MISSING_HLS_NOTE
            self.loaded_source = None
            self.player.load(None)
            return
        self.note = ""
        self.loaded_source = entry.source
        self.player.load(entry.source)

    def select_video(self, name: str) -> bool:
        """User picked a video."""
        if name not in self.playlist:
            logger.warning(f"Ignoring selection of unknown video {name}")
            return False
        self.session.pending = None
        self._set_video(name)
        return self.push_state("video-change")

    def set_play_all(self, enabled: bool) -> bool:
        self.session.play_all = bool(enabled)
        return self.push_state("play-all")

    # -- outbound --

    def snapshot(self, reason: Optional[str] = None) -> Optional[PlaybackState]:
        if not self.session.selected:
            return None
        return PlaybackState(
            video=self.session.selected,
            paused=self.player.paused,
            time=self.player.current_time or 0.0,
            playback_rate=self.player.playback_rate or 1.0,
            play_all=self.session.play_all,
            reason=reason,
        )

    def push_state(self, reason: str) -> bool:
        if self.is_applying_remote:
            return False
        state = self.snapshot(reason)
        if state is None:
            return False
        self.last_local_push = self.clock()
        self.transport.emit("state", {"state": state.to_wire()})
        return True

    def heartbeat(self) -> bool:
        if self.player.paused:
            return False
        return self.push_state("heartbeat")

    def request_state(self) -> bool:
        if not self.peer_id or not self.catalog:
            return False
        self.transport.emit("request-state", {"requester": self.peer_id})
        return True

    def resync(self) -> None:
        self.request_state()
        self.status = "Requesting state"

    def capture_state(self) -> None:
        """Best-effort cache of the live state, e.g. before teardown."""
        state = self.snapshot()
        if state is not None:
            self.store.save(CachedState.capture(state))

    # -- connection --

    def on_connect(self, peer_id: str) -> None:
        self.peer_id = peer_id
        self.connected = True
        self.status = "Connected"
        if self.request_state():
            self.status = "Waiting"

    def on_disconnect(self) -> None:
        self.connected = False
        self.status = "Idle"

    # -- inbound --

    def handle_state(self, data: Any) -> bool:
        message = parse(StateMessage, data)
        if message is None:
            return False
        return self.receive_remote(message.state)

    def handle_reply_state(self, data: Any) -> bool:
        message = parse(ReplyStateMessage, data)
        if message is None:
            return False
        if self.peer_id and message.to != self.peer_id:
            return False
        return self.receive_remote(message.state)

    def handle_request_state(self, data: Any) -> bool:
        message = parse(RequestStateMessage, data)
        if message is None or message.requester == self.peer_id or not self.catalog:
            return False
        state = self.snapshot("join")
        if state is None:
            return False
        self.transport.emit("reply-state", {"to": message.requester, "state": state.to_wire()})
        return True

    def receive_remote(self, state: PlaybackState) -> bool:
        if not self.catalog:
            logger.debug(f"Dropping remote state ({state.reason}) until the catalog is loaded")
            return False
        # Our own change is fresher than whatever crossed it on the wire
        if self.clock() - self.last_local_push < self.debounce:
            logger.debug(f"Dropping remote state ({state.reason}) inside debounce window")
            return False
        self.remote_applied = True
        self.apply_remote_state(state)
        return True

    def apply_remote_state(self, state: PlaybackState) -> None:
        self.guard = ApplyingRemote()
        self.status = f"Syncing ({state.reason})" if state.reason else "Syncing"

        actions = apply_remote(self.snapshot(), state, self.tolerance)
        if actions.deferred:
            self.session.defer(state)
            self.guard = IDLE
            self._set_video(state.video)
            return

        if actions.play_all is not None:
            self.session.play_all = actions.play_all
        if actions.seek_to is not None:
            self.player.current_time = actions.seek_to
        if actions.rate is not None:
            self.player.playback_rate = actions.rate
        if actions.pause:
            self.player.pause()
        elif actions.play:
            self._request_play()

        self.store.save(CachedState.capture(state))

        self._settle_token += 1
        token = self._settle_token
        self.guard = ApplyingRemote(until=self.clock() + self.settle)
        self.call_later(self.settle, lambda: self._settle(token))

    def _settle(self, token: int) -> None:
        # A newer remote state restarted the window
        if token != self._settle_token:
            return
        self.guard = IDLE
        self.status = "In sync"

    def _request_play(self) -> None:
        try:
            result = self.player.play()
        except PlaybackRejected as e:
            logger.debug(f"play() rejected: {e}")
            return
        if inspect.isawaitable(result):
            asyncio.ensure_future(result).add_done_callback(_ignore_play_failure)

    # -- player lifecycle --

    def on_loaded_metadata(self) -> None:
        pending = self.session.take_pending()
        if pending is not None:
            self.apply_remote_state(pending)

    def on_ended(self) -> None:
        if not self.session.play_all:
            return
        upcoming = next_video(self.playlist, self.session.selected)
        if not upcoming:
            return
        self.session.pending = None
        self._set_video(upcoming)
        # play() pushes its own "play" state first; "auto-next" follows with the new video
        self._request_play()
        self.push_state("auto-next")

    def restore_cached_state(self) -> bool:
        cached = self.store.load()
        if cached is None:
            return False
        if self.remote_applied:
            logger.info("Skipping cached state, the room already sent a live one")
            return False
        if cached.video not in self.playlist:
            logger.info(f"Ignoring cached state for missing video {cached.video}")
            return False
        self.apply_remote_state(cached.to_playback_state())
        return True


def _ignore_play_failure(future: asyncio.Future) -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"play() rejected: {future.exception()}")
