import pytest

from pairwatch.models import CatalogEntry
from pairwatch.services.engine import SyncEngine
from pairwatch.services.player import VirtualPlayer
from pairwatch.services.store import MemoryStateStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTimers:
    """call_later stand-in driven by FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.pending = []

    def __call__(self, delay, callback):
        self.pending.append((self.clock() + delay, callback))

    def advance(self, seconds: float):
        self.clock.advance(seconds)
        now = self.clock() + 1e-9
        due = [item for item in self.pending if item[0] <= now]
        self.pending = [item for item in self.pending if item[0] > now]
        for _, callback in sorted(due, key=lambda item: item[0]):
            callback()


class RecordingTransport:
    def __init__(self):
        self.sent = []

    def emit(self, event, data):
        self.sent.append((event, data))

    def events(self, name):
        return [data for event, data in self.sent if event == name]

    def clear(self):
        self.sent.clear()


def make_entry(name: str, ready: bool = True) -> CatalogEntry:
    return CatalogEntry(
        name=name,
        hls_ready=ready,
        primary_playlist_url=f"/hls/{name}/index.m3u8" if ready else None,
        master_playlist_url=f"/hls/{name}/index.m3u8" if ready else None,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimers(clock)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def catalog():
    return [make_entry("a.mp4"), make_entry("b.mp4"), make_entry("c.mp4")]


@pytest.fixture
def player(clock):
    return VirtualPlayer(clock=clock)


@pytest.fixture
def engine(player, transport, store, clock, timers, catalog):
    engine = SyncEngine(player, transport, store, clock=clock, call_later=timers)
    engine.load_catalog(catalog)
    player.finish_loading(duration=600.0)
    engine.on_connect("me")
    transport.clear()
    return engine
