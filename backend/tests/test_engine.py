import asyncio
import json

from conftest import FakeClock, FakeTimers, RecordingTransport, make_entry
from pairwatch.models import CachedState
from pairwatch.services.engine import IDLE, ApplyingRemote, SyncEngine
from pairwatch.services.player import VirtualPlayer
from pairwatch.services.store import MemoryStateStore


def remote(video="a.mp4", paused=False, time=0.0, rate=1.0, play_all=None, reason=None):
    state = {"video": video, "paused": paused, "time": time, "playbackRate": rate}
    if play_all is not None:
        state["playAll"] = play_all
    if reason is not None:
        state["reason"] = reason
    return {"state": state}


def seed_position(player, clock, transport, seconds):
    player.current_time = seconds
    clock.advance(1.0)
    transport.clear()


# -- drift tolerance --

def test_drift_within_tolerance_does_not_seek(engine, player, clock, transport):
    seed_position(player, clock, transport, 10.0)
    seeks = []
    player.add_listener("seeked", lambda: seeks.append(player.current_time))

    assert engine.handle_state(remote(time=10.3, paused=True))

    assert seeks == []
    assert player.current_time == 10.0


def test_drift_beyond_tolerance_seeks(engine, player, clock, transport):
    seed_position(player, clock, transport, 10.0)
    seeks = []
    player.add_listener("seeked", lambda: seeks.append(player.current_time))

    engine.handle_state(remote(time=10.5, paused=True))

    assert seeks == [10.5]


# -- feedback suppression --

def test_applying_remote_does_not_rebroadcast(engine, player, transport, timers):
    engine.handle_state(remote(time=42.0, paused=False, rate=1.5, reason="seek"))

    assert not player.paused
    assert player.playback_rate == 1.5
    assert player.current_time == 42.0
    assert transport.events("state") == []
    assert engine.status == "Syncing (seek)"

    # still suppressed right up to the end of the settle delay
    assert not engine.heartbeat()
    timers.advance(0.05)
    player.pause()
    assert transport.events("state") == []

    timers.advance(0.05)
    assert engine.guard == IDLE
    assert engine.status == "In sync"

    player.play()
    assert [s["state"]["reason"] for s in transport.events("state")] == ["play"]


def test_guard_is_explicit_state_with_settle_deadline(engine, clock):
    engine.handle_state(remote(time=5.0, paused=True))
    assert engine.guard == ApplyingRemote(until=clock() + engine.settle)
    assert engine.is_applying_remote


def test_second_remote_extends_guard_window(engine, timers, transport, player):
    engine.handle_state(remote(time=5.0, paused=True))
    timers.advance(0.06)
    engine.handle_state(remote(time=20.0, paused=True))

    timers.advance(0.06)  # first window over, second still open
    assert engine.is_applying_remote
    player.current_time = 30.0
    assert transport.events("state") == []

    timers.advance(0.06)
    assert not engine.is_applying_remote
    assert engine.status == "In sync"


# -- debounce --

def test_remote_state_dropped_right_after_local_push(engine, player, clock, transport):
    player.play()
    assert len(transport.events("state")) == 1
    clock.advance(0.1)

    assert not engine.handle_state(remote(time=300.0, paused=True, rate=2.0))

    assert not player.paused
    assert player.playback_rate == 1.0
    assert player.current_time < 1.0


def test_remote_state_applied_after_debounce_window(engine, player, clock):
    player.play()
    clock.advance(0.2)

    assert engine.handle_state(remote(time=300.0, paused=True))
    assert player.paused
    assert player.current_time == 300.0


# -- video switch deferral --

def test_remote_video_switch_is_deferred_until_metadata(engine, player, transport):
    message = remote(video="b.mp4", time=30.0, paused=False, rate=2.0, play_all=True)

    engine.handle_state(message)

    assert engine.session.selected == "b.mp4"
    assert player.source == "/hls/b.mp4/index.m3u8"
    assert player.paused
    assert player.current_time == 0.0
    assert player.playback_rate == 1.0
    assert engine.session.play_all is False
    assert engine.session.pending.time == 30.0
    assert engine.guard == IDLE

    player.finish_loading(duration=600.0)

    assert engine.session.pending is None
    assert not player.paused
    assert player.current_time == 30.0
    assert player.playback_rate == 2.0
    assert engine.session.play_all is True
    assert transport.events("state") == []


def test_pending_state_is_applied_once(engine, player, clock, timers):
    engine.handle_state(remote(video="b.mp4", time=30.0, paused=False))
    player.finish_loading(duration=600.0)
    timers.advance(0.2)

    player.pause()
    player.finish_loading(duration=600.0)

    assert player.paused


def test_user_selection_discards_pending_remote(engine, player):
    engine.handle_state(remote(video="b.mp4", time=30.0, paused=False))
    engine.select_video("c.mp4")
    player.finish_loading(duration=600.0)

    assert engine.session.selected == "c.mp4"
    assert player.paused
    assert player.current_time == 0.0


# -- auto advance --

def test_media_end_with_play_all_advances_to_next(engine, player, clock, transport, timers):
    engine.set_play_all(True)
    engine.select_video("b.mp4")
    player.finish_loading(duration=10.0)
    player.play()
    clock.advance(11.0)
    transport.clear()

    player.tick()

    pushed = transport.events("state")
    assert pushed[-1]["state"]["reason"] == "auto-next"
    assert pushed[-1]["state"]["video"] == "c.mp4"
    assert pushed[-1]["state"]["paused"] is False
    assert engine.session.selected == "c.mp4"


def test_media_end_without_play_all_stays(engine, player, clock, transport):
    player.finish_loading(duration=10.0)
    player.play()
    clock.advance(11.0)
    transport.clear()

    player.tick()

    assert engine.session.selected == "a.mp4"
    assert [s["state"]["reason"] for s in transport.events("state")] == ["pause"]


# -- join handshake --

def test_connect_broadcasts_request_state(player, transport, store, clock, timers, catalog):
    engine = SyncEngine(player, transport, store, clock=clock, call_later=timers)
    engine.load_catalog(catalog)

    engine.on_connect("peer-1")

    assert transport.sent == [("request-state", {"requester": "peer-1"})]
    assert engine.status == "Waiting"


def test_request_state_replies_only_to_requester(engine, transport):
    assert engine.handle_request_state({"requester": "peer-x"})

    assert len(transport.sent) == 1
    event, data = transport.sent[0]
    assert event == "reply-state"
    assert data["to"] == "peer-x"
    assert data["state"]["video"] == "a.mp4"
    assert transport.events("state") == []


def test_own_or_malformed_request_state_is_ignored(engine, transport):
    assert not engine.handle_request_state({"requester": "me"})
    assert not engine.handle_request_state({})
    assert not engine.handle_request_state("garbage")
    assert transport.sent == []


def test_reply_state_for_someone_else_is_ignored(engine, player, clock):
    assert not engine.handle_reply_state({"to": "other", **remote(time=50.0, paused=True)})
    assert engine.handle_reply_state({"to": "me", **remote(time=50.0, paused=True)})
    assert player.current_time == 50.0


def test_peer_without_selection_does_not_reply(player, transport, store, clock, timers):
    engine = SyncEngine(player, transport, store, clock=clock, call_later=timers)
    engine.load_catalog([])
    engine.on_connect("me")
    transport.clear()

    assert not engine.handle_request_state({"requester": "peer-x"})
    assert not engine.push_state("play")
    assert transport.sent == []
    assert engine.note


def test_resync_requests_state(engine, transport):
    engine.resync()
    assert transport.sent == [("request-state", {"requester": "me"})]
    assert engine.status == "Requesting state"


# -- round trip between two independent peers --

def test_state_round_trip_between_players(catalog):
    clock = FakeClock()
    source_player, target_player = VirtualPlayer(clock=clock), VirtualPlayer(clock=clock)
    source = SyncEngine(source_player, RecordingTransport(), MemoryStateStore(), clock=clock, call_later=FakeTimers(clock))
    target = SyncEngine(target_player, RecordingTransport(), MemoryStateStore(), clock=clock, call_later=FakeTimers(clock))
    for engine, player in ((source, source_player), (target, target_player)):
        engine.load_catalog(catalog)
        player.finish_loading(duration=600.0)

    source_player.play()
    source_player.playback_rate = 1.25
    clock.advance(4.0)

    wire = json.dumps({"state": source.snapshot("heartbeat").to_wire()})
    target.handle_state(json.loads(wire))

    assert target_player.paused == source_player.paused
    assert target_player.playback_rate == source_player.playback_rate
    assert abs(target_player.current_time - source_player.current_time) <= target.tolerance


# -- cache --

def test_applied_state_is_cached(engine, store):
    engine.handle_state(remote(time=12.0, paused=True, play_all=True))

    assert store.state.video == "a.mp4"
    assert store.state.time == 12.0
    assert store.state.play_all is True


def test_cached_state_for_missing_video_is_ignored(engine, player, store, transport):
    store.state = CachedState(video="gone.mp4", time=99.0, paused=False)

    assert not engine.restore_cached_state()

    assert engine.session.selected == "a.mp4"
    assert player.source == "/hls/a.mp4/index.m3u8"
    assert player.paused
    assert player.current_time == 0.0
    assert store.saves == 0
    assert transport.sent == []


def test_cached_state_is_restored(engine, player, store):
    store.state = CachedState(video="b.mp4", time=99.0, paused=True, playback_rate=1.5)

    assert engine.restore_cached_state()
    player.finish_loading(duration=600.0)

    assert engine.session.selected == "b.mp4"
    assert player.current_time == 99.0
    assert player.playback_rate == 1.5


def test_capture_state_saves_live_snapshot(engine, player, store, clock):
    player.current_time = 7.5
    engine.capture_state()
    assert store.state.time == 7.5
    assert store.state.video == "a.mp4"


# -- misc --

def test_heartbeat_only_while_playing(engine, player, clock, transport):
    assert not engine.heartbeat()
    player.play()
    clock.advance(3.0)
    transport.clear()

    assert engine.heartbeat()
    assert transport.events("state")[0]["state"]["reason"] == "heartbeat"


def test_malformed_state_messages_are_dropped(engine, player, store):
    for message in (None, "garbage", {}, {"state": None}, {"state": {"video": ""}},
                    remote(time=-1.0), remote(rate=0)):
        assert not engine.handle_state(message)
    assert store.saves == 0
    assert player.paused


def test_blocked_autoplay_is_swallowed(engine, player, timers):
    player.autoplay_allowed = False

    engine.handle_state(remote(time=3.0, paused=False))
    timers.advance(0.1)

    assert player.paused
    assert player.current_time == 3.0
    assert engine.status == "In sync"


async def test_rejected_async_play_is_swallowed(clock, timers, catalog):
    class AsyncPlayer(VirtualPlayer):
        def play(self):
            async def rejected():
                raise RuntimeError("NotAllowedError")
            return rejected()

    player = AsyncPlayer(clock=clock)
    engine = SyncEngine(player, RecordingTransport(), MemoryStateStore(), clock=clock, call_later=timers)
    engine.load_catalog(catalog)

    engine.handle_state(remote(time=3.0, paused=False))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert player.paused


def test_select_unknown_video_is_rejected(engine, transport):
    assert not engine.select_video("nope.mp4")
    assert transport.sent == []


def test_catalog_skips_entries_without_hls(player, transport, store, clock, timers):
    engine = SyncEngine(player, transport, store, clock=clock, call_later=timers)
    engine.load_catalog([make_entry("raw.mkv", ready=False), make_entry("b.mp4")])

    assert engine.playlist == ["b.mp4"]
    assert engine.session.selected == "b.mp4"


# -- catalog ordering --

def test_remote_state_before_catalog_is_dropped(player, transport, store, clock, timers, catalog):
    engine = SyncEngine(player, transport, store, clock=clock, call_later=timers)
    engine.on_connect("me")

    assert transport.sent == []
    assert engine.status == "Connected"
    assert not engine.handle_reply_state({"to": "me", **remote(video="b.mp4", time=30.0, paused=True)})
    assert not engine.handle_state(remote(video="b.mp4", time=30.0))
    assert not engine.handle_request_state({"requester": "peer-x"})

    engine.load_catalog(catalog)

    assert engine.session.selected == "a.mp4"
    assert player.source == "/hls/a.mp4/index.m3u8"
    assert transport.sent == [("request-state", {"requester": "me"})]
    assert engine.status == "Waiting"

    assert engine.handle_reply_state({"to": "me", **remote(video="b.mp4", time=30.0, paused=True)})
    assert player.source == "/hls/b.mp4/index.m3u8"
    player.finish_loading(duration=600.0)
    assert player.current_time == 30.0


def test_unknown_remote_video_loads_once_catalog_lists_it(engine, player, catalog):
    engine.handle_state(remote(video="d.mp4", time=5.0, paused=True))
    assert engine.session.selected == "d.mp4"
    assert player.source is None

    engine.load_catalog(catalog + [make_entry("d.mp4")])

    assert engine.session.selected == "d.mp4"
    assert player.source == "/hls/d.mp4/index.m3u8"


def test_cached_state_does_not_override_live_room_state(engine, player, store, timers):
    store.state = CachedState(video="b.mp4", time=99.0, paused=True)
    engine.handle_reply_state({"to": "me", **remote(time=12.0, paused=True)})
    timers.advance(0.1)

    assert not engine.restore_cached_state()

    assert engine.session.selected == "a.mp4"
    assert player.current_time == 12.0
    assert store.state.video == "a.mp4"


def test_auto_advance_pushes_play_then_auto_next(engine, player, clock, transport):
    engine.set_play_all(True)
    player.finish_loading(duration=10.0)
    player.play()
    clock.advance(11.0)
    transport.clear()

    player.tick()

    reasons = [(s["state"]["reason"], s["state"]["video"]) for s in transport.events("state")]
    assert reasons == [("pause", "a.mp4"), ("play", "b.mp4"), ("auto-next", "b.mp4")]
