import asyncio

from pairwatch.models import CachedState
from pairwatch.services.store import FileStateStore, MemoryStateStore, RedisStateStore, build_store


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex


def test_memory_store():
    store = MemoryStateStore()
    assert store.load() is None
    store.save(CachedState(video="a.mp4"))
    assert store.load().video == "a.mp4"
    assert store.saves == 1


def test_file_store_round_trip(tmp_path):
    store = FileStateStore(tmp_path / "nested" / "state.json")
    assert store.load() is None

    store.save(CachedState(video="a.mp4", time=4.0, paused=False, play_all=True))

    loaded = FileStateStore(tmp_path / "nested" / "state.json").load()
    assert loaded.video == "a.mp4"
    assert loaded.time == 4.0
    assert loaded.play_all is True
    assert '"playbackRate"' in (tmp_path / "nested" / "state.json").read_text()


def test_file_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert FileStateStore(path).load() is None
    path.write_text('{"time": 3}')
    assert FileStateStore(path).load() is None


async def test_redis_store_writes_behind():
    client = FakeRedis()
    store = RedisStateStore(client, key="k", ttl=60)

    store.save(CachedState(video="a.mp4", time=2.0))
    assert store.load().video == "a.mp4"
    await store.flush()

    assert "a.mp4" in client.data["k"]
    assert client.ttls["k"] == 60

    fresh = RedisStateStore(client, key="k")
    assert fresh.load() is None
    assert (await fresh.refresh()).time == 2.0


async def test_redis_store_survives_errors():
    class Broken:
        async def get(self, key):
            raise ConnectionError("down")

        async def set(self, key, value, ex=None):
            raise ConnectionError("down")

    store = RedisStateStore(Broken())
    assert await store.refresh() is None
    store.save(CachedState(video="a.mp4"))
    await store.flush()
    await asyncio.sleep(0)
    assert store.load().video == "a.mp4"


def test_build_store(tmp_path):
    assert isinstance(build_store(None, tmp_path / "s.json"), FileStateStore)
    assert isinstance(build_store(FakeRedis()), RedisStateStore)
