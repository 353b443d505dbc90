import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol, Set

from pydantic import ValidationError

from pairwatch.config import STATE_CACHE_KEY, STATE_CACHE_TTL, STATE_FILE
from pairwatch.models.state import CachedState

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    def load(self) -> Optional[CachedState]: ...

    def save(self, state: CachedState) -> None: ...


def _decode(raw) -> Optional[CachedState]:
    if not raw:
        return None
    try:
        return CachedState.model_validate_json(raw)
    except (ValidationError, ValueError) as e:
        logger.warning(f"Ignoring unreadable cached state: {e}")
        return None


class MemoryStateStore:
    def __init__(self, state: Optional[CachedState] = None):
        self.state = state
        self.saves = 0

    def load(self) -> Optional[CachedState]:
        return self.state

    def save(self, state: CachedState) -> None:
        self.state = state
        self.saves += 1


class FileStateStore:
    """Cached state as a small JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[CachedState]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read {self.path}: {e}")
            return None
        return _decode(raw)

    def save(self, state: CachedState) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".tmp")
            tmp.write_text(state.model_dump_json(by_alias=True), encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            logger.error(f"Could not write {self.path}: {e}")


class RedisStateStore:
    """
    Cached state kept in Redis under a fixed key.

    The engine reads and writes synchronously, so this keeps the last value in
    memory: `refresh()` fills it before the engine starts and `save()` writes
    behind. `flush()` waits for outstanding writes, e.g. before a reload.
    """

    def __init__(self, client, key: str = STATE_CACHE_KEY, ttl: int = STATE_CACHE_TTL):
        self.client = client
        self.key = key
        self.ttl = ttl
        self._state: Optional[CachedState] = None
        self._writes: Set[asyncio.Task] = set()

    async def refresh(self) -> Optional[CachedState]:
        try:
            data = await self.client.get(self.key)
        except Exception as e:
            logger.error(f"Error loading cached state from redis: {e}")
            return self._state
        self._state = _decode(data)
        return self._state

    def load(self) -> Optional[CachedState]:
        return self._state

    def save(self, state: CachedState) -> None:
        self._state = state
        task = asyncio.ensure_future(self._write(state))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _write(self, state: CachedState) -> None:
        try:
            await self.client.set(self.key, state.model_dump_json(by_alias=True), ex=self.ttl)
        except Exception as e:
            logger.error(f"Error saving cached state to redis: {e}")

    async def flush(self) -> None:
        if self._writes:
            await asyncio.gather(*list(self._writes))


def build_store(redis_client=None, path: Optional[Path] = None):
    if redis_client is not None:
        return RedisStateStore(redis_client)
    return FileStateStore(path or STATE_FILE)
