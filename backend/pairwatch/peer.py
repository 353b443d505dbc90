import argparse
import asyncio
import logging
import sys
from typing import Optional

import httpx
import socketio

from pairwatch import config
from pairwatch.database import redis_client
from pairwatch.services.call import CallSession
from pairwatch.services.catalog import CatalogUnavailable, fetch_catalog
from pairwatch.services.chat import ChatLog
from pairwatch.services.engine import SyncEngine
from pairwatch.services.player import PlaybackRejected, VirtualPlayer
from pairwatch.services.reload import VersionWatcher
from pairwatch.services.store import RedisStateStore, build_store

logger = logging.getLogger(__name__)

TICK_INTERVAL = 0.25  # seconds


class SocketTransport:
    """Queues engine emits so they leave in order from a single task."""

    def __init__(self, sio: socketio.AsyncClient):
        self.sio = sio
        self.queue: asyncio.Queue = asyncio.Queue()

    def emit(self, event: str, data: dict) -> None:
        self.queue.put_nowait((event, data))

    async def run(self) -> None:
        while True:
            event, data = await self.queue.get()
            try:
                await self.sio.emit(event, data)
            except socketio.exceptions.SocketIOError as e:
                logger.warning(f"Dropped {event} while disconnected: {e}")


class Peer:
    """One viewer: a player, its sync engine and the relay connection."""

    def __init__(self, base_url: str, room: Optional[str] = None, store=None, player=None, call_factory=None):
        self.base_url = base_url.rstrip("/")
        self.room = room or config.DEFAULT_ROOM
        self.sio = socketio.AsyncClient()
        self.transport = SocketTransport(self.sio)
        self.store = store if store is not None else build_store()
        self.player = player or VirtualPlayer(
            load_delay=0.2,
            scheduler=lambda delay, fn: asyncio.get_running_loop().call_later(delay, fn),
        )
        self.engine = SyncEngine(self.player, self.transport, self.store)
        self.chat = ChatLog(self.transport, lambda: self.engine.peer_id)
        # Calls need a WebRTC stack, e.g. aiortc.RTCPeerConnection behind a factory
        self.call = CallSession(self.transport, call_factory) if call_factory else None
        self.version = VersionWatcher(capture=self.engine.capture_state, reload=self.request_reload)
        self.peers = 0
        self._reload: Optional[asyncio.Event] = None
        self._register_handlers()

    def _register_handlers(self):
        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("room-info", self._on_room_info)
        self.sio.on("state", self.engine.handle_state)
        self.sio.on("reply-state", self.engine.handle_reply_state)
        self.sio.on("request-state", self.engine.handle_request_state)
        self.sio.on("server-version", self.version.handle_server_version)
        self.sio.on("chat", self._on_chat)
        if self.call:
            self.sio.on("call-offer", self.call.handle_offer)
            self.sio.on("call-answer", self.call.handle_answer)
            self.sio.on("call-ice", self.call.handle_ice)
            self.sio.on("call-end", self.call.handle_end)

    def _on_connect(self):
        logger.info(f"Connected to {self.base_url} room {self.room}")
        self.engine.on_connect(self.sio.get_sid())

    def _on_disconnect(self, *args):
        logger.info("Disconnected from relay")
        self.engine.on_disconnect()

    def _on_room_info(self, data):
        if isinstance(data, dict):
            self.peers = data.get("count") or 0

    def _on_chat(self, data):
        entry = self.chat.receive(data)
        if entry and not entry.mine:
            print(f"[peer] {entry.message.text}")

    def request_reload(self):
        if self._reload is not None:
            self._reload.set()

    async def _load_catalog(self, http: httpx.AsyncClient) -> bool:
        try:
            entries = await fetch_catalog(http, self.base_url)
        except CatalogUnavailable as e:
            self.engine.catalog_unavailable(str(e))
            return False
        self.engine.load_catalog(entries)
        return bool(self.engine.catalog)

    async def _catalog_loop(self, http: httpx.AsyncClient):
        while not await self._load_catalog(http):
            await asyncio.sleep(config.VERSION_POLL_INTERVAL)
        self.engine.restore_cached_state()

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(config.HEARTBEAT_INTERVAL)
            self.engine.heartbeat()

    async def _version_loop(self, http: httpx.AsyncClient):
        while True:
            await asyncio.sleep(config.VERSION_POLL_INTERVAL)
            await self.version.poll(http, self.base_url)

    async def _tick_loop(self):
        while True:
            await asyncio.sleep(TICK_INTERVAL)
            self.player.tick()

    async def run(self, commands: Optional[asyncio.Queue] = None) -> bool:
        """Run until a reload is requested (True) or the console quits (False)."""
        self._reload = asyncio.Event()
        if isinstance(self.store, RedisStateStore):
            await self.store.refresh()

        async with httpx.AsyncClient(timeout=10) as http:
            await self.version.poll(http, self.base_url)
            catalog = asyncio.create_task(self._catalog_loop(http))
            tasks = [
                catalog,
                asyncio.create_task(self.transport.run()),
                asyncio.create_task(self._heartbeat_loop()),
                asyncio.create_task(self._version_loop(http)),
            ]
            if isinstance(self.player, VirtualPlayer):
                tasks.append(asyncio.create_task(self._tick_loop()))
            waiters = [asyncio.create_task(self._reload.wait())]
            if commands is not None:
                waiters.append(asyncio.create_task(self._console(commands)))

            try:
                # Catalog and cached state come first, so the room's state lands on loaded media
                done, _ = await asyncio.wait([catalog, *waiters], return_when=asyncio.FIRST_COMPLETED)
                if catalog in done:
                    catalog.result()
                    await self.sio.connect(self.base_url, auth={"room": self.room})
                    await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                return self._reload.is_set()
            finally:
                self.engine.capture_state()
                if self.call and self.call.active:
                    await self.call.handle_end()
                    if self.sio.connected:
                        await self.sio.emit("call-end", {})
                for task in tasks + waiters:
                    task.cancel()
                if isinstance(self.store, RedisStateStore):
                    await self.store.flush()
                if self.sio.connected:
                    await self.sio.disconnect()

    async def _console(self, lines: asyncio.Queue):
        print("commands: play | pause | seek SECONDS | rate R | select NAME | playall on|off | resync | say TEXT | call | hangup | status | quit")
        while True:
            line = await lines.get()
            if not line:
                return
            command, _, arg = line.strip().partition(" ")
            if command == "quit":
                return
            try:
                self.handle_command(command, arg.strip())
            except (ValueError, PlaybackRejected) as e:
                print(f"error: {e}")

    def handle_command(self, command: str, arg: str = ""):
        if command == "play":
            self.player.play()
        elif command == "pause":
            self.player.pause()
        elif command == "seek":
            self.player.current_time = float(arg)
        elif command == "rate":
            self.player.playback_rate = float(arg)
        elif command == "select":
            self.engine.select_video(arg)
        elif command == "playall":
            self.engine.set_play_all(arg.lower() in ("on", "1", "true", "yes"))
        elif command == "resync":
            self.engine.resync()
        elif command == "say":
            self.chat.send(arg)
        elif command in ("call", "hangup"):
            if not self.call:
                raise ValueError("calls are not available without a WebRTC stack")
            asyncio.ensure_future(self.call.start() if command == "call" else self.call.end())
        elif command == "status":
            state = self.engine.snapshot()
            print(f"{self.engine.status} | peers={self.peers} | {state.to_wire() if state else 'no video'} {self.engine.note}")
        elif command:
            raise ValueError(f"unknown command {command}")


async def read_lines(queue: asyncio.Queue):
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        await queue.put(line)
        if not line:
            return


async def run_peer(base_url: str, room: Optional[str] = None, commands: bool = True):
    # stdin outlives each reload, so one reader feeds every console
    lines = asyncio.Queue() if commands else None
    reader = asyncio.create_task(read_lines(lines)) if commands else None
    try:
        while True:
            peer = Peer(base_url, room=room, store=build_store(redis_client))
            if not await peer.run(commands=lines):
                break
            logger.info("Reloading after server redeploy")
    finally:
        if reader:
            reader.cancel()


def main():
    parser = argparse.ArgumentParser(description="Join a pairwatch room")
    parser.add_argument("url", nargs="?", default=f"http://localhost:{config.PORT}")
    parser.add_argument("--room", default=None)
    parser.add_argument("--follow", action="store_true", help="no console, just follow the room")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper())
    asyncio.run(run_peer(args.url, room=args.room, commands=not args.follow))


if __name__ == "__main__":
    main()
