import os
import time
from pathlib import Path

# CORS / Socket.IO origins
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*").split(",")

# Media library
VIDEOS_DIR = Path(os.getenv("PAIRWATCH_VIDEOS_DIR", "videos")).resolve()
HLS_DIR = Path(os.getenv("PAIRWATCH_HLS_DIR", "hls")).resolve()
SUBTITLES_DIR = Path(os.getenv("PAIRWATCH_SUBTITLES_DIR", "subtitles")).resolve()

# Changes on every relay restart unless pinned by the deploy
SERVER_VERSION = os.getenv("SERVER_VERSION") or str(int(time.time() * 1000))

DEFAULT_ROOM = os.getenv("PAIRWATCH_DEFAULT_ROOM", "main")

# Peer-side persistence
REDIS_URL = os.getenv("REDIS_URL")
STATE_FILE = Path(
    os.getenv("PAIRWATCH_STATE_FILE", str(Path.home() / ".pairwatch" / "last_state.json"))
)
STATE_CACHE_KEY = "pairwatch:lastState"
STATE_CACHE_TTL = 3600 * 10  # 10 hours

# Sync policy. Heartbeat interval and drift tolerance are tuned together.
SYNC_THRESHOLD = 0.35  # seconds
HEARTBEAT_INTERVAL = 3.0  # seconds
DEBOUNCE_WINDOW = 0.15  # seconds
SETTLE_DELAY = 0.1  # seconds
VERSION_POLL_INTERVAL = 5.0  # seconds

STUN_SERVERS = ["stun:stun.l.google.com:19302"]

# Relay server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3000"))
