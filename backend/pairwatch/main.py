import logging
import time
from pathlib import Path
from urllib.parse import parse_qs

import socketio
import uvicorn
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from pairwatch import config
from pairwatch.services import catalog
from pairwatch.services import room as room_service

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CALL_EVENTS = ("call-offer", "call-answer", "call-ice", "call-end")

app = FastAPI(title="pairwatch relay")

origins = config.ALLOWED_ORIGINS


class CORSStaticFiles(StaticFiles):
    async def get_response(self, path: str, scope):
        response = await super().get_response(path, scope)
        response.headers["Access-Control-Allow-Origin"] = origins[0] if origins else "*"
        return response


app.mount("/hls", CORSStaticFiles(directory=config.HLS_DIR, check_dir=False), name="hls")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=origins if origins != ["*"] else "*")
socket_app = socketio.ASGIApp(sio, app)


def now_ms() -> int:
    return int(time.time() * 1000)


# REST API
@app.get("/api/version")
async def version():
    return JSONResponse(
        {"version": config.SERVER_VERSION},
        headers={"Cache-Control": "no-store, max-age=0"},
    )


@app.get("/api/videos")
async def videos():
    try:
        entries = catalog.list_videos(config.VIDEOS_DIR, config.HLS_DIR, config.SUBTITLES_DIR)
    except OSError as e:
        logger.error(f"Failed to read videos directory {config.VIDEOS_DIR}: {e}")
        return JSONResponse({"error": "Failed to read videos directory."}, status_code=500)
    return {"files": [entry.model_dump(by_alias=True) for entry in entries]}


@app.get("/api/hls/{hls_id}/master.m3u8")
async def hls_master(hls_id: str):
    safe_id = Path(hls_id).name
    if not (config.HLS_DIR / safe_id / "index_vtt.m3u8").exists():
        raise HTTPException(status_code=404, detail="Subtitle rendition not found")
    return Response(
        content=catalog.master_playlist(safe_id),
        media_type="application/vnd.apple.mpegurl",
        headers={"Cache-Control": "no-store"},
    )


@app.get("/api/subtitles/{name}")
async def subtitles(name: str):
    safe_name = Path(name).name
    if not safe_name or safe_name in (".", ".."):
        raise HTTPException(status_code=400, detail="Invalid subtitle name")

    file_path = config.SUBTITLES_DIR / safe_name
    if not file_path.is_file():
        file_path = config.VIDEOS_DIR / safe_name
    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="Subtitle not found")

    ext = file_path.suffix.lower()
    if ext == ".vtt":
        return FileResponse(file_path, media_type="text/vtt")
    if ext == ".srt":
        raw = file_path.read_text(encoding="utf-8", errors="replace")
        return Response(content=catalog.srt_to_vtt(raw), media_type="text/vtt")
    raise HTTPException(status_code=415, detail="Unsupported subtitle format")


# Socket Events
async def broadcast_room_info(room_id: str):
    await sio.emit("room-info", {"count": room_service.count(room_id)}, room=room_id)


@sio.event
async def connect(sid, environ, auth=None):
    query = parse_qs(environ.get("QUERY_STRING", "")) if environ else {}
    room_id = room_service.add_user(sid, room_service.resolve_room_name(auth, query))
    await sio.enter_room(sid, room_id)
    logger.info(f"Client {sid} connected to room {room_id}")

    await sio.emit("server-version", {"version": config.SERVER_VERSION}, to=sid)
    await broadcast_room_info(room_id)


@sio.event
async def disconnect(sid, reason=None):
    try:
        room_id = room_service.remove_user(sid)
        logger.info(f"Client {sid} disconnected from room {room_id}")
        if room_id:
            await broadcast_room_info(room_id)
    except Exception as e:
        logger.error(f"Error in disconnect: {e}", exc_info=True)


@sio.on("state")
async def state(sid, data):
    room_id = room_service.get_room(sid)
    if not room_id or not isinstance(data, dict) or not data.get("state"):
        return
    await sio.emit("state", {"state": data["state"], "at": now_ms()}, room=room_id, skip_sid=sid)


@sio.on("request-state")
async def request_state(sid, data):
    room_id = room_service.get_room(sid)
    if not room_id or not isinstance(data, dict) or not data.get("requester"):
        return
    await sio.emit("request-state", {"requester": data["requester"]}, room=room_id, skip_sid=sid)


@sio.on("reply-state")
async def reply_state(sid, data):
    if not isinstance(data, dict):
        return
    to, payload = data.get("to"), data.get("state")
    if not to or not payload:
        return
    # Only the requester gets the reply, and only inside the same room
    if not room_service.same_room(sid, to):
        logger.debug(f"Dropping reply-state from {sid} to {to}: not in the same room")
        return
    await sio.emit("reply-state", {"to": to, "state": payload, "at": now_ms()}, to=to)


@sio.on("chat")
async def chat(sid, data):
    room_id = room_service.get_room(sid)
    if not room_id or not isinstance(data, dict) or not data.get("text"):
        return
    await sio.emit("chat", data, room=room_id, skip_sid=sid)


def make_forwarder(event: str):
    async def forward(sid, data=None):
        room_id = room_service.get_room(sid)
        if not room_id:
            return
        await sio.emit(event, data if data is not None else {}, room=room_id, skip_sid=sid)

    forward.__name__ = event.replace("-", "_")
    return forward


call_forwarders = {}
for event in CALL_EVENTS:
    call_forwarders[event] = make_forwarder(event)
    sio.on(event, handler=call_forwarders[event])


def run():
    uvicorn.run("pairwatch.main:socket_app", host=config.HOST, port=config.PORT, log_level="info")


if __name__ == "__main__":
    run()
