from typing import Dict, List, Optional

from pairwatch.config import DEFAULT_ROOM

# Relay-side membership only; rooms carry no playback state.
# sid -> room name
sid_room_map: Dict[str, str] = {}


def resolve_room_name(auth=None, query: Optional[Dict[str, List[str]]] = None) -> str:
    name = None
    if isinstance(auth, dict):
        name = auth.get("room")
    if not name and query:
        name = (query.get("room") or [None])[0]
    if not isinstance(name, str) or not name.strip():
        return DEFAULT_ROOM
    return name.strip()[:64]


def add_user(sid: str, room_id: str) -> str:
    sid_room_map[sid] = room_id
    return room_id


def remove_user(sid: str) -> Optional[str]:
    return sid_room_map.pop(sid, None)


def get_room(sid: str) -> Optional[str]:
    return sid_room_map.get(sid)


def members(room_id: str) -> List[str]:
    return [sid for sid, room in sid_room_map.items() if room == room_id]


def count(room_id: str) -> int:
    return len(members(room_id))


def same_room(sid: str, other_sid: str) -> bool:
    room_id = sid_room_map.get(sid)
    return room_id is not None and sid_room_map.get(other_sid) == room_id


def reset() -> None:
    sid_room_map.clear()
