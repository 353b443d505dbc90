import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from pairwatch.models import ChatMessage, parse

logger = logging.getLogger(__name__)


@dataclass
class ChatEntry:
    message: ChatMessage
    mine: bool


class ChatLog:
    def __init__(self, transport, peer_id: Callable[[], Optional[str]]):
        self.transport = transport
        self._peer_id = peer_id
        self.entries: List[ChatEntry] = []

    def send(self, text: str) -> Optional[ChatMessage]:
        text = (text or "").strip()
        if not text:
            return None
        message = ChatMessage(text=text, sender=self._peer_id(), at=int(time.time() * 1000))
        self.entries.append(ChatEntry(message, mine=True))
        self.transport.emit("chat", message.model_dump())
        return message

    def receive(self, data: Any) -> Optional[ChatEntry]:
        message = parse(ChatMessage, data)
        if message is None:
            return None
        # Same identity shows up when a peer has two tabs open
        mine = message.sender is not None and message.sender == self._peer_id()
        entry = ChatEntry(message, mine=mine)
        self.entries.append(entry)
        logger.info(f"Chat from {'me' if mine else message.sender}: {message.text}")
        return entry
