import logging
from typing import Any, Callable, Optional, Protocol

from pairwatch.config import STUN_SERVERS

logger = logging.getLogger(__name__)


class PeerConnection(Protocol):
    """The subset of an RTCPeerConnection the call needs (aiortc naming)."""

    localDescription: Any

    async def createOffer(self) -> Any: ...

    async def createAnswer(self) -> Any: ...

    async def setLocalDescription(self, description: Any) -> None: ...

    async def setRemoteDescription(self, description: Any) -> None: ...

    async def addIceCandidate(self, candidate: Any) -> None: ...

    async def close(self) -> None: ...


# (ice_servers, on_local_candidate) -> connection
ConnectionFactory = Callable[[list, Callable[[Any], None]], PeerConnection]


def describe(description: Any) -> Any:
    if hasattr(description, "sdp") and hasattr(description, "type"):
        return {"sdp": description.sdp, "type": description.type}
    return description


class CallSession:
    """
    One-to-one video call negotiated over the relay.

    The relay forwards call-* messages verbatim; this side only drives the
    offer/answer exchange. Incoming payloads are converted with
    `to_description` / `to_candidate` before reaching the connection.
    """

    def __init__(
        self,
        transport,
        connection_factory: ConnectionFactory,
        ice_servers: Optional[list] = None,
        to_description: Callable[[Any], Any] = lambda d: d,
        to_candidate: Callable[[Any], Any] = lambda c: c,
    ):
        self.transport = transport
        self.connection_factory = connection_factory
        self.ice_servers = ice_servers if ice_servers is not None else list(STUN_SERVERS)
        self.to_description = to_description
        self.to_candidate = to_candidate
        self.connection: Optional[PeerConnection] = None

    @property
    def active(self) -> bool:
        return self.connection is not None

    def _ensure_connection(self) -> PeerConnection:
        if self.connection is None:
            self.connection = self.connection_factory(self.ice_servers, self._on_local_candidate)
        return self.connection

    def _on_local_candidate(self, candidate: Any) -> None:
        if candidate:
            self.transport.emit("call-ice", {"candidate": candidate})

    async def start(self) -> None:
        connection = self._ensure_connection()
        offer = await connection.createOffer()
        await connection.setLocalDescription(offer)
        self.transport.emit("call-offer", {"offer": describe(connection.localDescription or offer)})

    async def handle_offer(self, data: Any) -> None:
        offer = data.get("offer") if isinstance(data, dict) else None
        if not offer:
            return
        connection = self._ensure_connection()
        await connection.setRemoteDescription(self.to_description(offer))
        answer = await connection.createAnswer()
        if not answer:
            return
        await connection.setLocalDescription(answer)
        self.transport.emit("call-answer", {"answer": describe(connection.localDescription or answer)})

    async def handle_answer(self, data: Any) -> None:
        answer = data.get("answer") if isinstance(data, dict) else None
        if not answer or self.connection is None:
            return
        await self.connection.setRemoteDescription(self.to_description(answer))

    async def handle_ice(self, data: Any) -> None:
        candidate = data.get("candidate") if isinstance(data, dict) else None
        if not candidate or self.connection is None:
            return
        try:
            await self.connection.addIceCandidate(self.to_candidate(candidate))
        except Exception as e:
            # Call carries on with whatever candidates did work
            logger.debug(f"Ignoring ICE candidate failure: {e}")

    async def _close(self) -> None:
        connection, self.connection = self.connection, None
        if connection is not None:
            await connection.close()

    async def end(self) -> None:
        await self._close()
        self.transport.emit("call-end", {})

    async def handle_end(self, data: Any = None) -> None:
        await self._close()
