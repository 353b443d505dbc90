from pairwatch.models.catalog import CatalogEntry
from pairwatch.models.messages import (
    ChatMessage,
    ReplyStateMessage,
    RequestStateMessage,
    StateMessage,
    parse,
)
from pairwatch.models.state import CachedState, PlaybackState

__all__ = [
    "CachedState",
    "CatalogEntry",
    "ChatMessage",
    "PlaybackState",
    "ReplyStateMessage",
    "RequestStateMessage",
    "StateMessage",
    "parse",
]
