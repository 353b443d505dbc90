import logging
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from pairwatch.models.state import PlaybackState

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class StateMessage(BaseModel):
    state: PlaybackState
    at: Optional[int] = None  # relay timestamp, ms


class RequestStateMessage(BaseModel):
    requester: str = Field(min_length=1)


class ReplyStateMessage(BaseModel):
    to: str = Field(min_length=1)
    state: PlaybackState
    at: Optional[int] = None


class ChatMessage(BaseModel):
    text: str = Field(min_length=1)
    sender: Optional[str] = None
    at: int


def parse(model: Type[M], data: Any) -> Optional[M]:
    """Validate an inbound payload, returning None instead of raising."""
    if not isinstance(data, dict):
        logger.debug(f"Dropping non-dict {model.__name__} payload: {data!r}")
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug(f"Dropping malformed {model.__name__}: {e.error_count()} errors")
        return None
