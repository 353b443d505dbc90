from typing import Optional

import redis.asyncio as redis

from pairwatch.config import REDIS_URL

redis_client: Optional[redis.Redis] = (
    redis.from_url(REDIS_URL, decode_responses=True) if REDIS_URL else None
)
