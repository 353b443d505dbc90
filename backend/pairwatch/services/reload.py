import logging
import time
from typing import Any, Callable, Optional

import httpx

logger = logging.getLogger(__name__)


class VersionWatcher:
    """
    Notices a relay redeploy by its version token.

    The first token seen is remembered; any later, different token captures
    the current playback state and then triggers a reload, once.
    """

    def __init__(self, capture: Callable[[], None], reload: Callable[[], None]):
        self.capture = capture
        self.reload = reload
        self.version: Optional[str] = None
        self.reloading = False

    def observe(self, version: Any) -> bool:
        if not version or not isinstance(version, str):
            return False
        if self.version is None:
            self.version = version
            return False
        if version == self.version or self.reloading:
            return False
        logger.info(f"Server version changed {self.version} -> {version}, reloading")
        self.reloading = True
        self.capture()
        self.reload()
        return True

    def handle_server_version(self, data: Any) -> bool:
        if not isinstance(data, dict):
            return False
        return self.observe(data.get("version"))

    async def poll(self, client: httpx.AsyncClient, base_url: str) -> bool:
        try:
            response = await client.get(
                f"{base_url.rstrip('/')}/api/version",
                params={"t": int(time.time() * 1000)},
                headers={"Cache-Control": "no-store"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Version poll failed: {e}")
            return False
        return self.handle_server_version(data)
