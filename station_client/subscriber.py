import json
import logging
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import urlencode

import websockets

logger = logging.getLogger(__name__)

CHANGES_PATH = "/ws/changes"


def change_feed_url(base_url: str, role: Optional[str] = None, user_id: Optional[int] = None) -> str:
    """ws(s):// address of the change feed for an http(s):// service base url.

    The caller identity rides in the query string, the only place a browser
    websocket handshake can carry it.
    """
    url = base_url.rstrip("/")
    if url.startswith("https://"):
        url = "wss://" + url[len("https://"):]
    elif url.startswith("http://"):
        url = "ws://" + url[len("http://"):]
    url += CHANGES_PATH
    if role and user_id is not None:
        url += "?" + urlencode({"role": role, "user_id": user_id})
    return url


async def websocket_subscriber(url: str, open_timeout: float = 10.0) -> AsyncIterator[Dict[str, Any]]:
    """Yield change-feed messages until the server closes the socket"""
    async with websockets.connect(url, open_timeout=open_timeout) as websocket:
        async for raw in websocket:
            try:
                message = json.loads(raw)
            except ValueError:
                logger.warning("Ignoring non-JSON change feed message")
                continue
            if isinstance(message, dict):
                yield message
