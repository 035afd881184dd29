"""Row-change notifications for the station screens.

Writers publish after their transaction commits; each websocket subscriber
owns an asyncio queue on the server loop. Publishing is safe from the
threadpool that runs sync routes as well as from the loop itself.

Order events carry the stations of the order's items under ``stations`` so
the socket handler can scope them per caller; that key is never sent.
"""
import asyncio
import json
import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from .auth import (
    ROLE_HEADER,
    USER_ID_HEADER,
    CallerIdentity,
    has_identity_headers,
    resolve_identity,
)
from .errors import AuthenticationError

logger = logging.getLogger(__name__)

SUBSCRIBER_QUEUE_SIZE = 256
STATION_ORDER_FIELDS = ("id", "status", "payment_status", "updated_at")


def change_event(table: str, event: str, new: Optional[Dict[str, Any]] = None,
                 old: Optional[Dict[str, Any]] = None, stations: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    message = {"table": table, "event": event, "new": new or {}, "old": old or {}}
    if stations is not None:
        message["stations"] = sorted(set(stations))
    return message


class ChangeFeed:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[Tuple[asyncio.AbstractEventLoop, asyncio.Queue]] = []

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        with self._lock:
            self._subscribers.append((asyncio.get_running_loop(), queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers = [(loop, q) for loop, q in self._subscribers if q is not queue]

    def publish(self, event: Dict[str, Any]) -> None:
        with self._lock:
            targets = list(self._subscribers)
        for loop, queue in targets:
            try:
                loop.call_soon_threadsafe(self._offer, queue, event)
            except RuntimeError:
                # loop already closed; the socket handler will unsubscribe
                logger.debug("Dropped change event for a closed subscriber loop")

    @staticmethod
    def _offer(queue: asyncio.Queue, event: Dict[str, Any]) -> None:
        if queue.full():
            # slow consumer: drop the oldest, clients re-fetch the full list anyway
            queue.get_nowait()
        queue.put_nowait(event)


def _station_order_row(row: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    row = row or {}
    return {field: row[field] for field in STATION_ORDER_FIELDS if field in row}


def view_for(event: Dict[str, Any], station: Optional[str]) -> Optional[Dict[str, Any]]:
    """The part of ``event`` a subscriber scoped to ``station`` may see; None hides it.

    Station subscribers get their own items and a status-only row for orders
    holding at least one of them, mirroring what ``GET /orders`` shows them.
    """
    message = {key: value for key, value in event.items() if key != "stations"}
    if not station:
        return message

    table = event.get("table")
    if table == "order_items":
        row = event.get("new") or event.get("old") or {}
        return message if row.get("station") == station else None
    if table == "orders" and station in (event.get("stations") or ()):
        message["new"] = _station_order_row(event.get("new"))
        message["old"] = _station_order_row(event.get("old"))
        return message
    return None


def _identity_source(websocket: WebSocket) -> Mapping[str, str]:
    # browsers cannot set headers on a websocket handshake; accept query params too
    if has_identity_headers(websocket.headers):
        return websocket.headers
    params = websocket.query_params
    return {ROLE_HEADER: params.get("role") or "", USER_ID_HEADER: params.get("user_id") or ""}


router = APIRouter()


@router.websocket("/ws/changes")
async def changes_websocket(websocket: WebSocket):
    """Stream order/item change events; the first message acknowledges the subscription"""
    try:
        identity: CallerIdentity = resolve_identity(_identity_source(websocket))
    except AuthenticationError as exc:
        logger.warning(f"Change feed connection refused: {exc.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    station = identity.station
    feed: ChangeFeed = websocket.app.state.change_feed

    await websocket.accept()
    queue = feed.subscribe()
    logger.info(f"Change feed subscriber connected (role={identity.role.value}, user={identity.user_id})")

    send_lock = asyncio.Lock()

    async def send(message: Dict[str, Any]) -> None:
        async with send_lock:
            await websocket.send_json(message)

    async def forward_events():
        while True:
            message = view_for(await queue.get(), station)
            if message is not None:
                await send(message)

    forwarder = asyncio.create_task(forward_events())
    try:
        await send({"type": "subscribed", "station": station})
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await send({"type": "pong"})
    except WebSocketDisconnect:
        logger.info(f"Change feed subscriber disconnected (role={identity.role.value}, user={identity.user_id})")
    finally:
        forwarder.cancel()
        (outcome,) = await asyncio.gather(forwarder, return_exceptions=True)
        if isinstance(outcome, Exception):
            logger.error(f"Change feed forwarding failed: {outcome!r}")
        feed.unsubscribe(queue)
