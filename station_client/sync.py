"""Keeps a station screen's order list fresh.

Polling runs all the time as the baseline. A change-feed subscription, when
one is configured, triggers extra refreshes on relevant events. Whatever the
source, a refresh only replaces the data when its signature changed.
"""
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from .signature import orders_signature

logger = logging.getLogger(__name__)


class RealtimeStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FALLBACK = "fallback"


def should_refresh(event: Dict[str, Any]) -> bool:
    """Whether a change-feed event can alter what a station screen shows"""
    table = event.get("table")
    kind = event.get("event")
    if table == "order_items":
        return True
    if table != "orders":
        return False
    if kind == "UPDATE":
        new = event.get("new") or {}
        old = event.get("old") or {}
        return new.get("status") != old.get("status") or new.get("payment_status") != old.get("payment_status")
    return kind in ("INSERT", "DELETE")


class LiveViewSynchronizer:
    def __init__(
        self,
        fetcher: Callable[[], Awaitable[Any]],
        subscriber: Optional[Callable[[], AsyncIterator[Dict[str, Any]]]] = None,
        interval: float = 4.0,
        fallback_timeout: float = 8.0,
        reconnect_delay: float = 5.0,
        signature: Callable[[Any], str] = orders_signature,
        on_change: Optional[Callable[[Any], None]] = None,
        on_status: Optional[Callable[[RealtimeStatus], None]] = None,
    ):
        self.fetcher = fetcher
        self.subscriber = subscriber
        self.interval = interval
        self.fallback_timeout = fallback_timeout
        self.reconnect_delay = reconnect_delay
        self.signature = signature
        self.on_change = on_change
        self.on_status = on_status

        self.data: Any = None
        self.error: Optional[str] = None
        self.last_changed_at: Optional[datetime] = None
        self.status = RealtimeStatus.CONNECTING if subscriber else RealtimeStatus.FALLBACK
        self.is_refreshing = False

        self._current_signature: Optional[str] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._fallback_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []
        self._started = False
        self._stopped = False

    # -- lifecycle ------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._tasks.append(asyncio.create_task(self._poll_loop()))
        if self.subscriber is not None:
            self._set_status(RealtimeStatus.CONNECTING)
            self._fallback_task = asyncio.create_task(self._fallback_timer())
            self._tasks.append(self._fallback_task)
            self._tasks.append(asyncio.create_task(self._subscription_loop()))
        else:
            self._set_status(RealtimeStatus.FALLBACK)

    async def stop(self) -> None:
        """Cancel polling, the subscription and any fetch in flight; later results are dropped"""
        self._stopped = True
        tasks = list(self._tasks)
        if self._fetch_task is not None:
            tasks.append(self._fetch_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks = []

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *exc_info):
        await self.stop()

    # -- fetching -------------------------------------------------------

    async def refresh(self) -> bool:
        """Fetch once; returns True when new data was applied"""
        if self._stopped or self._fetch_task is not None:
            return False

        task = asyncio.ensure_future(self.fetcher())
        self._fetch_task = task
        self.is_refreshing = True
        try:
            data = await task
        except asyncio.CancelledError:
            if not self._stopped:
                raise
            return False
        except Exception as exc:
            if not self._stopped:
                self.error = str(exc) or exc.__class__.__name__
                logger.warning(f"Order refresh failed: {self.error}")
            return False
        finally:
            self._fetch_task = None
            self.is_refreshing = False

        if self._stopped:
            return False
        self.error = None
        try:
            return self._apply(data)
        except Exception as exc:
            # retry the same data on the next refresh
            self._current_signature = None
            self.error = str(exc) or exc.__class__.__name__
            logger.exception("Applying refreshed orders failed")
            return False

    def _apply(self, data: Any) -> bool:
        signature = self.signature(data)
        if signature == self._current_signature:
            return False
        self._current_signature = signature
        self.data = data
        self.last_changed_at = datetime.now(timezone.utc)
        if self.on_change is not None:
            self.on_change(data)
        return True

    async def _poll_loop(self) -> None:
        while not self._stopped:
            await self.refresh()
            if self._stopped:
                break
            await asyncio.sleep(self.interval)

    # -- realtime -------------------------------------------------------

    def _set_status(self, status: RealtimeStatus) -> None:
        if status is self.status:
            return
        logger.info(f"Realtime status {self.status.value} -> {status.value}")
        self.status = status
        if self.on_status is not None:
            self.on_status(status)

    async def _fallback_timer(self) -> None:
        await asyncio.sleep(self.fallback_timeout)
        if self.status is not RealtimeStatus.CONNECTED:
            self._set_status(RealtimeStatus.FALLBACK)

    def _cancel_fallback_timer(self) -> None:
        if self._fallback_task is not None and not self._fallback_task.done():
            self._fallback_task.cancel()

    async def _subscription_loop(self) -> None:
        while not self._stopped:
            await self._consume_subscription()
            if self._stopped:
                break
            await asyncio.sleep(self.reconnect_delay)

    async def _consume_subscription(self) -> None:
        try:
            async for message in self.subscriber():
                if self._stopped:
                    return
                kind = message.get("type")
                if kind == "subscribed":
                    self._cancel_fallback_timer()
                    self._set_status(RealtimeStatus.CONNECTED)
                elif kind is None and should_refresh(message):
                    await self.refresh()
                    if self._stopped:
                        return
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(f"Change feed subscription failed: {exc}")
            self._set_status(RealtimeStatus.FALLBACK)
            return

        # closed by the server
        if self.status is RealtimeStatus.CONNECTED:
            self._set_status(RealtimeStatus.FALLBACK)
