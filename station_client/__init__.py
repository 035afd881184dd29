from .client import KitchenApiClient, KitchenApiError
from .printing import build_rawbt_link
from .signature import orders_signature
from .subscriber import change_feed_url, websocket_subscriber
from .sync import LiveViewSynchronizer, RealtimeStatus

__all__ = [
    "KitchenApiClient",
    "KitchenApiError",
    "LiveViewSynchronizer",
    "RealtimeStatus",
    "build_rawbt_link",
    "change_feed_url",
    "orders_signature",
    "websocket_subscriber",
]
