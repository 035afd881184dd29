import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

ROLE_HEADER = "x-role"
USER_ID_HEADER = "x-user-id"


class KitchenApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class KitchenApiClient:
    """HTTP client a station screen uses to talk to the order service"""

    def __init__(self, base_url: str, role: str, user_id: int, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.role = role
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={ROLE_HEADER: role, USER_ID_HEADER: str(user_id)},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.error(f"Error calling {method} {path}: {e}")
            raise KitchenApiError(503, f"Service unavailable: {str(e)}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            raise KitchenApiError(response.status_code, message or response.reason_phrase)
        return body

    async def list_orders(self, status: Optional[str] = None, type: Optional[str] = None,
                          date: Optional[str] = None, payment_status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {
            key: value
            for key, value in (("status", status), ("type", type), ("date", date), ("payment_status", payment_status))
            if value
        }
        body = await self._request("GET", "/orders", params=params)
        return body.get("orders", [])

    async def get_order(self, order_id: int) -> Dict[str, Any]:
        body = await self._request("GET", f"/orders/{order_id}")
        return body["order"]

    async def create_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/orders", json=payload)

    async def set_item_status(self, item_id: int, status: str) -> Dict[str, Any]:
        body = await self._request("PATCH", f"/order-items/{item_id}", json={"status": status})
        return body["item"]

    async def set_order_status(self, order_id: int, status: str) -> Dict[str, Any]:
        body = await self._request("PATCH", f"/orders/{order_id}", json={"status": status})
        return body["order"]

    async def mark_printed(self, order_id: int, print_type: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/orders/{order_id}/printed", json={"type": print_type})

    async def get_ticket(self, order_id: int) -> str:
        body = await self._request("GET", f"/orders/{order_id}/ticket")
        return body.get("ticket_text", "")
