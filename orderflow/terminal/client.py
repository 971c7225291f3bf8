"""
Terminal API Client

What a kiosk terminal needs from the server:
    - REST: menu, outlet inventory, order placement (httpx)
    - Realtime: join the outlet room and queue inventory deltas (websockets)
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx
import websockets

from orderflow.terminal.catalog import CachedCatalogItem, CatalogCache
from orderflow.terminal.reconciler import TerminalCartReconciler

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class TerminalApiError(Exception):
    """Non-2xx answer from the server."""

    def __init__(self, status_code: int, detail: str):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


class TerminalClient:

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url + API_PREFIX,
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self._timeout,
            transport=self._transport,
        )

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        if response.is_success:
            return response.json()
        try:
            detail = response.json().get("detail") or response.reason_phrase
        except ValueError:
            detail = response.text or response.reason_phrase
        raise TerminalApiError(response.status_code, str(detail))

    # =========================================================================
    # REST
    # =========================================================================

    async def fetch_menu(self) -> List[Dict[str, Any]]:
        async with self._client() as client:
            return self._unwrap(await client.get("/kiosks/menu"))

    async def fetch_inventory(self) -> List[Dict[str, Any]]:
        async with self._client() as client:
            return self._unwrap(await client.get("/items/inventory"))

    async def refresh_catalog(self, catalog: CatalogCache) -> List[CachedCatalogItem]:
        """Download menu and inventory and rebuild the offline cache."""
        menu = await self.fetch_menu()
        inventory = await self.fetch_inventory()
        return catalog.cache_menu(menu, inventory)

    async def place_order(
        self,
        items: List[Dict[str, Any]],
        total_amount: float,
        payer_name: str,
        upi_id: str,
    ) -> Dict[str, Any]:
        """
        Raises:
            TerminalApiError: Insufficient stock, validation or auth failure
        """
        body = {
            "items": items,
            "totalAmount": total_amount,
            "paymentDetails": {"name": payer_name, "upiId": upi_id},
        }
        async with self._client() as client:
            return self._unwrap(await client.post("/orders", json=body))

    # =========================================================================
    # REALTIME
    # =========================================================================

    @property
    def ws_url(self) -> str:
        if self.base_url.startswith("https://"):
            return "wss://" + self.base_url[len("https://"):] + "/ws"
        return "ws://" + self.base_url.removeprefix("http://") + "/ws"

    async def listen(self, reconciler: TerminalCartReconciler, location_id: str) -> None:
        """
        Join the outlet room and queue every inventory delta until the
        connection closes.
        """
        async with websockets.connect(self.ws_url) as ws:
            await ws.send(json.dumps({"event": "auth", "token": self.token}))
            await ws.send(json.dumps({"event": "join:outlet", "outletId": location_id}))

            async for message in ws:
                try:
                    payload = json.loads(message)
                except ValueError:
                    continue

                event = payload.get("event")
                if event == "joined:outlet":
                    logger.info(f"Listening for inventory updates at {location_id}")
                elif event == "error":
                    logger.warning(f"Realtime error: {payload.get('message')}")
                else:
                    reconciler.handle_event(payload)
