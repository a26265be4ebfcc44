"""
EnergyBridge — Outbound Webhook Notifier
Best-effort JSON POSTs to a downstream home-automation webhook.

Events
------
  price_update            a zone's merged series after a successful merge
  alert_connection_lost   upstream silent for longer than the threshold

Delivery failures are logged and swallowed: the webhook is a courtesy
notification, not part of the contract with the upstream feed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import httpx
from loguru import logger

from bridge.document import PricePoint, format_instant

REQUEST_TIMEOUT = 10.0

EVENT_PRICE_UPDATE    = "price_update"
EVENT_CONNECTION_LOST = "alert_connection_lost"


def price_update_payload(
    zone: str,
    name: str,
    updated: datetime,
    points: list[PricePoint],
) -> dict[str, Any]:
    return {
        "event":   EVENT_PRICE_UPDATE,
        "zone":    zone,
        "name":    name,
        "updated": format_instant(updated),
        "data":    [p.to_dict() for p in points],
    }


def connection_lost_payload(last_seen: datetime, minutes_silence: int) -> dict[str, Any]:
    return {
        "event":                 EVENT_CONNECTION_LOST,
        "message":               f"No ENTSO-E push received for {minutes_silence} minutes.",
        "last_seen":             format_instant(last_seen),
        "minutes_silence":       minutes_silence,
        "entsoe_service_online": False,
    }


class WebhookNotifier:
    """
    Posts events to ``url``. A notifier without a URL is a no-op.

    Parameters
    ----------
    url:
        Webhook endpoint; ``None`` or empty disables delivery.
    client:
        Shared ``httpx.AsyncClient``. When omitted a short-lived client is
        created per call.
    timeout:
        Per-request timeout in seconds for short-lived clients.
    """

    def __init__(
        self,
        url: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._url = url or None
        self._client = client
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return self._url is not None

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> None:
        resp = await client.post(self._url, json=payload, timeout=self._timeout)
        resp.raise_for_status()

    async def send(self, payload: dict[str, Any]) -> bool:
        """POST *payload*; returns True on a 2xx response, False otherwise."""
        if not self.enabled:
            return False
        event = payload.get("event", "?")
        try:
            if self._client is not None:
                await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    await self._post(client, payload)
        except httpx.HTTPStatusError as exc:
            logger.warning("Webhook {} rejected: HTTP {}", event, exc.response.status_code)
            return False
        except httpx.HTTPError as exc:
            logger.warning("Webhook {} failed: {}", event, exc)
            return False
        logger.info("Webhook {} delivered.", event)
        return True

    async def send_price_update(
        self,
        zone: str,
        name: str,
        updated: datetime,
        points: list[PricePoint],
    ) -> bool:
        return await self.send(price_update_payload(zone, name, updated, points))

    async def send_connection_lost(self, last_seen: datetime, minutes_silence: int) -> bool:
        return await self.send(connection_lost_payload(last_seen, minutes_silence))
