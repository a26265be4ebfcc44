"""Tests for the silence check and the outbound webhook."""

import asyncio
import json
from datetime import timedelta

import httpx

from bridge.document import PricePoint
from bridge.health import check_silence, run_silence_check
from bridge.ingest import LAST_UPDATE_KEY
from bridge.notifier import WebhookNotifier

from conftest import NOW


def _recording_client(status_code: int = 200):
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({"url": str(request.url), "body": json.loads(request.content)})
        return httpx.Response(status_code)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen


def test_check_silence_thresholds():
    assert check_silence(None, NOW) is None
    assert check_silence(NOW - timedelta(minutes=60), NOW) is None

    report = check_silence(NOW - timedelta(minutes=95), NOW)
    assert report.minutes_silence == 95
    assert report.last_seen == NOW - timedelta(minutes=95)

    assert check_silence(NOW - timedelta(minutes=31), NOW, threshold=timedelta(minutes=30))


def test_silence_check_posts_connection_lost(store):
    store.put(LAST_UPDATE_KEY, "2026-01-01T10:00:00Z")
    client, seen = _recording_client()
    notifier = WebhookNotifier("http://ha.local/api/webhook/prices", client=client)

    report = asyncio.run(run_silence_check(store, notifier, now=NOW))

    assert report.minutes_silence == 120
    assert seen == [{
        "url": "http://ha.local/api/webhook/prices",
        "body": {
            "event": "alert_connection_lost",
            "message": "No ENTSO-E push received for 120 minutes.",
            "last_seen": "2026-01-01T10:00:00Z",
            "minutes_silence": 120,
            "entsoe_service_online": False,
        },
    }]


def test_silence_check_is_quiet_without_marker(store):
    client, seen = _recording_client()
    notifier = WebhookNotifier("http://ha.local/hook", client=client)

    assert asyncio.run(run_silence_check(store, notifier, now=NOW)) is None
    assert seen == []


def test_price_update_payload():
    client, seen = _recording_client()
    notifier = WebhookNotifier("http://ha.local/hook", client=client)
    points = [PricePoint(NOW, 50.5), PricePoint(NOW + timedelta(hours=1), -3.2)]

    delivered = asyncio.run(notifier.send_price_update("10YNL----------L", "Netherlands", NOW, points))

    assert delivered is True
    assert seen[0]["body"] == {
        "event": "price_update",
        "zone": "10YNL----------L",
        "name": "Netherlands",
        "updated": "2026-01-01T12:00:00Z",
        "data": [
            {"time": "2026-01-01T12:00:00Z", "price": 50.5},
            {"time": "2026-01-01T13:00:00Z", "price": -3.2},
        ],
    }


def test_webhook_failures_are_swallowed():
    client, _ = _recording_client(status_code=500)
    assert asyncio.run(WebhookNotifier("http://ha.local/hook", client=client).send({"event": "x"})) is False

    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    down = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    assert asyncio.run(WebhookNotifier("http://ha.local/hook", client=down).send({"event": "x"})) is False


def test_disabled_notifier_sends_nothing():
    notifier = WebhookNotifier(None)
    assert notifier.enabled is False
    assert asyncio.run(notifier.send({"event": "x"})) is False
