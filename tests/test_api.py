"""End-to-end tests for the FastAPI push receiver."""

import json
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient

import api
from bridge.ingest import STATUS_KEY, zone_key
from bridge.notifier import WebhookNotifier
from bridge.storage import StorageError

from conftest import NL_ZONE, NOW


@pytest.fixture
def client(tmp_path, monkeypatch):
    api.configure_storage(tmp_path / "bucket")
    monkeypatch.setattr(api, "utcnow", lambda: NOW)
    monkeypatch.setattr(api, "ACCESS_KEY", "")
    monkeypatch.setattr(api, "PUBLIC_BASE_URL", "")
    monkeypatch.setattr(api, "WEBHOOK_URL", "")
    return TestClient(api.app)


@pytest.fixture
def nl_document(make_document):
    return make_document("2026-01-01T00:00:00Z", [(1, "50.5"), (2, "-3.2")])


def _assert_ack(resp):
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/soap+xml")
    for fragment in (
        "<msg:Verb>create</msg:Verb>",
        "<msg:Noun>ETP-DOCUMENT</msg:Noun>",
        "<msg:Context>PRODUCTION</msg:Context>",
        "<msg:Result>OK</msg:Result>",
    ):
        assert fragment in resp.text


def test_empty_push_is_acknowledged_without_zone_changes(client):
    resp = client.post("/", content=b"")

    _assert_ack(resp)
    keys = [o.key for o in api._store.list()]
    assert keys == [STATUS_KEY]
    status = api._store.get(STATUS_KEY).json()
    assert status["summary"]["total_zones"] == 0
    assert status["summary"]["last_push"] == "2026-01-01T12:00:00Z"


def test_push_then_read_zone(client, nl_document):
    _assert_ack(client.post("/", content=nl_document.encode()))

    resp = client.get(f"/{NL_ZONE}.json")
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "public, max-age=300"
    body = resp.json()
    assert body["zone"] == NL_ZONE
    assert body["name"] == "Netherlands"
    assert body["res"] == "60m"
    assert body["points"] == 2
    assert body["data"] == [
        {"time": "2026-01-01T00:00:00Z", "price": 50.5},
        {"time": "2026-01-01T01:00:00Z", "price": -3.2},
    ]

    status = client.get("/status.json").json()
    assert status["summary"]["total_zones"] == 1
    assert status["summary"]["last_push"] == "2026-01-01T12:00:00Z"
    assert status["zones"][0]["zone"] == NL_ZONE


def test_garbage_push_is_still_acknowledged(client):
    _assert_ack(client.post("/", content=b"this is not xml at all, but it is long enough to parse"))
    assert api._store.list() == []


def test_storage_failure_does_not_reach_the_sender(client, nl_document, monkeypatch):
    def broken_ingest(payload, now=None):
        raise StorageError("bucket unreachable")

    monkeypatch.setattr(api._engine, "ingest", broken_ingest)
    _assert_ack(client.post("/", content=nl_document.encode()))


def test_merge_fires_price_update_webhook(client, nl_document, monkeypatch):
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200)

    hook_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    monkeypatch.setattr(
        api, "_notifier", lambda: WebhookNotifier("http://ha.local/hook", client=hook_client)
    )

    client.post("/", content=nl_document.encode())
    client.post("/", content=nl_document.encode())   # unchanged → no second event

    assert len(seen) == 1
    assert seen[0]["event"] == "price_update"
    assert seen[0]["zone"] == NL_ZONE
    assert seen[0]["name"] == "Netherlands"
    assert len(seen[0]["data"]) == 2


def test_unknown_zone_is_404(client):
    assert client.get("/10YBE----------2.json").status_code == 404
    assert client.get("/nonsense.json").status_code == 404


def test_status_before_init_is_404_then_init_builds_it(client):
    assert client.get("/status.json").status_code == 404

    resp = client.get("/?init=true")
    assert resp.status_code == 200
    assert "Initialized" in resp.text

    status = client.get("/status.json").json()
    assert status["summary"]["total_zones"] == 0
    assert status["summary"]["last_push"] is None
    assert status["summary"]["entsoe_service_online"] is False


def test_query_redirects(client, monkeypatch):
    resp = client.get("/?status", follow_redirects=False)
    assert resp.status_code == 301
    assert resp.headers["location"] == "/status.json"

    monkeypatch.setattr(api, "PUBLIC_BASE_URL", "https://prices.example.org")
    resp = client.get(f"/?zone={NL_ZONE}", follow_redirects=False)
    assert resp.status_code == 301
    assert resp.headers["location"] == f"https://prices.example.org/{NL_ZONE}.json"


def test_redirect_escapes_the_access_key(client):
    resp = client.get("/", params={"status": "", "key": "a&b=c d"}, follow_redirects=False)
    assert resp.status_code == 301
    assert resp.headers["location"] == "/status.json?key=a%26b%3Dc+d"


def test_shutdown_waits_for_the_silence_check_task(client, monkeypatch):
    monkeypatch.setattr(api, "CHECK_INTERVAL", timedelta(minutes=15))

    with TestClient(api.app):
        task = api._health_task
        assert task is not None and not task.done()

    assert task.done()
    assert task.cancelled()
    assert api._health_task is None


def test_banner(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "online" in resp.text


def test_access_key_gates_read_endpoints(client, monkeypatch):
    client.get("/?init=true")
    monkeypatch.setattr(api, "ACCESS_KEY", "s3cret")

    denied = client.get("/status.json")
    assert denied.status_code == 401
    assert denied.json() == {"detail": "Unauthorized"}
    assert client.get("/status.json?key=wrong").status_code == 401
    assert client.get("/?init=true").status_code == 401

    assert client.get("/status.json?key=s3cret").status_code == 200
    assert client.get("/status.json", headers={"X-Bridge-Key": "s3cret"}).status_code == 200
    assert client.get("/health").status_code == 200


def test_push_is_not_gated_by_access_key(client, nl_document, monkeypatch):
    monkeypatch.setattr(api, "ACCESS_KEY", "s3cret")
    _assert_ack(client.post("/", content=nl_document.encode()))
    assert api._store.get(zone_key(NL_ZONE)) is not None


def test_health_reports_last_update(client, nl_document):
    assert client.get("/health").json()["last_update"] is None

    client.post("/", content=nl_document.encode())
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["last_update"] == "2026-01-01T12:00:00Z"
    assert body["entsoe_service_online"] is True


def test_favicon(client):
    assert client.get("/favicon.ico").status_code == 204
