"""
EnergyBridge — FastAPI Push Receiver
Receives ENTSO-E Transparency Platform market-document pushes, merges them
into rolling 48-hour per-zone price files and serves those files plus a fleet
status snapshot as JSON.

Run:  uvicorn api:app --port 8000
Docs: http://localhost:8000/docs

Endpoints
---------
  POST /                 ENTSO-E push target (always answers 200 + SOAP ack)
  GET  /?init=true       force a status.json rebuild
  GET  /?status          redirect to status.json
  GET  /?zone=<EIC>      redirect to <EIC>.json
  GET  /status.json      fleet health & available zones
  GET  /<EIC>.json       one zone's price series
  GET  /health           process health
"""

from __future__ import annotations

import asyncio
import os
import secrets
import sys
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

import httpx
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse, RedirectResponse, Response
from loguru import logger
from pydantic import BaseModel
from starlette.requests import ClientDisconnect

from bridge.document import format_instant
from bridge.health import silence_check_loop
from bridge.ingest import (
    STATUS_KEY,
    IngestEngine,
    MergeOutcome,
    read_last_update,
    zone_key,
)
from bridge.notifier import WebhookNotifier
from bridge.status import BRIDGE_NAME, StatusAggregator, is_online
from bridge.storage import FileBlobStore, StorageError
from bridge.zones import is_eic_code

load_dotenv()

logger.remove()
logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"))

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DATA_DIR          = os.getenv("BRIDGE_DATA_DIR", "./bucket")
ACCESS_KEY        = os.getenv("BRIDGE_ACCESS_KEY", "")
PUBLIC_BASE_URL   = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")
WEBHOOK_URL       = os.getenv("WEBHOOK_URL", "")
WEBHOOK_TIMEOUT   = float(os.getenv("WEBHOOK_TIMEOUT", "10"))

ONLINE_WINDOW     = timedelta(minutes=int(os.getenv("ONLINE_WINDOW_MINUTES", "60")))
SILENCE_THRESHOLD = timedelta(minutes=int(os.getenv("SILENCE_THRESHOLD_MINUTES", "60")))
CHECK_INTERVAL    = timedelta(minutes=int(os.getenv("HEALTH_CHECK_INTERVAL_MINUTES", "15")))

# IEC 62325-504 ResponseMessage, identical for every push
ACK_XML = """<?xml version="1.0" encoding="UTF-8"?>
<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://www.w3.org/2003/05/soap-envelope" SOAP-ENV:encodingStyle="http://www.w3.org/2001/12/soap-encoding">
  <SOAP-ENV:Body>
    <msg:ResponseMessage xmlns:msg="http://iec.ch/TC57/2011/schema/message">
      <msg:Header>
        <msg:Verb>create</msg:Verb>
        <msg:Noun>ETP-DOCUMENT</msg:Noun>
        <msg:Context>PRODUCTION</msg:Context>
        <msg:AckRequired>false</msg:AckRequired>
      </msg:Header>
      <msg:Reply><msg:Result>OK</msg:Result></msg:Reply>
    </msg:ResponseMessage>
  </SOAP-ENV:Body>
</SOAP-ENV:Envelope>"""
ACK_MEDIA_TYPE = "application/soap+xml"

# ---------------------------------------------------------------------------
# Application state: blob store, engines, shared httpx client
# ---------------------------------------------------------------------------

_http_client: Optional[httpx.AsyncClient] = None
_health_task: Optional[asyncio.Task] = None
_store: FileBlobStore
_engine: IngestEngine
_aggregator: StatusAggregator


def configure_storage(data_dir: str | os.PathLike) -> None:
    """(Re)bind the blob store and the engines built on it."""
    global _store, _engine, _aggregator
    _store = FileBlobStore(data_dir)
    _engine = IngestEngine(_store)
    _aggregator = StatusAggregator(_store, online_window=ONLINE_WINDOW)
    logger.info("Blob store at {}", _store.root.resolve())


configure_storage(DATA_DIR)


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _notifier() -> WebhookNotifier:
    return WebhookNotifier(WEBHOOK_URL, client=_http_client, timeout=WEBHOOK_TIMEOUT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Shared httpx client and the periodic silence check live as long as the process."""
    global _http_client, _health_task
    _http_client = httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT)
    logger.info("httpx AsyncClient initialised.")
    if CHECK_INTERVAL > timedelta(0):
        _health_task = asyncio.create_task(
            silence_check_loop(_store, _notifier(), CHECK_INTERVAL, SILENCE_THRESHOLD)
        )
    yield
    if _health_task is not None:
        _health_task.cancel()
        with suppress(asyncio.CancelledError):
            await _health_task
        _health_task = None
    await _http_client.aclose()
    _http_client = None
    logger.info("httpx AsyncClient closed.")


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="EnergyBridge",
    description=(
        "Webhook bridge between the ENTSO-E Transparency Platform push service "
        "and public per-zone day-ahead price JSON files."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class PricePointRecord(BaseModel):
    time:  str   # UTC instant, 'YYYY-MM-DDTHH:MM:SSZ'
    price: float


class ZoneDocument(BaseModel):
    zone:    str
    name:    str
    license: str
    updated: str
    points:  int
    res:     str   # "15m" | "60m"
    data:    list[PricePointRecord]


class ZoneStatusRecord(BaseModel):
    zone:                 str
    name:                 str
    updated:              str
    latest_data:          str
    is_complete_today:    bool
    is_complete_tomorrow: bool
    points:               int
    res:                  str
    seq:                  str
    curr:                 str


class StatusSummary(BaseModel):
    total_zones:           int
    complete_today:        float   # fraction 0–1
    complete_tomorrow:     float
    entsoe_service_online: bool
    last_push:             Optional[str]


class StatusDocument(BaseModel):
    bridge:  str
    license: str
    summary: StatusSummary
    zones:   list[ZoneStatusRecord]


class HealthResponse(BaseModel):
    status:                str
    timestamp:             str
    last_update:           Optional[str]
    entsoe_service_online: bool


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


def require_access_key(
    key: Optional[str] = Query(default=None, description="Shared secret, when one is configured."),
    x_bridge_key: Optional[str] = Header(default=None),
) -> None:
    """Reject the request unless the configured shared secret was supplied."""
    if not ACCESS_KEY:
        return
    supplied = key or x_bridge_key or ""
    if not secrets.compare_digest(supplied.encode("utf-8"), ACCESS_KEY.encode("utf-8")):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ---------------------------------------------------------------------------
# Background merge
# ---------------------------------------------------------------------------


async def process_push(payload: str, received_at: datetime) -> None:
    """
    Merge one push and refresh status.json. Runs after the ack has been sent.

    Every failure ends here: the upstream already has its 200 and nothing is
    retried.
    """
    try:
        result = await asyncio.to_thread(_engine.ingest, payload, received_at)
        if result.outcome is MergeOutcome.HEARTBEAT:
            await asyncio.to_thread(_aggregator.rebuild, received_at)
            return
        if not result.merged:
            return
        await asyncio.to_thread(_aggregator.rebuild, result.updated)
    except StorageError as exc:
        logger.error("Push dropped — storage failure: {}", exc)
        return
    except Exception:
        logger.exception("Push dropped — unexpected processing error")
        return

    await _notifier().send_price_update(result.zone, result.name, result.updated, result.points)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.post("/", tags=["Ingest"], response_class=Response)
async def receive_push(request: Request, background_tasks: BackgroundTasks):
    """
    ENTSO-E push target.

    Answers immediately with the fixed IEC 62325-504 acknowledgment and merges
    the document in the background.  The answer is **always** HTTP 200 — a
    failing endpoint gets the subscription suspended upstream.
    """
    received_at = utcnow()
    try:
        payload = (await request.body()).decode("utf-8", errors="replace")
    except ClientDisconnect:
        logger.warning("POST / — client disconnected before the body was read.")
    else:
        logger.info("POST / | {} bytes", len(payload))
        background_tasks.add_task(process_push, payload, received_at)
    return Response(content=ACK_XML, media_type=ACK_MEDIA_TYPE)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)


@app.get("/health", response_model=HealthResponse, tags=["Meta"])
async def health():
    """Process health plus the last successful merge instant."""
    now = utcnow()
    try:
        last_update = await asyncio.to_thread(read_last_update, _store)
    except StorageError as exc:
        logger.error("Health: cannot read last update: {}", exc)
        raise HTTPException(status_code=503, detail="Storage unavailable.") from exc
    return HealthResponse(
        status="ok",
        timestamp=format_instant(now),
        last_update=format_instant(last_update) if last_update else None,
        entsoe_service_online=is_online(last_update, now, ONLINE_WINDOW),
    )


def _redirect_target(filename: str, key: Optional[str]) -> str:
    if PUBLIC_BASE_URL:
        return f"{PUBLIC_BASE_URL}/{filename}"
    return f"/{filename}?{urlencode({'key': key})}" if key else f"/{filename}"


@app.get("/", tags=["Read"], dependencies=[Depends(require_access_key)])
async def root(request: Request):
    """
    Query-flag entry point kept for existing clients:

    * `?init=true` — rebuild status.json now (useful before the first push)
    * `?status` — redirect to status.json
    * `?zone=<EIC>` — redirect to that zone's JSON
    """
    params = request.query_params
    key = params.get("key")

    if "init" in params:
        try:
            last_update = await asyncio.to_thread(read_last_update, _store)
            status = await asyncio.to_thread(_aggregator.rebuild, last_update)
        except StorageError as exc:
            logger.error("Manual init failed: {}", exc)
            raise HTTPException(status_code=503, detail="Storage unavailable.") from exc
        return PlainTextResponse(
            f"Initialized! status.json rebuilt with {status.total_zones} zones.\n\n"
            f"You can view it here: {_redirect_target(STATUS_KEY, None)}"
        )

    if "status" in params:
        return RedirectResponse(_redirect_target(STATUS_KEY, key), status_code=301)

    zone = params.get("zone")
    if zone:
        if not is_eic_code(zone):
            raise HTTPException(status_code=404, detail=f"Zone '{zone}' not found.")
        return RedirectResponse(_redirect_target(zone_key(zone), key), status_code=301)

    return PlainTextResponse(f"{BRIDGE_NAME} online. Fleet status: {_redirect_target(STATUS_KEY, None)}")


@app.get(
    "/status.json",
    response_model=StatusDocument,
    tags=["Read"],
    dependencies=[Depends(require_access_key)],
)
async def get_status(response: Response):
    """Fleet health: per-zone completeness for today/tomorrow and upstream liveness."""
    try:
        obj = await asyncio.to_thread(_store.get, STATUS_KEY)
        if obj is None:
            raise HTTPException(
                status_code=404,
                detail="status.json not generated yet. Call /?init=true.",
            )
        body = obj.json()
    except StorageError as exc:
        logger.error("GET /status.json failed: {}", exc)
        raise HTTPException(status_code=503, detail="Storage unavailable.") from exc

    if obj.cache_control:
        response.headers["Cache-Control"] = obj.cache_control
    return body


@app.get(
    "/{zone}.json",
    response_model=ZoneDocument,
    tags=["Read"],
    dependencies=[Depends(require_access_key)],
)
async def get_zone(zone: str, response: Response):
    """Rolling 48-hour price series for one bidding zone (EIC code)."""
    if not is_eic_code(zone):
        raise HTTPException(status_code=404, detail=f"Zone '{zone}' not found.")
    try:
        obj = await asyncio.to_thread(_store.get, zone_key(zone))
        if obj is None:
            raise HTTPException(status_code=404, detail=f"Zone '{zone}' not found.")
        body = obj.json()
    except StorageError as exc:
        logger.error("GET /{}.json failed: {}", zone, exc)
        raise HTTPException(status_code=503, detail="Storage unavailable.") from exc

    if obj.cache_control:
        response.headers["Cache-Control"] = obj.cache_control
    return body
