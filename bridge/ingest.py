"""
EnergyBridge — Ingest & Merge Engine
Merges pushed day-ahead prices into each zone's rolling 48-hour series.

Merge cycle
-----------
  1. Heartbeat check     payloads of 50 chars or fewer carry no data
  2. Parse               tolerant XML extraction (bridge.document)
  3. Sequence admission  incoming seq >= stored seq, or zone has no points
  4. Merge               overlay new points on stored ones, keyed by instant
  5. Prune               drop points older than now − 48h
  6. Change detection    identical result → no write
  7. Persist             zone document + metadata, then the last-update marker

Step 4 is a "smart diff": historical points the upstream omits from a push are
kept, never deleted.  Steps 3–7 are a plain read-modify-write with no lock, so
two concurrent pushes for the same zone can overwrite each other (last writer
wins).  Push frequency is at most hourly per zone.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from loguru import logger

from bridge.document import (
    DocumentError,
    MarketDocument,
    PricePoint,
    format_instant,
    parse_instant,
    parse_market_document,
)
from bridge.storage import FileBlobStore, StoredObject

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HEARTBEAT_MAX_LENGTH = 50
RETENTION = timedelta(hours=48)

STATUS_KEY      = "status.json"
LAST_UPDATE_KEY = "last_update"
ZONE_KEY_SUFFIX = ".json"

ZONE_CACHE_CONTROL = "public, max-age=300"
JSON_CONTENT_TYPE  = "application/json"

LICENSE_TEXT = (
    "Data source: ENTSO-E Transparency Platform. "
    "Modified and licensed under CC BY 4.0 (https://creativecommons.org/licenses/by/4.0/)"
)


class MergeOutcome(str, Enum):
    HEARTBEAT      = "heartbeat"
    NO_DATA        = "no-data"
    REJECTED_STALE = "rejected-stale"
    UNCHANGED      = "unchanged"
    MERGED         = "merged"


@dataclass
class MergeResult:
    """What one ``ingest`` call did. ``points`` is the persisted series on MERGED."""

    outcome: MergeOutcome
    zone: Optional[str] = None
    name: Optional[str] = None
    updated: Optional[datetime] = None
    resolution: Optional[int] = None
    points: list[PricePoint] = field(default_factory=list)
    reason: str = ""

    @property
    def merged(self) -> bool:
        return self.outcome is MergeOutcome.MERGED


# ---------------------------------------------------------------------------
# Pure series helpers
# ---------------------------------------------------------------------------


def zone_key(zone: str) -> str:
    return f"{zone}{ZONE_KEY_SUFFIX}"


def merge_points(
    existing: dict[datetime, float],
    incoming: list[PricePoint],
) -> dict[datetime, float]:
    """Overlay *incoming* on *existing*; later points win on the same instant."""
    merged = dict(existing)
    for point in incoming:
        merged[point.time] = point.price
    return merged


def prune_points(
    points: dict[datetime, float],
    now: datetime,
    retention: timedelta = RETENTION,
) -> dict[datetime, float]:
    """Keep points at or after ``now - retention``."""
    cutoff = now - retention
    return {t: p for t, p in points.items() if t >= cutoff}


def to_sorted_points(points: dict[datetime, float]) -> list[PricePoint]:
    return [PricePoint(time=t, price=points[t]) for t in sorted(points)]


def load_series(obj: Optional[StoredObject]) -> dict[datetime, float]:
    """Read the stored ``data`` array back into an instant → price map."""
    if obj is None:
        return {}
    body = obj.json()
    series: dict[datetime, float] = {}
    for item in body.get("data") or []:
        try:
            series[parse_instant(item["time"])] = float(item["price"])
        except (KeyError, TypeError, ValueError):
            logger.debug("{}: ignoring unreadable stored point {!r}", obj.key, item)
    return series


def stored_sequence(obj: Optional[StoredObject]) -> int:
    if obj is None:
        return 0
    try:
        return int(obj.metadata.get("seq", "0"))
    except ValueError:
        return 0


def read_last_update(store: FileBlobStore) -> Optional[datetime]:
    """Return the global last-successful-merge instant, or None if never set."""
    obj = store.get(LAST_UPDATE_KEY)
    if obj is None:
        return None
    try:
        return parse_instant(obj.text())
    except ValueError:
        logger.warning("Unreadable {} marker: {!r}", LAST_UPDATE_KEY, obj.body[:64])
        return None


def build_zone_document(
    doc: MarketDocument,
    points: list[PricePoint],
    updated: datetime,
) -> dict:
    return {
        "zone":    doc.zone,
        "name":    doc.name,
        "license": LICENSE_TEXT,
        "updated": format_instant(updated),
        "points":  len(points),
        "res":     f"{doc.resolution}m",
        "data":    [p.to_dict() for p in points],
    }


def build_zone_metadata(
    doc: MarketDocument,
    points: list[PricePoint],
    updated: datetime,
) -> dict[str, str]:
    meta = {
        "updated":  format_instant(updated),
        "name":     doc.name,
        "count":    str(len(points)),
        "currency": doc.currency,
        "res":      str(doc.resolution),
        "seq":      str(doc.sequence),
    }
    if points:
        meta["latest"] = format_instant(points[-1].time)
    return meta


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class IngestEngine:
    """
    Runs the merge cycle for inbound pushes against a blob store.

    Parameters
    ----------
    store:
        Blob store holding one ``<zone>.json`` object per zone.
    retention:
        Rolling window kept per zone (default 48 h).
    """

    def __init__(self, store: FileBlobStore, retention: timedelta = RETENTION) -> None:
        self._store = store
        self._retention = retention

    def ingest(self, payload: str, now: Optional[datetime] = None) -> MergeResult:
        """
        Parse *payload* and merge it into the stored zone series.

        Never raises for bad input; ``StorageError`` from the store propagates.
        """
        now = (now or datetime.now(tz=timezone.utc)).astimezone(timezone.utc)

        if len(payload) <= HEARTBEAT_MAX_LENGTH:
            logger.debug("Heartbeat push ({} chars).", len(payload))
            return MergeResult(outcome=MergeOutcome.HEARTBEAT, updated=now)

        try:
            doc = parse_market_document(payload)
        except DocumentError as exc:
            logger.warning("Ignoring push: {}", exc)
            return MergeResult(outcome=MergeOutcome.NO_DATA, reason=str(exc))

        if not doc.points:
            logger.warning("{}: document yielded no valid points.", doc.zone)
            return MergeResult(
                outcome=MergeOutcome.NO_DATA, zone=doc.zone, name=doc.name,
                reason="no valid points",
            )

        return self._merge(doc, now)

    def _merge(self, doc: MarketDocument, now: datetime) -> MergeResult:
        key = zone_key(doc.zone)
        current = self._store.get(key)
        existing = load_series(current)
        existing_seq = stored_sequence(current)

        if doc.sequence < existing_seq and existing:
            logger.info(
                "{}: stale document seq={} < stored seq={} — discarded.",
                doc.zone, doc.sequence, existing_seq,
            )
            return MergeResult(
                outcome=MergeOutcome.REJECTED_STALE, zone=doc.zone, name=doc.name,
                reason=f"seq {doc.sequence} < {existing_seq}",
            )

        merged = prune_points(merge_points(existing, doc.points), now, self._retention)

        if existing and merged == existing:
            logger.info("{}: no price changes ({} points) — write skipped.", doc.zone, len(merged))
            return MergeResult(outcome=MergeOutcome.UNCHANGED, zone=doc.zone, name=doc.name)

        points = to_sorted_points(merged)
        self._store.put(
            key,
            json.dumps(build_zone_document(doc, points, now)),
            metadata=build_zone_metadata(doc, points, now),
            content_type=JSON_CONTENT_TYPE,
            cache_control=ZONE_CACHE_CONTROL,
        )
        self._store.put(LAST_UPDATE_KEY, format_instant(now), content_type="text/plain")

        logger.info(
            "{} ({}): merged {} new points → {} stored, res={}m, seq={}.",
            doc.zone, doc.name, len(doc.points), len(points), doc.resolution, doc.sequence,
        )
        return MergeResult(
            outcome=MergeOutcome.MERGED,
            zone=doc.zone,
            name=doc.name,
            updated=now,
            resolution=doc.resolution,
            points=points,
        )
