"""
EnergyBridge — Fleet Status Aggregator
Builds the ``status.json`` snapshot from the metadata of every stored zone.

Only listing metadata is read (name, updated, latest, res, count, seq,
currency); zone bodies are never opened, so a rebuild stays cheap as the
number of zones grows.

Completeness
------------
A zone is *complete for today* when its last price interval reaches the
start of the next local civil day:

    latest  +  resolution   >=   local midnight (today + 1)

and *complete for tomorrow* against local midnight (today + 2).  "Local" is
the zone's timezone group from ``bridge.zones``.  A zone with no latest point
is never complete.  Sequence numbers play no part.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from loguru import logger

from bridge.document import DEFAULT_CURRENCY, DEFAULT_RESOLUTION, format_instant, parse_instant
from bridge.ingest import (
    JSON_CONTENT_TYPE,
    LICENSE_TEXT,
    STATUS_KEY,
    ZONE_KEY_SUFFIX,
)
from bridge.storage import FileBlobStore, ObjectInfo
from bridge.zones import ZONE_NAMES, resolve_zone_name, zone_timezone

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BRIDGE_NAME = "EnergyBridge (ENTSO-E push receiver) v1.0"
ONLINE_WINDOW = timedelta(minutes=60)
STATUS_CACHE_CONTROL = "public, max-age=60"
NOT_AVAILABLE = "N/A"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Output dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ZoneSummary:
    """Per-zone line of the fleet snapshot."""

    zone: str
    name: str
    updated: Optional[datetime]
    latest: Optional[datetime]
    is_complete_today: bool
    is_complete_tomorrow: bool
    points: int
    resolution: int
    sequence: str
    currency: str

    def to_dict(self) -> dict:
        return {
            "zone":                 self.zone,
            "name":                 self.name,
            "updated":              format_instant(self.updated) if self.updated else NOT_AVAILABLE,
            "latest_data":          format_instant(self.latest) if self.latest else NOT_AVAILABLE,
            "is_complete_today":    self.is_complete_today,
            "is_complete_tomorrow": self.is_complete_tomorrow,
            "points":               self.points,
            "res":                  f"{self.resolution}m",
            "seq":                  self.sequence,
            "curr":                 self.currency,
        }


@dataclass
class FleetStatus:
    """Whole-fleet snapshot, regenerated from scratch on every rebuild."""

    total_zones: int
    complete_today: float        # fraction 0–1, 2 decimals
    complete_tomorrow: float
    online: bool
    last_push: Optional[datetime]
    zones: list[ZoneSummary] = field(default_factory=list)
    bridge: str = BRIDGE_NAME

    def to_dict(self) -> dict:
        return {
            "bridge":  self.bridge,
            "license": LICENSE_TEXT,
            "summary": {
                "total_zones":           self.total_zones,
                "complete_today":        self.complete_today,
                "complete_tomorrow":     self.complete_tomorrow,
                "entsoe_service_online": self.online,
                "last_push":             format_instant(self.last_push) if self.last_push else None,
            },
            "zones": [z.to_dict() for z in self.zones],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def day_targets(zone: str, now: datetime) -> tuple[datetime, datetime]:
    """
    Return the (today, tomorrow) completeness targets for *zone* as UTC instants:
    local midnight at the start of the next day and of the day after.
    """
    tz = zone_timezone(zone)
    local_today = now.astimezone(tz).date()
    today_target = datetime.combine(local_today + timedelta(days=1), time(0), tzinfo=tz)
    tomorrow_target = datetime.combine(local_today + timedelta(days=2), time(0), tzinfo=tz)
    return today_target.astimezone(timezone.utc), tomorrow_target.astimezone(timezone.utc)


def is_complete(latest: Optional[datetime], resolution: int, target: datetime) -> bool:
    """True when the interval starting at *latest* ends at or after *target*."""
    if latest is None:
        return False
    return latest + timedelta(minutes=resolution) >= target


def is_online(
    last_push: Optional[datetime],
    now: datetime,
    window: timedelta = ONLINE_WINDOW,
) -> bool:
    return last_push is not None and now - last_push <= window


def _ratio(count: int, total: int) -> float:
    return round(count / total, 2) if total else 0.0


def _parse_optional_instant(text: Optional[str]) -> Optional[datetime]:
    if not text or text == NOT_AVAILABLE:
        return None
    try:
        return parse_instant(text)
    except ValueError:
        return None


def _parse_int(text: Optional[str], default: int) -> int:
    try:
        return int(text) if text is not None else default
    except ValueError:
        return default


def summarise_zone(info: ObjectInfo, now: datetime) -> ZoneSummary:
    """Turn one listing entry into a ``ZoneSummary`` without reading the body."""
    zone = info.key[: -len(ZONE_KEY_SUFFIX)]
    meta = info.metadata
    latest = _parse_optional_instant(meta.get("latest"))
    resolution = _parse_int(meta.get("res"), DEFAULT_RESOLUTION)
    today_target, tomorrow_target = day_targets(zone, now)

    return ZoneSummary(
        zone=zone,
        name=resolve_zone_name(zone, meta.get("name"), ZONE_NAMES.get(zone)),
        updated=_parse_optional_instant(meta.get("updated")),
        latest=latest,
        is_complete_today=is_complete(latest, resolution, today_target),
        is_complete_tomorrow=is_complete(latest, resolution, tomorrow_target),
        points=_parse_int(meta.get("count"), 0),
        resolution=resolution,
        sequence=meta.get("seq") or "1",
        currency=meta.get("currency") or DEFAULT_CURRENCY,
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class StatusAggregator:
    """
    Builds and persists the fleet status snapshot.

    Parameters
    ----------
    store:
        Blob store holding the zone objects and ``status.json``.
    online_window:
        How recent the last push must be for ``entsoe_service_online``.
    """

    def __init__(
        self,
        store: FileBlobStore,
        online_window: timedelta = ONLINE_WINDOW,
        bridge_name: str = BRIDGE_NAME,
    ) -> None:
        self._store = store
        self._online_window = online_window
        self._bridge_name = bridge_name

    def build(self, last_push: Optional[datetime], now: Optional[datetime] = None) -> FleetStatus:
        """Compute the snapshot. Raises ``StorageError`` if listing fails."""
        now = now or datetime.now(tz=timezone.utc)
        listed = self._store.list()
        zones = [
            summarise_zone(info, now)
            for info in listed
            if info.key != STATUS_KEY and info.key.endswith(ZONE_KEY_SUFFIX)
        ]
        zones.sort(key=lambda z: z.updated or _EPOCH, reverse=True)

        total = len(zones)
        return FleetStatus(
            total_zones=total,
            complete_today=_ratio(sum(z.is_complete_today for z in zones), total),
            complete_tomorrow=_ratio(sum(z.is_complete_tomorrow for z in zones), total),
            online=is_online(last_push, now, self._online_window),
            last_push=last_push,
            zones=zones,
            bridge=self._bridge_name,
        )

    def rebuild(self, last_push: Optional[datetime], now: Optional[datetime] = None) -> FleetStatus:
        """Build the snapshot and overwrite ``status.json`` with it."""
        status = self.build(last_push, now)
        self._store.put(
            STATUS_KEY,
            json.dumps(status.to_dict()),
            content_type=JSON_CONTENT_TYPE,
            cache_control=STATUS_CACHE_CONTROL,
        )
        logger.info(
            "status.json rebuilt: {} zones | today={:.0%} tomorrow={:.0%} | online={}",
            status.total_zones, status.complete_today, status.complete_tomorrow, status.online,
        )
        return status
