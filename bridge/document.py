"""
EnergyBridge — Market Document Parser
Extracts zone identity and price points from an ENTSO-E Publication_MarketDocument
pushed by the Transparency Platform subscription service.

Tolerant matching
-----------------
Upstream documents arrive in several shapes (bare market document, wrapped in
a SOAP envelope, with or without namespace prefixes and attributes).  Tags are
therefore matched on their *local* name, case-insensitively, ignoring any
namespace, and the first match in document order wins.

Resolution enforcement
----------------------
A document may carry both PT60M and PT15M periods for the same day.  If the
PT15M marker occurs anywhere in the payload the document is read at 15-minute
resolution and every period declaring another resolution is skipped, so one
merge never mixes granularities.

Point instants
--------------
    instant  =  period start  +  (position − 1) × resolution

Points with an unparseable start, position or price are dropped one by one;
they never fail the whole document.
"""

from __future__ import annotations

import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from loguru import logger

from bridge.zones import ZONE_NAMES, is_eic_code, resolve_zone_name

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ZONE_TAG      = "out_Domain.mRID"
ZONE_NAME_TAG = "out_Domain.name"
CURRENCY_TAG  = "currency_Unit.name"
SEQUENCE_TAG  = "order_Detail.nRID"

DEFAULT_CURRENCY   = "EUR"
DEFAULT_SEQUENCE   = 1
RESOLUTION_15M     = "PT15M"
DEFAULT_RESOLUTION = 60   # minutes

ISO_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class DocumentError(ValueError):
    """Raised when a payload cannot yield any price data (not well-formed, no zone, no start)."""


# ---------------------------------------------------------------------------
# Output dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PricePoint:
    """One price at one UTC instant. Identity is the instant."""

    time: datetime    # tz-aware, UTC
    price: float      # currency / MWh, may be negative

    def to_dict(self) -> dict:
        return {"time": format_instant(self.time), "price": self.price}


@dataclass
class MarketDocument:
    """Everything the merge engine needs from one inbound document."""

    zone: str
    provided_name: Optional[str]
    currency: str
    sequence: int
    resolution: int                       # effective resolution, minutes
    points: list[PricePoint] = field(default_factory=list)
    skipped_periods: int = 0

    @property
    def name(self) -> str:
        return resolve_zone_name(self.zone, ZONE_NAMES.get(self.zone), self.provided_name)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def parse_instant(text: str) -> datetime:
    """
    Parse an ISO-8601 instant into a UTC datetime.

    Accepts the ENTSO-E minute form ('2026-01-01T00:00Z') as well as full
    seconds / milliseconds.  Naive values are taken as UTC.
    Raises ``ValueError`` on anything else.
    """
    raw = text.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    dt = datetime.fromisoformat(raw)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_instant(dt: datetime) -> str:
    """Format a datetime as 'YYYY-MM-DDTHH:MM:SSZ' in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(ISO_FORMAT)


def resolution_minutes(text: Optional[str]) -> int:
    """Map an ISO duration to 15 or 60 minutes; anything unrecognised is 60."""
    if text and text.strip().upper() == RESOLUTION_15M:
        return 15
    return DEFAULT_RESOLUTION


# ---------------------------------------------------------------------------
# Tolerant element lookup
# ---------------------------------------------------------------------------


def _local_name(tag) -> str:
    if not isinstance(tag, str):   # comments / processing instructions
        return ""
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    if ":" in tag:
        tag = tag.rsplit(":", 1)[1]
    return tag.lower()


def find_all(elem: ET.Element, name: str) -> list[ET.Element]:
    """All descendants (and *elem* itself) whose local tag name matches *name*."""
    wanted = name.lower()
    return [el for el in elem.iter() if _local_name(el.tag) == wanted]


def find_first(elem: ET.Element, name: str) -> Optional[ET.Element]:
    wanted = name.lower()
    for el in elem.iter():
        if _local_name(el.tag) == wanted:
            return el
    return None


def find_text(elem: ET.Element, name: str) -> Optional[str]:
    """Stripped text of the first matching element, or None when absent/empty."""
    el = find_first(elem, name)
    if el is None or el.text is None:
        return None
    text = el.text.strip()
    return text or None


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _parse_int(text: Optional[str]) -> Optional[int]:
    if text is None:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _parse_price(text: Optional[str]) -> Optional[float]:
    if text is None:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _period_points(block: ET.Element, resolution: int) -> list[PricePoint]:
    """Extract the points of one accepted period block."""
    start_text = find_text(block, "start")
    try:
        start = parse_instant(start_text) if start_text else None
    except ValueError:
        start = None
    if start is None:
        logger.debug("Period with unparseable start {!r} — points dropped.", start_text)
        return []

    step = timedelta(minutes=resolution)
    points: list[PricePoint] = []
    for pt in find_all(block, "Point"):
        position = _parse_int(find_text(pt, "position"))
        price = _parse_price(find_text(pt, "price.amount"))
        if position is None or position < 1 or price is None:
            logger.debug("Dropping malformed point (position={}, price={}).", position, price)
            continue
        try:
            instant = start + (position - 1) * step
        except OverflowError:
            logger.debug("Dropping point at position {}: instant out of range.", position)
            continue
        points.append(PricePoint(time=instant, price=price))
    return points


def parse_market_document(payload: str) -> MarketDocument:
    """
    Parse a pushed market document into a ``MarketDocument``.

    Raises ``DocumentError`` when the payload is not well-formed XML or lacks
    a valid EIC zone identifier or any period start.  An empty ``points`` list is a
    valid result (every point was malformed, or every period was skipped).
    """
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        raise DocumentError(f"XML parse error: {exc}") from exc

    zone = find_text(root, ZONE_TAG)
    if not zone:
        raise DocumentError(f"Missing {ZONE_TAG}")
    if not is_eic_code(zone):
        raise DocumentError(f"Invalid zone identifier {zone!r}")
    if find_text(root, "start") is None:
        raise DocumentError("Missing period start")

    sequence = _parse_int(find_text(root, SEQUENCE_TAG))
    effective = 15 if RESOLUTION_15M in payload.upper() else DEFAULT_RESOLUTION

    # Without explicit Period elements the document itself is the only block
    blocks = find_all(root, "Period") or [root]

    points: list[PricePoint] = []
    skipped = 0
    for block in blocks:
        declared = resolution_minutes(find_text(block, "resolution"))
        if declared != effective:
            skipped += 1
            continue
        points.extend(_period_points(block, effective))

    if skipped:
        logger.info(
            "{}: skipped {} period(s) not at effective resolution {}m.",
            zone, skipped, effective,
        )

    return MarketDocument(
        zone=zone,
        provided_name=find_text(root, ZONE_NAME_TAG),
        currency=find_text(root, CURRENCY_TAG) or DEFAULT_CURRENCY,
        sequence=sequence if sequence is not None else DEFAULT_SEQUENCE,
        resolution=effective,
        points=points,
        skipped_periods=skipped,
    )
