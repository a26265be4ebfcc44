"""
EnergyBridge — Bidding Zone Reference
Static EIC code → display name table plus the local-timezone grouping used
for day-completeness targets.

Timezone groups
---------------
Day-ahead prices are published per civil day, so "is today covered" depends
on where local midnight falls for each zone.  Zones are bucketed into three
offset groups and each group is resolved through ``zoneinfo`` so DST
transitions are handled by the tz database:

  * western  →  Europe/London     (UK, Ireland, Portugal)
  * eastern  →  Europe/Helsinki   (Finland, Baltics, Greece, Romania, ...)
  * central  →  Europe/Brussels   (everything else)
"""

from __future__ import annotations

import re
from typing import Optional
from zoneinfo import ZoneInfo

# ---------------------------------------------------------------------------
# Display names
# ---------------------------------------------------------------------------

ZONE_NAMES: dict[str, str] = {
    # West & North Europe
    "10YNL----------L": "Netherlands",
    "10YBE----------2": "Belgium",
    "10YFR-RTE------C": "France",
    "10Y1001A1001A82H": "Germany-Luxembourg",
    "10Y1001A1001A59C": "Germany (Amprion Area)",
    "10YAT-APG------L": "Austria",
    "10YCH-SWISSGRIDZ": "Switzerland",
    "10Y1001A1001A92E": "United Kingdom",
    "10Y1001A1001A016": "Ireland (SEM)",

    # Scandinavia & Baltics
    "10YDK-1--------W": "Denmark DK1",
    "10YDK-2--------M": "Denmark DK2",
    "10YFI-1--------U": "Finland",
    "10YNO-1--------2": "Norway NO1 (Oslo)",
    "10YNO-2--------T": "Norway NO2 (Kristiansand)",
    "10YNO-3--------J": "Norway NO3 (Trondheim)",
    "10YNO-4--------9": "Norway NO4 (Tromsø)",
    "10YNO-5--------E": "Norway NO5 (Bergen)",
    "10Y1001A1001A48H": "Norway NO5 (Bergen)",
    "50Y0JVU59B4JWQCU": "Norway NO2 North Sea Link",
    "10Y1001A1001A44P": "Sweden SE1",
    "10Y1001A1001A45N": "Sweden SE2",
    "10Y1001A1001A46L": "Sweden SE3",
    "10Y1001A1001A47J": "Sweden SE4",
    "10Y1001A1001A39I": "Estonia",
    "10YLV-1001A00074": "Latvia",
    "10YLT-1001A0008Q": "Lithuania",

    # South Europe
    "10YES-REE------0": "Spain",
    "10YPT-REN------W": "Portugal",
    "10YGR-HTSO-----Y": "Greece",
    "10YIT-GRTN-----B": "Italy (National)",
    "10Y1001A1001A73I": "Italy North",
    "10Y1001A1001A70O": "Italy Centre-North",
    "10Y1001A1001A71M": "Italy Centre-South",
    "10Y1001A1001A74G": "Italy South",
    "10Y1001A1001A75E": "Italy Sicily",
    "10Y1001A1001A885": "Italy Sardinia",
    "10Y1001A1001A893": "Italy Rossano",

    # Central & East Europe
    "10YPL-AREA-----S": "Poland",
    "10YCZ-CEPS-----N": "Czech Republic",
    "10YSK-SEPS-----K": "Slovakia",
    "10YHU-MAVIR----U": "Hungary",
    "10YRO-TEL------P": "Romania",
    "10YSI-ELES-----O": "Slovenia",
    "10YHR-HEP------M": "Croatia",
    "10YCA-BULGARIA-R": "Bulgaria",
    "10YCS-CG-TSO---S": "Montenegro",
    "10YCS-SERBIATSOV": "Serbia",
    "10YMK-MEPSO----8": "North Macedonia",
    "10YBA-JPCC-----D": "Bosnia and Herzegovina",
    "10YAL-KESH-----5": "Albania",
    "10Y1001C--00100H": "Kosovo",
    "10Y1001C--00096J": "Moldova",
    "10Y1001C--000182": "Ukraine (IPS)",
    "10YTR-TEIAS----W": "Turkey",
}

# EIC area codes are 16 characters: digits, capitals and '-'
EIC_PATTERN = re.compile(r"[0-9A-Z\-]{16}")

# ---------------------------------------------------------------------------
# Timezone groups
# ---------------------------------------------------------------------------

WESTERN_TIMEZONE = ZoneInfo("Europe/London")
EASTERN_TIMEZONE = ZoneInfo("Europe/Helsinki")
CENTRAL_TIMEZONE = ZoneInfo("Europe/Brussels")

WESTERN_ZONES = {
    "10Y1001A1001A92E",   # United Kingdom
    "10Y1001A1001A016",   # Ireland (SEM)
    "10YPT-REN------W",   # Portugal
}

EASTERN_ZONES = {
    "10YFI-1--------U",   # Finland
    "10Y1001A1001A39I",   # Estonia
    "10YLV-1001A00074",   # Latvia
    "10YLT-1001A0008Q",   # Lithuania
    "10YGR-HTSO-----Y",   # Greece
    "10YRO-TEL------P",   # Romania
    "10YCA-BULGARIA-R",   # Bulgaria
    "10Y1001C--00096J",   # Moldova
    "10Y1001C--000182",   # Ukraine (IPS)
    "10YTR-TEIAS----W",   # Turkey
}


def zone_timezone(zone: str) -> ZoneInfo:
    """Return the local civil-day timezone used for *zone*'s completeness targets."""
    if zone in WESTERN_ZONES:
        return WESTERN_TIMEZONE
    if zone in EASTERN_ZONES:
        return EASTERN_TIMEZONE
    return CENTRAL_TIMEZONE


def resolve_zone_name(zone: str, *candidates: Optional[str]) -> str:
    """
    Return the first non-empty name among *candidates*, in order, falling back
    to the raw zone code.

    Callers choose the order, e.g. ``(ZONE_NAMES.get(zone), provided)`` when
    ingesting or ``(stored, ZONE_NAMES.get(zone))`` when summarising.
    """
    for name in candidates:
        if name and name.strip():
            return name.strip()
    return zone


def is_eic_code(zone: str) -> bool:
    return EIC_PATTERN.fullmatch(zone) is not None
