"""
EnergyBridge — Upstream Silence Check
Periodically reads the global last-update marker and raises the
``alert_connection_lost`` webhook once the feed has been quiet too long.

The check only reads state; it never touches zone data.  With no marker stored
(nothing merged yet) there is nothing to compare against and no alert fires.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from loguru import logger

from bridge.ingest import read_last_update
from bridge.notifier import WebhookNotifier
from bridge.storage import FileBlobStore, StorageError

SILENCE_THRESHOLD = timedelta(minutes=60)
CHECK_INTERVAL = timedelta(minutes=15)


@dataclass
class SilenceReport:
    last_seen: datetime
    minutes_silence: int


def check_silence(
    last_update: Optional[datetime],
    now: datetime,
    threshold: timedelta = SILENCE_THRESHOLD,
) -> Optional[SilenceReport]:
    """Return a report when ``now - last_update`` exceeds *threshold*, else None."""
    if last_update is None:
        return None
    silence = now - last_update
    if silence <= threshold:
        return None
    return SilenceReport(last_seen=last_update, minutes_silence=int(silence.total_seconds() // 60))


async def run_silence_check(
    store: FileBlobStore,
    notifier: WebhookNotifier,
    threshold: timedelta = SILENCE_THRESHOLD,
    now: Optional[datetime] = None,
) -> Optional[SilenceReport]:
    """One pass: read the marker, alert if silent. Storage errors are logged, not raised."""
    now = now or datetime.now(tz=timezone.utc)
    try:
        last_update = await asyncio.to_thread(read_last_update, store)
    except StorageError as exc:
        logger.error("Silence check could not read last update: {}", exc)
        return None

    report = check_silence(last_update, now, threshold)
    if report is None:
        logger.debug("Silence check OK (last update {}).", last_update)
        return None

    logger.warning(
        "ENTSO-E silent for {} minutes (last update {}).",
        report.minutes_silence, report.last_seen.isoformat(),
    )
    await notifier.send_connection_lost(report.last_seen, report.minutes_silence)
    return report


async def silence_check_loop(
    store: FileBlobStore,
    notifier: WebhookNotifier,
    interval: timedelta = CHECK_INTERVAL,
    threshold: timedelta = SILENCE_THRESHOLD,
) -> None:
    """Run ``run_silence_check`` every *interval* until cancelled."""
    logger.info(
        "Silence check scheduled every {} min (threshold {} min).",
        int(interval.total_seconds() // 60), int(threshold.total_seconds() // 60),
    )
    while True:
        await asyncio.sleep(interval.total_seconds())
        await run_silence_check(store, notifier, threshold)
