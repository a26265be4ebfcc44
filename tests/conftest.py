"""Fixtures for EnergyBridge tests."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from bridge.storage import FileBlobStore

NL_ZONE = "10YNL----------L"
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

_DOCUMENT = """<?xml version="1.0" encoding="UTF-8"?>
<Publication_MarketDocument xmlns="urn:iec62325.351:tc57wg16:451-3:publicationdocument:7:3">
  <mRID>8a1f0c2e</mRID>
  <revisionNumber>1</revisionNumber>
  <type>A44</type>
  <TimeSeries>
    <mRID>1</mRID>
    <order_Detail.nRID>{sequence}</order_Detail.nRID>
    <in_Domain.mRID codingScheme="A01">{zone}</in_Domain.mRID>
    <out_Domain.mRID codingScheme="A01">{zone}</out_Domain.mRID>
{extra}    <currency_Unit.name>{currency}</currency_Unit.name>
    <price_Measure_Unit.name>MWH</price_Measure_Unit.name>
{periods}  </TimeSeries>
</Publication_MarketDocument>
"""

_PERIOD = """    <Period>
      <timeInterval>
        <start>{start}</start>
        <end>{end}</end>
      </timeInterval>
      <resolution>{resolution}</resolution>
{points}    </Period>
"""

_POINT = """      <Point>
        <position>{position}</position>
        <price.amount>{price}</price.amount>
      </Point>
"""


def build_period(start: str, points, resolution: str = "PT60M", end: str = "2099-01-01T00:00Z") -> str:
    body = "".join(_POINT.format(position=pos, price=price) for pos, price in points)
    return _PERIOD.format(start=start, end=end, resolution=resolution, points=body)


def build_document(
    periods,
    zone: str = NL_ZONE,
    sequence: str = "1",
    currency: str = "EUR",
    name: str | None = None,
) -> str:
    """Render a Publication_MarketDocument; *periods* are pre-rendered ``build_period`` blocks."""
    extra = f"    <out_Domain.name>{name}</out_Domain.name>\n" if name else ""
    return _DOCUMENT.format(
        zone=zone, sequence=sequence, currency=currency, extra=extra,
        periods="".join(periods),
    )


@pytest.fixture
def store(tmp_path) -> FileBlobStore:
    return FileBlobStore(tmp_path / "bucket")


@pytest.fixture
def make_document():
    """Factory: ``make_document(start, [(pos, price), ...], resolution="PT60M", **kw)``."""
    def _make(start: str, points, resolution: str = "PT60M", **kwargs) -> str:
        return build_document([build_period(start, points, resolution)], **kwargs)
    return _make


@pytest.fixture
def make_multi_document():
    """Factory for documents with several periods: ``[(start, resolution, points), ...]``."""
    def _make(blocks, **kwargs) -> str:
        return build_document(
            [build_period(start, points, resolution) for start, resolution, points in blocks],
            **kwargs,
        )
    return _make
