"""
EnergyBridge — Fleet Status Dashboard
Streamlit view over a running bridge's status.json and zone files.

Run:  streamlit run app.py
"""

from __future__ import annotations

import os
import sys

import pandas as pd
import requests
import streamlit as st
from dotenv import load_dotenv
from loguru import logger

# ---------------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------------

load_dotenv()

# Direct loguru output to stderr so it doesn't bleed into Streamlit's stdout
logger.remove()
logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO"))

REQUEST_TIMEOUT = 15

st.set_page_config(
    page_title="EnergyBridge | Fleet Status",
    page_icon="⚡",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ---------------------------------------------------------------------------
# Data access
# ---------------------------------------------------------------------------


def fetch_json(base_url: str, path: str, access_key: str) -> dict:
    """GET a JSON document from the bridge, passing the shared secret when set."""
    headers = {"X-Bridge-Key": access_key} if access_key else {}
    url = f"{base_url.rstrip('/')}/{path}"
    logger.debug("GET {}", url)
    resp = requests.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    return resp.json()


def zones_frame(status: dict) -> pd.DataFrame:
    """Per-zone summary rows as a DataFrame, newest update first."""
    df = pd.DataFrame(status.get("zones", []))
    if df.empty:
        return df
    for col in ("updated", "latest_data"):
        df[col] = pd.to_datetime(df[col], utc=True, errors="coerce")
    return df[[
        "zone", "name", "updated", "latest_data", "is_complete_today",
        "is_complete_tomorrow", "points", "res", "curr",
    ]]


def series_frame(zone_doc: dict) -> pd.DataFrame:
    """Price series of one zone indexed by UTC time."""
    df = pd.DataFrame(zone_doc.get("data", []))
    if df.empty:
        return df
    df["time"] = pd.to_datetime(df["time"], utc=True)
    return df.set_index("time").sort_index()


# ---------------------------------------------------------------------------
# Sidebar: configuration
# ---------------------------------------------------------------------------

with st.sidebar:
    st.title("⚡ EnergyBridge")
    st.caption("ENTSO-E day-ahead price bridge")
    st.divider()

    bridge_url = st.text_input("Bridge URL", value=os.getenv("BRIDGE_URL", "http://localhost:8000"))
    access_key = st.text_input(
        "Access key", value=os.getenv("BRIDGE_ACCESS_KEY", ""), type="password",
        help="Only needed when the bridge is started with BRIDGE_ACCESS_KEY.",
    )

    st.divider()
    st.caption("Data source: ENTSO-E Transparency Platform")

# ---------------------------------------------------------------------------
# Fleet summary
# ---------------------------------------------------------------------------

st.title("⚡ EnergyBridge — Fleet Status")

try:
    status = fetch_json(bridge_url, "status.json", access_key)
except requests.RequestException as exc:
    st.error(f"Could not load status.json: {exc}")
    logger.exception("status.json fetch error")
    st.stop()

summary = status.get("summary", {})
col_zones, col_today, col_tomorrow, col_online = st.columns(4)
col_zones.metric("Zones", summary.get("total_zones", 0))
col_today.metric("Complete today", f"{summary.get('complete_today', 0):.0%}")
col_tomorrow.metric("Complete tomorrow", f"{summary.get('complete_tomorrow', 0):.0%}")
col_online.metric("ENTSO-E push", "online" if summary.get("entsoe_service_online") else "offline")
st.caption(f"Last push: {summary.get('last_push') or 'never'} · {status.get('bridge', '')}")

st.divider()

zones = zones_frame(status)
if zones.empty:
    st.info("No zones stored yet.")
    st.stop()

st.subheader("Zones")
st.dataframe(zones, use_container_width=True, hide_index=True)

# ---------------------------------------------------------------------------
# Zone drill-down
# ---------------------------------------------------------------------------

labels = {f"{row.name} ({row.zone})": row.zone for row in zones.itertuples()}
choice = st.selectbox("Zone", list(labels))

if choice:
    zone = labels[choice]
    try:
        zone_doc = fetch_json(bridge_url, f"{zone}.json", access_key)
    except requests.RequestException as exc:
        st.error(f"Could not load {zone}.json: {exc}")
        logger.exception("Zone fetch error")
    else:
        prices = series_frame(zone_doc)
        st.caption(f"{zone_doc.get('points', 0)} points · resolution {zone_doc.get('res')} · updated {zone_doc.get('updated')}")
        if prices.empty:
            st.warning("Zone has no points in the rolling window.")
        else:
            st.line_chart(prices["price"])

# ---------------------------------------------------------------------------
# Footer
# ---------------------------------------------------------------------------

st.divider()
st.caption(
    "EnergyBridge · Data © ENTSO-E Transparency Platform, licensed under CC BY 4.0"
)
