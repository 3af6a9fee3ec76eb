from __future__ import annotations

import logging

import pandas as pd

from .price_change import PriceChange
from .store import PriceStore

logger = logging.getLogger(__name__)

FARE_COLUMNS = [
    "route_id",
    "origin",
    "destination",
    "price",
    "currency",
    "carrier",
    "stops",
    "is_fallback",
    "fetched_at",
]

SUMMARY_COLUMNS = [
    "route_id",
    "origin",
    "destination",
    "samples",
    "min_price",
    "max_price",
    "mean_price",
    "latest_price",
    "change_percent",
]


def history_frame(store: PriceStore) -> pd.DataFrame:
    """Return every stored fare as one row, oldest first."""
    rows = []
    for route in store.routes():
        for fare in store.history(route.id).fares:
            rows.append(
                {
                    "route_id": str(route.id),
                    "origin": route.origin,
                    "destination": route.destination,
                    "price": fare.price,
                    "currency": fare.currency,
                    "carrier": fare.carrier,
                    "stops": fare.stops,
                    "is_fallback": fare.is_fallback,
                    "fetched_at": fare.fetched_at,
                }
            )
    if not rows:
        return pd.DataFrame(columns=FARE_COLUMNS)
    df = pd.DataFrame(rows, columns=FARE_COLUMNS)
    df["fetched_at"] = pd.to_datetime(df["fetched_at"], utc=True)
    return df.sort_values("fetched_at").reset_index(drop=True)


def summarize(store: PriceStore) -> pd.DataFrame:
    """Per-route price statistics over the stored history.

    ``change_percent`` compares the two most recent fares and is ``NaN``
    when a route has fewer than two.
    """
    df = history_frame(store)
    if df.empty:
        return pd.DataFrame(columns=SUMMARY_COLUMNS)

    grouped = df.groupby(["route_id", "origin", "destination"], as_index=False, sort=False)
    result = grouped.agg(
        samples=("price", "count"),
        min_price=("price", "min"),
        max_price=("price", "max"),
        mean_price=("price", "mean"),
    )
    latest = grouped.tail(1).set_index("route_id")["price"]
    result["latest_price"] = result["route_id"].map(latest)

    def _change(route_id: str) -> float:
        prices = df.loc[df["route_id"] == route_id, "price"].tolist()
        if len(prices) < 2:
            return float("nan")
        return PriceChange(current_price=prices[-1], previous_price=prices[-2]).change_percent

    result["change_percent"] = result["route_id"].map(_change)
    logger.debug("Summarised %d fares over %d routes", len(df), len(result))
    return result[SUMMARY_COLUMNS]


__all__ = ["history_frame", "summarize"]
