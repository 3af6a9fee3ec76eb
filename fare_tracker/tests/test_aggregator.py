import math

import pytest

from fare_tracker.aggregator import SUMMARY_COLUMNS, history_frame, summarize


def test_summarize_empty(store):
    store.save_routes([])
    df = summarize(store)
    assert df.empty
    assert list(df.columns) == SUMMARY_COLUMNS


def test_summarize(store, make_route, make_fare):
    rome = make_route(destination="FCO")
    paris = make_route(destination="CDG")
    idle = make_route(destination="ZRH")
    store.save_routes([rome, paris, idle])
    # inserted out of order on purpose
    for minutes, price in ((60, 30000), (0, 31000), (120, 28500)):
        store.add_fare(make_fare(rome, price, minutes=minutes))
    store.add_fare(make_fare(paris, 25000))

    frame = history_frame(store)
    assert len(frame) == 4
    assert frame["fetched_at"].is_monotonic_increasing

    df = summarize(store).set_index("destination")
    assert set(df.index) == {"FCO", "CDG"}

    fco = df.loc["FCO"]
    assert fco["samples"] == 3
    assert fco["min_price"] == 28500
    assert fco["max_price"] == 31000
    assert fco["mean_price"] == pytest.approx(29833.33, abs=0.01)
    assert fco["latest_price"] == 28500
    assert fco["change_percent"] == pytest.approx(-5.0)

    assert df.loc["CDG", "samples"] == 1
    assert math.isnan(df.loc["CDG", "change_percent"])
