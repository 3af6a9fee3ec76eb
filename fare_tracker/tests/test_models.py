from datetime import date, timedelta

import pytest
from pydantic import ValidationError

from fare_tracker.models import MAX_HISTORY, Fare, PriceHistory, Route, default_routes


def test_route_requires_return_after_outbound():
    with pytest.raises(ValidationError):
        Route(
            origin="TPE",
            destination="CDG",
            outbound_date=date(2025, 6, 8),
            return_date=date(2025, 6, 8),
        )


def test_route_rejects_blank_codes():
    with pytest.raises(ValidationError):
        Route(
            origin=" ",
            destination="CDG",
            outbound_date=date(2025, 6, 1),
            return_date=date(2025, 6, 8),
        )


def test_route_normalises_codes_and_links(make_route):
    route = make_route(
        destination="cdg",
        name="Paris",
        outbound_date=date(2025, 6, 1),
        return_date=date(2025, 6, 8),
    )
    assert route.destination == "CDG"
    assert route.display_name == "TPE → CDG"
    assert route.search_url("TWD", "zh-TW") == (
        "https://www.google.com/travel/flights?hl=zh-TW"
        "#flt=TPE.CDG.2025-06-01*CDG.TPE.2025-06-08;c:TWD"
    )


def test_fare_rejects_negative_values(make_route):
    route = make_route()
    with pytest.raises(ValidationError):
        Fare(route_id=route.id, price=-1, carrier="X", duration_minutes=0, stops=0)
    with pytest.raises(ValidationError):
        Fare(route_id=route.id, price=1, carrier="X", duration_minutes=0, stops=-1)


def test_fare_formatting(make_route, make_fare):
    fare = make_fare(make_route(), 28500, duration_minutes=870, currency="TWD")
    assert fare.formatted_price == "TWD 28,500"
    assert fare.formatted_duration == "14h 30m"
    assert make_fare(make_route(), 1, duration_minutes=840).formatted_duration == "14h"


def test_history_keeps_last_thirty(make_route, make_fare):
    route = make_route()
    history = PriceHistory(route_id=route.id)
    fares = [make_fare(route, 1000 + i, minutes=i) for i in range(31)]
    for fare in fares:
        history.add(fare)

    assert len(history) == MAX_HISTORY == 30
    ids = {f.id for f in history.fares}
    assert fares[0].id not in ids
    assert fares[-1].id in ids


def test_latest_and_previous_follow_timestamps(make_route, make_fare):
    route = make_route()
    history = PriceHistory(route_id=route.id)
    newest = make_fare(route, 300, minutes=30)
    oldest = make_fare(route, 100, minutes=0)
    middle = make_fare(route, 200, minutes=10)
    for fare in (newest, oldest, middle):
        history.add(fare)

    assert history.latest == newest
    assert history.previous == middle


def test_previous_absent_with_single_fare(make_route, make_fare):
    route = make_route()
    history = PriceHistory(route_id=route.id)
    assert history.latest is None
    history.add(make_fare(route, 100))
    assert history.previous is None


def test_history_rejects_foreign_fare(make_route, make_fare):
    history = PriceHistory(route_id=make_route().id)
    with pytest.raises(ValueError):
        history.add(make_fare(make_route(), 100))


def test_default_routes():
    today = date(2025, 1, 1)
    routes = default_routes(today)
    assert [r.destination for r in routes] == ["FCO", "CDG", "ZRH", "LHR", "KEF"]
    assert all(r.origin == "TPE" and r.enabled for r in routes)
    assert routes[0].outbound_date == today + timedelta(days=30)
    assert routes[0].return_date == today + timedelta(days=37)
    assert len({r.id for r in routes}) == 5
