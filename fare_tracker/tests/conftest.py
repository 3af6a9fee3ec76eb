from datetime import date, datetime, timedelta, timezone

import pytest

from fare_tracker.config import get_settings
from fare_tracker.kvstore import KeyValueStore
from fare_tracker.models import Fare, Route
from fare_tracker.store import PriceStore

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store(tmp_path):
    return PriceStore(KeyValueStore(str(tmp_path / "test.db")))


@pytest.fixture
def make_route():
    def _make(destination="FCO", name="Rome", enabled=True, **kw):
        kw.setdefault("outbound_date", date.today() + timedelta(days=60))
        kw.setdefault("return_date", date.today() + timedelta(days=67))
        return Route(
            origin=kw.pop("origin", "TPE"),
            destination=destination,
            destination_name=name,
            enabled=enabled,
            **kw,
        )

    return _make


@pytest.fixture
def make_fare():
    def _make(route, price, minutes=0, **kw):
        kw.setdefault("carrier", "EVA Air")
        kw.setdefault("duration_minutes", 900)
        kw.setdefault("stops", 1)
        return Fare(
            route_id=route.id,
            price=price,
            fetched_at=T0 + timedelta(minutes=minutes),
            **kw,
        )

    return _make
