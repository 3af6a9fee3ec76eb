from datetime import date, timedelta
from unittest.mock import Mock, patch

import pytest

from fare_tracker.amadeus_fetcher import AmadeusFareProvider
from fare_tracker.config import Settings
from fare_tracker.factory import create_provider
from fare_tracker.fare_provider import (
    FALLBACK_MARK,
    AuthenticationError,
    Candidate,
    Credentials,
    DecodeError,
    FareProvider,
    NoFaresFoundError,
    RateLimitError,
    RequestError,
    TransportError,
    build_denylist,
    build_fare,
    raise_for_status,
    select_cheapest,
    validate_route,
)


def cand(price, carriers=("BR",), layovers=(), carrier="EVA Air"):
    return Candidate(
        price=price,
        currency="TWD",
        carrier=carrier,
        duration_minutes=900,
        stops=len(layovers),
        carriers=tuple(carriers),
        layover_airports=tuple(layovers),
    )


class StaticProvider(FareProvider):
    name = "static"
    required_credentials = ("api_key",)

    def __init__(self, candidates, **kwargs):
        super().__init__(**kwargs)
        self.candidates = candidates

    def search(self, route, credentials):
        return list(self.candidates)


def test_select_cheapest_skips_denylisted():
    denylist = build_denylist()
    chosen, fallback = select_cheapest(
        [
            cand(500, carriers=("Air China", "CA")),
            cand(700, carriers=("BR",)),
            cand(650, carriers=("CI",), layovers=("PVG",)),
        ],
        denylist,
    )
    assert chosen.price == 700
    assert fallback is False


def test_select_cheapest_falls_back_when_all_denylisted():
    chosen, fallback = select_cheapest(
        [cand(600, carriers=("MU",)), cand(500, carriers=("CA",))], build_denylist()
    )
    assert chosen.price == 500
    assert fallback is True


def test_select_cheapest_empty():
    with pytest.raises(NoFaresFoundError):
        select_cheapest([], build_denylist())


def test_denylist_is_case_insensitive_and_extendable():
    denylist = build_denylist(["Bad Air"])
    chosen, _ = select_cheapest(
        [cand(100, carriers=("BAD AIR",)), cand(200, carriers=("china southern",))],
        denylist,
    )
    assert chosen.price == 100
    chosen, fallback = select_cheapest([cand(100, carriers=("BAD AIR",))], denylist)
    assert fallback is True


def test_validate_route(make_route):
    validate_route(make_route())
    with pytest.raises(RequestError):
        validate_route(make_route(origin="FCO", destination="FCO"))
    # bypass model validation to exercise the provider-side check
    bad = make_route().model_copy(update={"return_date": date(2025, 5, 1)})
    with pytest.raises(RequestError):
        validate_route(bad)


@pytest.mark.parametrize(
    "status,exc",
    [(401, AuthenticationError), (403, AuthenticationError), (429, RateLimitError), (502, TransportError)],
)
def test_raise_for_status(status, exc):
    with pytest.raises(exc):
        raise_for_status(Mock(status_code=status, text="nope"))


def test_raise_for_status_keeps_code():
    with pytest.raises(TransportError) as info:
        raise_for_status(Mock(status_code=503, text=""))
    assert info.value.status_code == 503
    raise_for_status(Mock(status_code=204, text=""))


def test_fetch_fare_flags_fallback(make_route):
    route = make_route()
    provider = StaticProvider([cand(600, carriers=("MU",)), cand(500, carriers=("CA",), carrier="Air China")])
    fare = provider.fetch_fare(route, Credentials(api_key="k"))
    assert fare.route_id == route.id
    assert fare.price == 500
    assert fare.is_fallback
    assert fare.carrier == f"Air China {FALLBACK_MARK}"


def test_fetch_fare_requires_credentials(make_route):
    provider = StaticProvider([cand(500)])
    provider.search = Mock()
    with pytest.raises(AuthenticationError):
        provider.fetch_fare(make_route(), Credentials())
    provider.search.assert_not_called()


def test_create_provider(monkeypatch):
    monkeypatch.setenv("AMADEUS_ENV", "production")
    monkeypatch.setenv("REQUEST_DELAY_S", "0.5")
    provider = create_provider("Amadeus", Settings())
    assert isinstance(provider, AmadeusFareProvider)
    assert provider.base_url == "https://api.amadeus.com"
    assert provider.request_delay_s == 0.5
    assert provider.max_parallel == 1

    with pytest.raises(ValueError):
        create_provider("kayak", Settings())


def test_validate_route_rejects_past_outbound(make_route):
    today = date.today()
    stale = make_route(
        outbound_date=today - timedelta(days=10), return_date=today - timedelta(days=3)
    )
    with pytest.raises(RequestError):
        validate_route(stale)
    validate_route(make_route(outbound_date=today, return_date=today + timedelta(days=7)))
    validate_route(stale, today=today - timedelta(days=10))


@patch("requests.get")
def test_past_route_is_rejected_before_any_request(mock_get, make_route):
    today = date.today()
    stale = make_route(
        outbound_date=today - timedelta(days=10), return_date=today - timedelta(days=3)
    )
    provider = StaticProvider([cand(500)])
    provider.search = Mock()
    with pytest.raises(RequestError):
        provider.fetch_fare(stale, Credentials(api_key="k"))
    provider.search.assert_not_called()
    mock_get.assert_not_called()


def test_build_fare_rejects_negative_price(make_route):
    with pytest.raises(DecodeError) as info:
        build_fare(make_route(), cand(-1), False)
    assert info.value.field == "price"


def test_default_denylist_has_chinese_names():
    denylist = build_denylist()
    for name in ("中國國際航空", "中國東方航空", "中國南方航空", "海南航空", "華夏航空"):
        assert name.casefold() in denylist
    chosen, fallback = select_cheapest(
        [cand(100, carriers=("中國南方航空",)), cand(300, carriers=("中華航空",))], denylist
    )
    assert chosen.price == 300
    assert not fallback
