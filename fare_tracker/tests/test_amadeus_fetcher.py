from unittest.mock import Mock, patch

import pytest

from fare_tracker.amadeus_fetcher import AMADEUS_TEST_URL, AmadeusFareProvider, parse_duration
from fare_tracker.fare_provider import AuthenticationError, Credentials, DecodeError

CREDS = Credentials(client_id="id", client_secret="secret")


def response(status=200, payload=None):
    resp = Mock(status_code=status, text="")
    resp.json.return_value = payload
    return resp


def token(value="tok-1", expires_in=1799):
    return response(payload={"access_token": value, "expires_in": expires_in, "token_type": "Bearer"})


def segment(carrier, dep, arr, operating=None):
    seg = {
        "departure": {"iataCode": dep},
        "arrival": {"iataCode": arr},
        "carrierCode": carrier,
        "number": "100",
    }
    if operating:
        seg["operating"] = {"carrierCode": operating}
    return seg


def offers_payload():
    return {
        "data": [
            {
                "id": "1",
                "price": {"currency": "TWD", "total": "25800.00"},
                "itineraries": [
                    {"duration": "PT15H5M", "segments": [segment("TK", "TPE", "IST"), segment("TK", "IST", "FCO")]},
                    {"duration": "PT16H", "segments": [segment("TK", "FCO", "IST"), segment("TK", "IST", "TPE")]},
                ],
            },
            {
                "id": "2",
                "price": {"currency": "TWD", "total": "19900.00"},
                "itineraries": [
                    {"duration": "PT20H", "segments": [segment("BR", "TPE", "PVG", operating="MU"), segment("MU", "PVG", "FCO")]},
                ],
            },
        ],
        "dictionaries": {"carriers": {"TK": "TURKISH AIRLINES", "MU": "CHINA EASTERN", "BR": "EVA AIR"}},
    }


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.parametrize(
    "value,minutes",
    [("PT14H30M", 870), ("PT2H", 120), ("PT45M", 45), ("P1DT2H", 1560), ("", 0), (None, 0), ("garbage", 0)],
)
def test_parse_duration(value, minutes):
    assert parse_duration(value) == minutes


@patch("requests.get")
@patch("requests.post")
def test_fetch_fare(mock_post, mock_get, make_route):
    mock_post.return_value = token()
    mock_get.return_value = response(payload=offers_payload())
    route = make_route()

    fare = AmadeusFareProvider().fetch_fare(route, CREDS)

    assert fare.price == 25800
    assert fare.carrier == "TURKISH AIRLINES"
    assert fare.duration_minutes == 905
    assert fare.stops == 1
    assert not fare.is_fallback

    post_args, post_kwargs = mock_post.call_args
    assert post_args[0] == f"{AMADEUS_TEST_URL}/v1/security/oauth2/token"
    assert post_kwargs["data"]["grant_type"] == "client_credentials"

    get_args, get_kwargs = mock_get.call_args
    assert get_args[0] == f"{AMADEUS_TEST_URL}/v2/shopping/flight-offers"
    assert get_kwargs["headers"]["Authorization"] == "Bearer tok-1"
    params = get_kwargs["params"]
    assert params["originLocationCode"] == "TPE"
    assert params["destinationLocationCode"] == "FCO"
    assert params["returnDate"] == route.return_date.isoformat()
    assert params["adults"] == 1


@patch("requests.get")
@patch("requests.post")
def test_operating_carrier_and_hub_are_checked(mock_post, mock_get, make_route):
    mock_post.return_value = token()
    mock_get.return_value = response(payload=offers_payload())
    candidates = AmadeusFareProvider().search(make_route(), CREDS)
    cheap = next(c for c in candidates if c.price == 19900)
    assert "MU" in cheap.carriers
    assert "CHINA EASTERN" in cheap.carriers
    assert cheap.layover_airports == ("PVG",)


@patch("requests.get")
@patch("requests.post")
def test_token_is_reused_until_expiry(mock_post, mock_get, make_route):
    clock = FakeClock()
    mock_post.side_effect = [token("tok-1", expires_in=600), token("tok-2", expires_in=600)]
    mock_get.return_value = response(payload=offers_payload())
    provider = AmadeusFareProvider(clock=clock)

    provider.fetch_fare(make_route(), CREDS)
    clock.now += 500
    provider.fetch_fare(make_route(), CREDS)
    assert mock_post.call_count == 1

    # 600s lifetime minus the 60s margin
    clock.now += 41
    provider.fetch_fare(make_route(), CREDS)
    assert mock_post.call_count == 2
    assert mock_get.call_args[1]["headers"]["Authorization"] == "Bearer tok-2"


@patch("requests.get")
@patch("requests.post")
def test_reauthenticates_once_on_401(mock_post, mock_get, make_route):
    mock_post.side_effect = [token("stale"), token("fresh")]
    mock_get.side_effect = [response(status=401), response(payload=offers_payload())]

    fare = AmadeusFareProvider().fetch_fare(make_route(), CREDS)

    assert fare.price == 25800
    assert mock_post.call_count == 2
    assert mock_get.call_args[1]["headers"]["Authorization"] == "Bearer fresh"


@patch("requests.get")
@patch("requests.post")
def test_second_401_is_an_auth_error(mock_post, mock_get, make_route):
    mock_post.side_effect = [token("a"), token("b")]
    mock_get.return_value = response(status=401)
    with pytest.raises(AuthenticationError):
        AmadeusFareProvider().fetch_fare(make_route(), CREDS)
    assert mock_get.call_count == 2


@patch("requests.get")
@patch("requests.post")
def test_rejected_token_request(mock_post, mock_get, make_route):
    mock_post.return_value = response(status=401)
    with pytest.raises(AuthenticationError):
        AmadeusFareProvider().fetch_fare(make_route(), CREDS)
    mock_get.assert_not_called()


@patch("requests.get")
@patch("requests.post")
def test_malformed_offer(mock_post, mock_get, make_route):
    mock_post.return_value = token()
    payload = offers_payload()
    del payload["data"][0]["price"]
    mock_get.return_value = response(payload=payload)
    with pytest.raises(DecodeError) as info:
        AmadeusFareProvider().fetch_fare(make_route(), CREDS)
    assert info.value.field == "data.0.price"


def test_missing_client_secret(make_route):
    with pytest.raises(AuthenticationError):
        AmadeusFareProvider().fetch_fare(make_route(), Credentials(client_id="id"))


@patch("requests.get")
@patch("requests.post")
def test_negative_total_is_a_decode_error(mock_post, mock_get, make_route):
    mock_post.return_value = token()
    payload = offers_payload()
    payload["data"][1]["price"]["total"] = "-5.00"
    mock_get.return_value = response(payload=payload)
    with pytest.raises(DecodeError) as info:
        AmadeusFareProvider().fetch_fare(make_route(), CREDS)
    assert info.value.field == "data.1.price.total"
