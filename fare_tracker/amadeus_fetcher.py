from __future__ import annotations

import logging
import re
import threading
import time
from typing import Callable, Dict, List, Optional

import requests
from pydantic import BaseModel, Field

from .fare_provider import (
    AuthenticationError,
    Candidate,
    Credentials,
    FareProvider,
    decode_error_from,
    raise_for_status,
)
from .models import Route

logger = logging.getLogger(__name__)

AMADEUS_TEST_URL = "https://test.api.amadeus.com"
# Seconds shaved off the reported token lifetime.
TOKEN_EXPIRY_MARGIN_S = 60
MAX_OFFERS = 20

_DURATION_RE = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?)?$")


def parse_duration(value: Optional[str]) -> int:
    """ISO-8601 duration (``PT14H30M``, ``P1DT2H``) to minutes."""
    if not value:
        return 0
    match = _DURATION_RE.match(value.strip())
    if not match:
        return 0
    days, hours, minutes = (int(g) if g else 0 for g in match.groups())
    return days * 1440 + hours * 60 + minutes


# ────────────────────────────────────────────────────────────────
# Response schema
# ────────────────────────────────────────────────────────────────


class AmadeusToken(BaseModel):
    access_token: str
    expires_in: int
    token_type: str = "Bearer"


class AmadeusLocation(BaseModel):
    iataCode: str
    at: Optional[str] = None


class AmadeusOperating(BaseModel):
    carrierCode: Optional[str] = None


class AmadeusSegment(BaseModel):
    departure: AmadeusLocation
    arrival: AmadeusLocation
    carrierCode: str
    number: Optional[str] = None
    duration: Optional[str] = None
    operating: Optional[AmadeusOperating] = None


class AmadeusItinerary(BaseModel):
    duration: Optional[str] = None
    segments: List[AmadeusSegment]


class AmadeusPrice(BaseModel):
    currency: str
    total: float = Field(ge=0)


class AmadeusOffer(BaseModel):
    id: str
    price: AmadeusPrice
    itineraries: List[AmadeusItinerary]


class AmadeusDictionaries(BaseModel):
    carriers: Dict[str, str] = {}


class AmadeusOffersResponse(BaseModel):
    data: List[AmadeusOffer] = []
    dictionaries: Optional[AmadeusDictionaries] = None


# ────────────────────────────────────────────────────────────────
# Provider
# ────────────────────────────────────────────────────────────────


class AmadeusFareProvider(FareProvider):
    """Amadeus Self-Service flight-offer search (OAuth2 client credentials).

    The bearer token is shared by all routes of a refresh and re-used until
    shortly before its reported expiry.
    """

    name = "amadeus"
    required_credentials = ("client_id", "client_secret")

    def __init__(
        self,
        *,
        base_url: str = AMADEUS_TEST_URL,
        clock: Callable[[], float] = time.monotonic,
        **kwargs,
    ) -> None:
        kwargs.setdefault("max_parallel", 1)
        kwargs.setdefault("request_delay_s", 0.3)
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self._clock = clock
        self._token_lock = threading.Lock()
        self._token: Optional[str] = None
        self._token_client: Optional[str] = None
        self._token_expires_at = 0.0

    @classmethod
    def settings_kwargs(cls, settings) -> dict:
        kwargs = super().settings_kwargs(settings)
        kwargs.update(
            base_url=settings.amadeus_base_url,
            request_delay_s=settings.request_delay_s,
        )
        return kwargs

    # ── token handling ────────────────────────────────────────

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._token = None
            self._token_expires_at = 0.0

    def access_token(self, credentials: Credentials) -> str:
        with self._token_lock:
            now = self._clock()
            if (
                self._token
                and self._token_client == credentials.client_id
                and now < self._token_expires_at
            ):
                return self._token

            resp = self._post(
                f"{self.base_url}/v1/security/oauth2/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": credentials.client_id,
                    "client_secret": credentials.client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            if resp.status_code in (400, 401, 403):
                logger.error(
                    "amadeus: token request failed HTTP %s – %s",
                    resp.status_code,
                    (resp.text or "")[:200],
                )
                raise AuthenticationError(
                    f"amadeus: token request rejected (HTTP {resp.status_code})"
                )
            raise_for_status(resp)
            try:
                token = AmadeusToken.model_validate(resp.json())
            except ValueError as exc:
                raise decode_error_from(exc) from exc

            self._token = token.access_token
            self._token_client = credentials.client_id
            self._token_expires_at = now + max(
                token.expires_in - TOKEN_EXPIRY_MARGIN_S, 0
            )
            logger.info("amadeus: token obtained, expires in %ss", token.expires_in)
            return self._token

    # ── search ────────────────────────────────────────────────

    def build_params(self, route: Route) -> dict:
        return {
            "originLocationCode": route.origin,
            "destinationLocationCode": route.destination,
            "departureDate": route.outbound_date.strftime("%Y-%m-%d"),
            "returnDate": route.return_date.strftime("%Y-%m-%d"),
            "adults": 1,
            "currencyCode": self.currency,
            "max": MAX_OFFERS,
        }

    def _search_request(self, route: Route, token: str) -> requests.Response:
        return self._get(
            f"{self.base_url}/v2/shopping/flight-offers",
            params=self.build_params(route),
            headers={"Authorization": f"Bearer {token}"},
        )

    def search(self, route: Route, credentials: Credentials) -> List[Candidate]:
        resp = self._search_request(route, self.access_token(credentials))
        if resp.status_code == 401:
            logger.info("amadeus: token rejected for %s, re-authenticating", route.display_name)
            self.invalidate_token()
            resp = self._search_request(route, self.access_token(credentials))
            if resp.status_code == 401:
                self.invalidate_token()
        raise_for_status(resp)

        try:
            payload = AmadeusOffersResponse.model_validate(resp.json())
        except ValueError as exc:
            raise decode_error_from(exc) from exc

        names = payload.dictionaries.carriers if payload.dictionaries else {}
        logger.debug("amadeus: %s returned %d offers", route.display_name, len(payload.data))
        return [
            self._to_candidate(offer, names)
            for offer in payload.data
            if offer.itineraries and offer.itineraries[0].segments
        ]

    @staticmethod
    def _to_candidate(offer: AmadeusOffer, names: Dict[str, str]) -> Candidate:
        carriers: list[str] = []
        layovers: list[str] = []
        for itinerary in offer.itineraries:
            for seg in itinerary.segments:
                carriers.append(seg.carrierCode)
                if seg.operating and seg.operating.carrierCode:
                    carriers.append(seg.operating.carrierCode)
            layovers += [seg.arrival.iataCode for seg in itinerary.segments[:-1]]
        carriers += [names[c] for c in carriers if c in names]

        outbound = offer.itineraries[0]
        first_code = outbound.segments[0].carrierCode
        return Candidate(
            price=offer.price.total,
            currency=offer.price.currency,
            carrier=names.get(first_code, first_code),
            duration_minutes=parse_duration(outbound.duration),
            stops=len(outbound.segments) - 1,
            carriers=tuple(dict.fromkeys(carriers)),
            layover_airports=tuple(dict.fromkeys(layovers)),
        )


__all__ = ["AmadeusFareProvider", "parse_duration", "TOKEN_EXPIRY_MARGIN_S"]
