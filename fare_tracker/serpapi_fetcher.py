from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from .fare_provider import (
    AuthenticationError,
    Candidate,
    Credentials,
    FareProvider,
    NoFaresFoundError,
    decode_error_from,
    raise_for_status,
)
from .models import Route

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"


# ────────────────────────────────────────────────────────────────
# Response schema
# ────────────────────────────────────────────────────────────────


class SerpAirport(BaseModel):
    id: str
    name: str = ""
    time: Optional[str] = None


class SerpLeg(BaseModel):
    airline: str
    flight_number: Optional[str] = None
    departure_airport: SerpAirport
    arrival_airport: SerpAirport
    duration: int = 0


class SerpLayover(BaseModel):
    id: str
    name: str = ""
    duration: int = 0


class SerpItinerary(BaseModel):
    price: Optional[int] = Field(None, ge=0)
    total_duration: int = 0
    flights: List[SerpLeg]
    layovers: List[SerpLayover] = []


class SerpResponse(BaseModel):
    best_flights: List[SerpItinerary] = []
    other_flights: List[SerpItinerary] = []
    error: Optional[str] = None


# ────────────────────────────────────────────────────────────────
# Provider
# ────────────────────────────────────────────────────────────────


class SerpApiFareProvider(FareProvider):
    """Google Flights results through the SerpApi metasearch API."""

    name = "serpapi"
    required_credentials = ("api_key",)

    def __init__(self, *, base_url: str = SERPAPI_URL, **kwargs) -> None:
        kwargs.setdefault("max_parallel", 5)
        super().__init__(**kwargs)
        self.base_url = base_url

    @classmethod
    def settings_kwargs(cls, settings) -> dict:
        kwargs = super().settings_kwargs(settings)
        kwargs["max_parallel"] = settings.max_parallel
        return kwargs

    def build_params(self, route: Route, api_key: str) -> dict:
        return {
            "engine": "google_flights",
            "departure_id": route.origin,
            "arrival_id": route.destination,
            "outbound_date": route.outbound_date.strftime("%Y-%m-%d"),
            "return_date": route.return_date.strftime("%Y-%m-%d"),
            "currency": self.currency,
            "hl": self.locale,
            "type": "1",
            "api_key": api_key,
        }

    def search(self, route: Route, credentials: Credentials) -> List[Candidate]:
        resp = self._get(self.base_url, params=self.build_params(route, credentials.api_key))
        raise_for_status(resp)

        try:
            payload = SerpResponse.model_validate(resp.json())
        except ValueError as exc:  # ValidationError and JSONDecodeError
            raise decode_error_from(exc) from exc

        itineraries = payload.best_flights + payload.other_flights
        if payload.error and not itineraries:
            if "api key" in payload.error.lower():
                raise AuthenticationError(payload.error)
            raise NoFaresFoundError(payload.error)

        candidates = [
            self._to_candidate(it) for it in itineraries if it.price is not None and it.flights
        ]
        logger.debug(
            "serpapi: %s returned %d itineraries (%d priced)",
            route.display_name,
            len(itineraries),
            len(candidates),
        )
        return candidates

    def _to_candidate(self, it: SerpItinerary) -> Candidate:
        carriers: list[str] = []
        for leg in it.flights:
            carriers.append(leg.airline)
            # "BR 87" -> "BR"
            code = (leg.flight_number or "").split()[:1]
            carriers.extend(code)
        layovers = [lay.id for lay in it.layovers]
        layovers += [leg.arrival_airport.id for leg in it.flights[:-1]]
        return Candidate(
            price=float(it.price),
            currency=self.currency,
            carrier=it.flights[0].airline,
            duration_minutes=it.total_duration,
            stops=len(it.flights) - 1,
            carriers=tuple(carriers),
            layover_airports=tuple(dict.fromkeys(layovers)),
        )


__all__ = ["SerpApiFareProvider", "SerpResponse", "SERPAPI_URL"]
