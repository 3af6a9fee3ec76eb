"""Data models used throughout the project."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Number of fares kept per route.
MAX_HISTORY = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_price(amount: float, currency: str) -> str:
    return f"{currency} {amount:,.0f}"


class Route(BaseModel):
    """One monitored round trip."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    origin: str
    destination: str
    destination_name: str = ""
    outbound_date: date
    return_date: date
    enabled: bool = True

    @field_validator("origin", "destination")
    @classmethod
    def _code_non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("airport code must be a non-empty string")
        return v.strip().upper()

    @model_validator(mode="after")
    def _return_after_outbound(self) -> "Route":
        if self.return_date <= self.outbound_date:
            raise ValueError("return_date must be after outbound_date")
        return self

    @property
    def display_name(self) -> str:
        return f"{self.origin} → {self.destination}"

    def search_url(self, currency: str = "TWD", locale: str = "zh-TW") -> str:
        """Public Google Flights link for this round trip."""
        out = self.outbound_date.isoformat()
        ret = self.return_date.isoformat()
        flt = (
            f"{self.origin}.{self.destination}.{out}"
            f"*{self.destination}.{self.origin}.{ret}"
        )
        return (
            f"https://www.google.com/travel/flights?hl={locale}"
            f"#flt={flt};c:{currency}"
        )


class Fare(BaseModel):
    """A single priced itinerary observed for a route."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    route_id: uuid.UUID
    price: float = Field(ge=0)
    currency: str = "TWD"
    carrier: str
    duration_minutes: int = Field(ge=0)
    stops: int = Field(ge=0)
    fetched_at: datetime = Field(default_factory=utcnow)
    is_fallback: bool = False

    @property
    def formatted_price(self) -> str:
        return format_price(self.price, self.currency)

    @property
    def formatted_duration(self) -> str:
        hours, minutes = divmod(self.duration_minutes, 60)
        if minutes == 0:
            return f"{hours}h"
        return f"{hours}h {minutes}m"


class PriceHistory(BaseModel):
    """Bounded, insertion-ordered list of fares for one route."""

    route_id: uuid.UUID
    fares: List[Fare] = Field(default_factory=list)

    def add(self, fare: Fare) -> None:
        if fare.route_id != self.route_id:
            raise ValueError(
                f"fare for route {fare.route_id} added to history of {self.route_id}"
            )
        self.fares.append(fare)
        if len(self.fares) > MAX_HISTORY:
            self.fares = self.fares[-MAX_HISTORY:]

    def _by_recency(self) -> List[Fare]:
        return sorted(self.fares, key=lambda f: f.fetched_at, reverse=True)

    @property
    def latest(self) -> Optional[Fare]:
        if not self.fares:
            return None
        return max(self.fares, key=lambda f: f.fetched_at)

    @property
    def previous(self) -> Optional[Fare]:
        ordered = self._by_recency()
        return ordered[1] if len(ordered) > 1 else None

    def __len__(self) -> int:
        return len(self.fares)


# ────────────────────────────────────────────────────────────────
# Default catalog
# ────────────────────────────────────────────────────────────────

_DEFAULT_DESTINATIONS = [
    ("FCO", "Rome"),
    ("CDG", "Paris"),
    ("ZRH", "Zurich"),
    ("LHR", "London"),
    ("KEF", "Reykjavik"),
]


def default_routes(today: date | None = None) -> List[Route]:
    """Routes monitored on first run: Taipei to five European cities."""
    today = today or date.today()
    outbound = today + timedelta(days=30)
    return_date = today + timedelta(days=37)
    return [
        Route(
            origin="TPE",
            destination=code,
            destination_name=name,
            outbound_date=outbound,
            return_date=return_date,
        )
        for code, name in _DEFAULT_DESTINATIONS
    ]


__all__ = [
    "MAX_HISTORY",
    "Route",
    "Fare",
    "PriceHistory",
    "default_routes",
    "format_price",
    "utcnow",
]
