"""Common contract for fare backends.

Every backend turns a :class:`~fare_tracker.models.Route` into a list of
:class:`Candidate` itineraries; :func:`select_cheapest` then applies the
denylist and picks the fare that gets stored.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, ClassVar, FrozenSet, Iterable, List, Optional, Sequence, Tuple

import requests
from pydantic import ValidationError

from .models import Fare, Route, utcnow

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)

FALLBACK_MARK = "⚠️"


# ────────────────────────────────────────────────────────────────
# Errors
# ────────────────────────────────────────────────────────────────


class FareProviderError(RuntimeError):
    """Base class for every per-route fetch failure."""


class RequestError(FareProviderError):
    """The request could not be built; nothing was sent."""


class AuthenticationError(FareProviderError):
    """Credentials were rejected or are missing."""


class RateLimitError(FareProviderError):
    """The backend asked us to slow down."""


class TransportError(FareProviderError):
    """Timeout, connection failure or unexpected HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DecodeError(FareProviderError):
    """The response did not match the expected schema."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(f"{message} (field: {field})" if field else message)
        self.field = field


class NoFaresFoundError(FareProviderError):
    """The backend returned no itineraries at all."""


def raise_for_status(resp: requests.Response) -> None:
    """Map an HTTP status onto the error taxonomy."""
    status = resp.status_code
    if 200 <= status < 300:
        return
    snippet = (resp.text or "")[:120]
    if status in (401, 403):
        raise AuthenticationError(f"HTTP {status} – {snippet}")
    if status == 429:
        raise RateLimitError(f"HTTP {status} – {snippet}")
    raise TransportError(f"HTTP {status} – {snippet}", status_code=status)


def decode_error_from(exc: Exception) -> DecodeError:
    """Build a :class:`DecodeError` naming the first offending field."""
    errors = getattr(exc, "errors", None)
    field_name = None
    if callable(errors):
        details = errors()
        if details:
            field_name = ".".join(str(p) for p in details[0].get("loc", ()))
    return DecodeError(f"unexpected response: {exc.__class__.__name__}", field_name)


# ────────────────────────────────────────────────────────────────
# Credentials and candidates
# ────────────────────────────────────────────────────────────────


@dataclass(slots=True)
class Credentials:
    api_key: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None

    def missing(self, required: Iterable[str]) -> List[str]:
        return [name for name in required if not getattr(self, name)]


@dataclass(slots=True)
class Candidate:
    """One itinerary returned by a backend, before selection."""

    price: float
    currency: str
    carrier: str
    duration_minutes: int
    stops: int
    carriers: Tuple[str, ...] = ()
    layover_airports: Tuple[str, ...] = ()


# Mainland-China carriers (English names, Traditional Chinese names as returned
# for zh-TW searches, IATA codes) and transit hubs.
DEFAULT_DENYLIST: FrozenSet[str] = frozenset(
    {
        "Air China", "中國國際航空", "CA",
        "China Eastern", "中國東方航空", "MU",
        "China Southern", "中國南方航空", "CZ",
        "Hainan Airlines", "海南航空", "HU",
        "Xiamen Airlines", "廈門航空", "MF",
        "Shenzhen Airlines", "深圳航空", "ZH",
        "Sichuan Airlines", "四川航空", "3U",
        "Spring Airlines", "春秋航空", "9C",
        "Juneyao Airlines", "吉祥航空", "HO",
        "Shandong Airlines", "山東航空", "SC",
        "Lucky Air", "祥鵬航空", "8L",
        "Tibet Airlines", "西藏航空", "TV",
        "Okay Airways", "奧凱航空", "BK",
        "9 Air", "九元航空", "AQ",
        "Beijing Capital Airlines", "首都航空", "JD",
        "Loong Air", "長龍航空", "GJ",
        "Ruili Airlines", "瑞麗航空", "DR",
        "Donghai Airlines", "東海航空", "DZ",
        "Urumqi Air", "烏魯木齊航空", "UQ",
        "Fuzhou Airlines", "福州航空", "FU",
        "Colorful Guizhou Airlines", "多彩貴州航空", "GY",
        "Qingdao Airlines", "青島航空", "QW",
        "West Air", "西部航空", "PN",
        "Chengdu Airlines", "成都航空", "EU",
        "Kunming Airlines", "昆明航空", "KY",
        "Grand China Air", "大新華航空", "CN",
        "Hebei Airlines", "河北航空", "NS",
        "Jiangxi Air", "江西航空", "RY",
        "China United Airlines", "中國聯合航空", "KN",
        "China Express Airlines", "華夏航空", "G5",
        "PEK", "PKX", "PVG", "SHA", "CAN", "CTU", "TFU",
        "SZX", "XIY", "KMG", "HGH", "WUH", "CKG", "XMN",
    }
)


def build_denylist(extra: Iterable[str] = ()) -> FrozenSet[str]:
    """Case-folded union of the default denylist and *extra*."""
    return frozenset(x.casefold() for x in (*DEFAULT_DENYLIST, *extra) if x)


def is_denylisted(candidate: Candidate, denylist: FrozenSet[str]) -> bool:
    names = (*candidate.carriers, *candidate.layover_airports)
    return any(n and n.casefold() in denylist for n in names)


def select_cheapest(
    candidates: Sequence[Candidate], denylist: FrozenSet[str]
) -> Tuple[Candidate, bool]:
    """Return the cheapest allowed candidate and whether it is a fallback.

    When every candidate is denylisted the cheapest one overall is
    returned with the fallback flag set.
    """
    if not candidates:
        raise NoFaresFoundError("no itineraries returned")
    allowed = [c for c in candidates if not is_denylisted(c, denylist)]
    if allowed:
        return min(allowed, key=lambda c: c.price), False
    return min(candidates, key=lambda c: c.price), True


def validate_route(route: Route, today: Optional[date] = None) -> None:
    today = today or date.today()
    if not route.origin or not route.destination:
        raise RequestError("origin and destination are required")
    if route.origin == route.destination:
        raise RequestError(f"origin equals destination ({route.origin})")
    if route.return_date <= route.outbound_date:
        raise RequestError(
            f"return date {route.return_date} is not after {route.outbound_date}"
        )
    if route.outbound_date < today:
        raise RequestError(f"outbound date {route.outbound_date} is in the past")


def build_fare(route: Route, candidate: Candidate, fallback: bool) -> Fare:
    carrier = candidate.carrier or "Unknown"
    if fallback:
        carrier = f"{carrier} {FALLBACK_MARK}"
    try:
        return Fare(
            route_id=route.id,
            price=candidate.price,
            currency=candidate.currency,
            carrier=carrier,
            duration_minutes=max(candidate.duration_minutes, 0),
            stops=max(candidate.stops, 0),
            fetched_at=utcnow(),
            is_fallback=fallback,
        )
    except ValidationError as exc:
        raise decode_error_from(exc) from exc


# ────────────────────────────────────────────────────────────────
# Provider base
# ────────────────────────────────────────────────────────────────


class FareProvider(abc.ABC):
    """Fetches the cheapest qualifying fare for a route."""

    name: ClassVar[str]
    required_credentials: ClassVar[Tuple[str, ...]] = ()

    def __init__(
        self,
        *,
        currency: str = "TWD",
        locale: str = "zh-TW",
        timeout: float = 30.0,
        denylist: Iterable[str] = (),
        max_parallel: int = 1,
        request_delay_s: float = 0.0,
    ) -> None:
        self.currency = currency
        self.locale = locale
        self.timeout = timeout
        self.denylist = build_denylist(denylist)
        self.max_parallel = max_parallel
        self.request_delay_s = request_delay_s

    @classmethod
    def settings_kwargs(cls, settings: "Settings") -> dict:
        return dict(
            currency=settings.currency,
            locale=settings.locale,
            timeout=settings.request_timeout,
            denylist=settings.denylist,
        )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "FareProvider":
        return cls(**cls.settings_kwargs(settings))

    def fetch_fare(self, route: Route, credentials: Credentials) -> Fare:
        validate_route(route)
        missing = credentials.missing(self.required_credentials)
        if missing:
            raise AuthenticationError(
                f"{self.name}: missing credentials {', '.join(missing)}"
            )
        candidates = self.search(route, credentials)
        candidate, fallback = select_cheapest(candidates, self.denylist)
        if fallback:
            logger.warning(
                "%s: only denylisted itineraries for %s, using %s as fallback",
                self.name,
                route.display_name,
                candidate.carrier,
            )
        logger.info(
            "%s: %s %.0f %s (%s, %d candidates)",
            self.name,
            route.display_name,
            candidate.price,
            candidate.currency,
            candidate.carrier,
            len(candidates),
        )
        return build_fare(route, candidate, fallback)

    @abc.abstractmethod
    def search(self, route: Route, credentials: Credentials) -> List[Candidate]:
        """Return every itinerary the backend offers for *route*."""

    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            return requests.get(url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise TransportError(f"timeout after {self.timeout}s: {url}") from exc
        except requests.RequestException as exc:
            raise TransportError(str(exc)) from exc

    def _post(self, url: str, **kwargs) -> requests.Response:
        try:
            return requests.post(url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise TransportError(f"timeout after {self.timeout}s: {url}") from exc
        except requests.RequestException as exc:
            raise TransportError(str(exc)) from exc


__all__ = [
    "FareProvider",
    "FareProviderError",
    "RequestError",
    "AuthenticationError",
    "RateLimitError",
    "TransportError",
    "DecodeError",
    "NoFaresFoundError",
    "Credentials",
    "Candidate",
    "DEFAULT_DENYLIST",
    "FALLBACK_MARK",
    "build_denylist",
    "is_denylisted",
    "select_cheapest",
    "validate_route",
    "build_fare",
    "raise_for_status",
    "decode_error_from",
]
