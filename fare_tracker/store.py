from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime
from typing import Callable, Dict, List, Mapping, Optional

from pydantic import TypeAdapter

from .kvstore import KeyValueStore
from .models import Fare, PriceHistory, Route, default_routes
from .price_change import PriceChange

logger = logging.getLogger(__name__)

ROUTES_KEY = "monitored_routes"
HISTORY_PREFIX = "price_history:"
LAST_UPDATE_KEY = "last_update"
PROVIDER_KEY = "api_provider"
ERRORS_KEY = "refresh_errors"

_routes_adapter = TypeAdapter(List[Route])


class PriceStore:
    """Route catalog and price histories kept in a :class:`KeyValueStore`.

    Every read goes to the backing store, so a viewer process sees whatever
    the refreshing process committed last.
    """

    def __init__(self, kv: KeyValueStore, *, today: Callable[[], date] = date.today) -> None:
        self.kv = kv
        self._today = today

    # ── routes ────────────────────────────────────────────────

    def routes(self) -> List[Route]:
        raw = self.kv.get(ROUTES_KEY)
        if raw is None:
            routes = default_routes(self._today())
            logger.info("No routes stored, seeding %d default routes", len(routes))
            self.save_routes(routes)
            return routes
        return self._redate_defaults(_routes_adapter.validate_json(raw))

    def _redate_defaults(self, routes: List[Route]) -> List[Route]:
        """Move default routes whose outbound date has passed to the current
        default dates.

        Id and enabled flag are kept so the price history stays linked. Routes
        that are not part of the default catalog are left alone.
        """
        today = self._today()
        defaults = {(r.origin, r.destination): r for r in default_routes(today)}
        redated = []
        for idx, route in enumerate(routes):
            fresh = defaults.get((route.origin, route.destination))
            if fresh is None or route.outbound_date >= today:
                continue
            routes[idx] = route.model_copy(
                update={"outbound_date": fresh.outbound_date, "return_date": fresh.return_date}
            )
            redated.append(route.display_name)
        if redated:
            logger.info("Moved past-dated default routes to new dates: %s", ", ".join(redated))
            self.save_routes(routes)
        return routes

    def save_routes(self, routes: List[Route]) -> None:
        self.kv.set(ROUTES_KEY, _routes_adapter.dump_json(routes).decode())

    def get_route(self, route_id: uuid.UUID) -> Optional[Route]:
        return next((r for r in self.routes() if r.id == route_id), None)

    def find_route(self, ref: str) -> Route:
        """Look a route up by full id, unique id prefix or destination code."""
        ref = ref.strip().lower()
        routes = self.routes()
        matches = [r for r in routes if str(r.id) == ref]
        if not matches:
            matches = [r for r in routes if str(r.id).startswith(ref)]
        if not matches:
            matches = [r for r in routes if r.destination.lower() == ref]
        if not matches:
            raise LookupError(f"No route matches {ref!r}")
        if len(matches) > 1:
            raise LookupError(f"{ref!r} matches {len(matches)} routes")
        return matches[0]

    def upsert_route(self, route: Route) -> None:
        routes = self.routes()
        for idx, existing in enumerate(routes):
            if existing.id == route.id:
                routes[idx] = route
                break
        else:
            routes.append(route)
        self.save_routes(routes)

    def set_enabled(self, route_id: uuid.UUID, enabled: bool) -> Route:
        route = self.get_route(route_id)
        if route is None:
            raise LookupError(f"Unknown route {route_id}")
        updated = route.model_copy(update={"enabled": enabled})
        self.upsert_route(updated)
        return updated

    def delete_route(self, route_id: uuid.UUID) -> None:
        routes = [r for r in self.routes() if r.id != route_id]
        self.save_routes(routes)
        self.kv.delete(f"{HISTORY_PREFIX}{route_id}")
        logger.info("Deleted route %s and its price history", route_id)

    # ── price histories ───────────────────────────────────────

    def history(self, route_id: uuid.UUID) -> PriceHistory:
        raw = self.kv.get(f"{HISTORY_PREFIX}{route_id}")
        if raw is None:
            return PriceHistory(route_id=route_id)
        return PriceHistory.model_validate_json(raw)

    def histories(self) -> Dict[uuid.UUID, PriceHistory]:
        return {r.id: self.history(r.id) for r in self.routes()}

    def add_fare(self, fare: Fare) -> PriceHistory:
        history = self.history(fare.route_id)
        history.add(fare)
        self.kv.set(f"{HISTORY_PREFIX}{fare.route_id}", history.model_dump_json())
        return history

    def latest_fare(self, route_id: uuid.UUID) -> Optional[Fare]:
        return self.history(route_id).latest

    def previous_fare(self, route_id: uuid.UUID) -> Optional[Fare]:
        return self.history(route_id).previous

    def price_change(self, route_id: uuid.UUID) -> Optional[PriceChange]:
        return PriceChange.from_history(self.history(route_id))

    # ── bookkeeping ───────────────────────────────────────────

    def last_refreshed_at(self) -> Optional[datetime]:
        raw = self.kv.get(LAST_UPDATE_KEY)
        return datetime.fromisoformat(raw) if raw else None

    def mark_refreshed(self, when: datetime) -> None:
        self.kv.set(LAST_UPDATE_KEY, when.isoformat())

    def selected_provider(self, default: str) -> str:
        return self.kv.get(PROVIDER_KEY) or default

    def select_provider(self, name: str) -> None:
        self.kv.set(PROVIDER_KEY, name)

    def refresh_errors(self) -> Dict[str, str]:
        raw = self.kv.get(ERRORS_KEY)
        return json.loads(raw) if raw else {}

    def record_refresh_errors(self, errors: Mapping[uuid.UUID, str]) -> None:
        self.kv.set(ERRORS_KEY, json.dumps({str(k): v for k, v in errors.items()}))

    def reset(self) -> None:
        """Drop every history and restore the default routes."""
        for key in self.kv.keys(HISTORY_PREFIX):
            self.kv.delete(key)
        self.kv.delete(ERRORS_KEY)
        self.save_routes(default_routes(self._today()))
        logger.info("Store reset to default routes")


__all__ = ["PriceStore"]
