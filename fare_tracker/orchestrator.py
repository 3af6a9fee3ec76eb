"""One price-refresh sweep over every enabled route."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Union

import requests

from .credentials import SecretStore, load_credentials
from .fare_provider import Credentials, FareProvider, FareProviderError
from .models import Fare, Route, utcnow
from .notifier import Notifier, PriceDropNotification
from .store import PriceStore

logger = logging.getLogger(__name__)

FetchOutcome = Union[Fare, Exception]


@dataclass
class RefreshResult:
    started_at: datetime
    finished_at: Optional[datetime] = None
    fares: Dict[uuid.UUID, Fare] = field(default_factory=dict)
    errors: Dict[uuid.UUID, str] = field(default_factory=dict)
    notifications: List[PriceDropNotification] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.skipped_reason is None and not self.errors


class RefreshOrchestrator:
    """Fetch, store, diff and notify.

    Only one sweep runs at a time; a call made while another is in flight
    returns ``None`` immediately.
    """

    def __init__(
        self,
        store: PriceStore,
        provider: FareProvider,
        secrets: SecretStore,
        notifier: Notifier,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.provider = provider
        self.secrets = secrets
        self.notifier = notifier
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def refresh_all(self) -> Optional[RefreshResult]:
        if not self._lock.acquire(blocking=False):
            logger.info("Refresh already running, ignoring request")
            return None
        try:
            return self._refresh()
        finally:
            self._lock.release()

    def _refresh(self) -> RefreshResult:
        result = RefreshResult(started_at=self._clock())
        routes = self.store.routes()
        enabled = [r for r in routes if r.enabled]
        logger.info(
            "Refreshing with %s: %d routes, %d enabled",
            self.provider.name,
            len(routes),
            len(enabled),
        )

        credentials = load_credentials(self.secrets)
        missing = credentials.missing(self.provider.required_credentials)
        if missing:
            result.skipped_reason = f"missing credentials: {', '.join(missing)}"
            logger.error("No %s credentials configured (%s)", self.provider.name, ", ".join(missing))
            result.finished_at = self._clock()
            return result

        previous = {r.id: self.store.latest_fare(r.id) for r in enabled}

        outcomes = self._fetch_all(enabled, credentials)

        for route in enabled:
            outcome = outcomes[route.id]
            if isinstance(outcome, Exception):
                result.errors[route.id] = f"{type(outcome).__name__}: {outcome}"
                logger.warning("Failed to fetch %s: %s", route.display_name, outcome)
                continue
            self.store.add_fare(outcome)
            result.fares[route.id] = outcome

        self.store.record_refresh_errors(result.errors)
        result.finished_at = self._clock()
        self.store.mark_refreshed(result.finished_at)

        result.notifications = self.notifier.check_and_notify(
            routes, result.fares, previous
        )
        logger.info(
            "Refresh done: %d fetched, %d failed", len(result.fares), len(result.errors)
        )
        return result

    def _fetch_one(self, route: Route, credentials: Credentials) -> FetchOutcome:
        try:
            return self.provider.fetch_fare(route, credentials)
        except (FareProviderError, requests.RequestException) as exc:
            return exc

    def _fetch_all(
        self, routes: List[Route], credentials: Credentials
    ) -> Dict[uuid.UUID, FetchOutcome]:
        if not routes:
            return {}
        workers = min(self.provider.max_parallel, len(routes))
        if workers <= 1:
            outcomes: Dict[uuid.UUID, FetchOutcome] = {}
            for idx, route in enumerate(routes):
                if idx and self.provider.request_delay_s:
                    self._sleep(self.provider.request_delay_s)
                outcomes[route.id] = self._fetch_one(route, credentials)
            return outcomes

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                route.id: pool.submit(self._fetch_one, route, credentials)
                for route in routes
            }
            return {route_id: fut.result() for route_id, fut in futures.items()}


__all__ = ["RefreshOrchestrator", "RefreshResult"]
