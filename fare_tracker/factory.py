"""Build the configured fare provider."""

from __future__ import annotations

from typing import Dict, Type

from .amadeus_fetcher import AmadeusFareProvider
from .config import Settings
from .fare_provider import FareProvider
from .serpapi_fetcher import SerpApiFareProvider

PROVIDERS: Dict[str, Type[FareProvider]] = {
    SerpApiFareProvider.name: SerpApiFareProvider,
    AmadeusFareProvider.name: AmadeusFareProvider,
}


def create_provider(name: str, settings: Settings) -> FareProvider:
    try:
        provider_cls = PROVIDERS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown fare provider {name!r} (choose from {', '.join(PROVIDERS)})"
        ) from None
    return provider_cls.from_settings(settings)


__all__ = ["PROVIDERS", "create_provider"]
