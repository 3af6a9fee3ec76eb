"""Provider secrets.

Secrets come from the environment (and ``.env`` through python-dotenv) and
are never written to the shared key/value store.
"""

from __future__ import annotations

import os
from typing import Dict, Optional, Protocol

from dotenv import load_dotenv

from .fare_provider import Credentials

load_dotenv()

API_KEY = "serpapi.api_key"
CLIENT_ID = "amadeus.client_id"
CLIENT_SECRET = "amadeus.client_secret"

ENV_NAMES: Dict[str, str] = {
    API_KEY: "SERPAPI_API_KEY",
    CLIENT_ID: "AMADEUS_CLIENT_ID",
    CLIENT_SECRET: "AMADEUS_CLIENT_SECRET",
}


class SecretStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class EnvSecretStore:
    """Reads secrets from environment variables, with in-process overrides."""

    def __init__(self, environ: Optional[Dict[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ
        self._overrides: Dict[str, Optional[str]] = {}

    def get(self, key: str) -> Optional[str]:
        if key in self._overrides:
            return self._overrides[key]
        value = self._environ.get(ENV_NAMES.get(key, key), "").strip()
        return value or None

    def set(self, key: str, value: str) -> None:
        self._overrides[key] = value

    def delete(self, key: str) -> None:
        self._overrides[key] = None


def load_credentials(secrets: SecretStore) -> Credentials:
    return Credentials(
        api_key=secrets.get(API_KEY),
        client_id=secrets.get(CLIENT_ID),
        client_secret=secrets.get(CLIENT_SECRET),
    )


__all__ = ["SecretStore", "EnvSecretStore", "load_credentials", "ENV_NAMES"]
