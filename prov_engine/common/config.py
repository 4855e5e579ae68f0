"""Runtime settings for the provenance engine, resolved from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_REALM = "GravitateHealth"
DEFAULT_CLIENT_ID = "GravitateHealth"


class ConfigError(ValueError):
    pass


def _number(environ: Mapping[str, str], key: str, default, cast):
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    fhir_server_url: str
    realm: str = DEFAULT_REALM
    client_id: str = DEFAULT_CLIENT_ID
    service_username: Optional[str] = None
    service_password: Optional[str] = None

    timeout: float = 10.0
    retry: int = 2
    retry_delay: float = 1.0

    # _count sent with every Provenance search
    page_size: int = 9999
    max_pages: int = 100

    log_level: str = "INFO"

    def __post_init__(self):
        if not self.fhir_server_url:
            raise ConfigError("FHIR_SERVER_URL is required")
        object.__setattr__(self, "fhir_server_url", self.fhir_server_url.rstrip("/"))

    @property
    def token_endpoint(self) -> str:
        return f"{self.fhir_server_url}/auth/realms/{self.realm}/protocol/openid-connect/token"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            fhir_server_url=env.get("FHIR_SERVER_URL", ""),
            realm=env.get("KEYCLOAK_REALM") or DEFAULT_REALM,
            client_id=env.get("KEYCLOAK_CLIENT_ID") or DEFAULT_CLIENT_ID,
            service_username=env.get("SERVICE_USERNAME"),
            service_password=env.get("SERVICE_PASSWORD"),
            timeout=_number(env, "FHIR_TIMEOUT", 10.0, float),
            retry=_number(env, "FHIR_RETRY", 2, int),
            retry_delay=_number(env, "FHIR_RETRY_DELAY", 1.0, float),
            page_size=_number(env, "FHIR_PAGE_SIZE", 9999, int),
            max_pages=_number(env, "FHIR_MAX_PAGES", 100, int),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
