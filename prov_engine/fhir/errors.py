"""Error taxonomy surfaced by the FHIR transport."""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional


class UpstreamStatus(IntEnum):
    BAD_REQUEST = 400
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_ERROR = 500
    SERVICE_UNAVAILABLE = 503


_GENERIC = {
    400: (UpstreamStatus.BAD_REQUEST, "Bad Request"),
    401: (UpstreamStatus.INTERNAL_ERROR, "Internal server error"),
    404: (UpstreamStatus.NOT_FOUND, "Not found"),
    409: (UpstreamStatus.CONFLICT, "Conflict"),
    422: (UpstreamStatus.UNPROCESSABLE_ENTITY, "Unprocessable entity. Send correct body in petition"),
    503: (UpstreamStatus.SERVICE_UNAVAILABLE, "Service unavailable"),
}
_FALLBACK = (UpstreamStatus.INTERNAL_ERROR, "Internal server error")

PASSWORD_POLICY_MESSAGE = "password policy not met"


class FHIRError(Exception):
    pass


class NetworkError(FHIRError):
    """No response was received (timeout, refused connection, DNS...)."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.url = url


class AuthenticationError(FHIRError):
    """The service-account token exchange failed. Never retried."""


class UpstreamError(FHIRError):
    def __init__(
        self,
        status: UpstreamStatus,
        message: str,
        upstream_status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        super().__init__(f"{int(status)} {message}")
        self.status = status
        self.message = message
        self.upstream_status = upstream_status
        self.url = url


def upstream_message(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for key in ("errorMessage", "error_description", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def normalize_error(status_code: int, payload: Any = None, url: Optional[str] = None) -> UpstreamError:
    """Map a non-2xx response onto the stable UpstreamError taxonomy.

    The generic message for the status always wins, except for the upstream
    "password policy not met" message which is kept verbatim.
    """
    status, message = _GENERIC.get(status_code, _FALLBACK)
    original = upstream_message(payload)
    if original and original.strip().lower() == PASSWORD_POLICY_MESSAGE:
        message = original
    return UpstreamError(status, message, upstream_status=status_code, url=url)
