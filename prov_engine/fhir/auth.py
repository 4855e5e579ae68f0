"""Service-account bearer token, refreshed reactively after a 401."""

from __future__ import annotations

import threading
from typing import Optional, Tuple

import requests

from prov_engine.common.logging import get_logger
from prov_engine.fhir.errors import AuthenticationError

log = get_logger("auth")


class ServiceAccountAuth:
    def __init__(
        self,
        session: requests.Session,
        token_endpoint: str,
        client_id: str,
        username: Optional[str],
        password: Optional[str],
        timeout: float = 10.0,
    ):
        self.session = session
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self.username = username
        self.password = password
        self.timeout = timeout
        self._token: Optional[str] = None
        # bumped on every exchange attempt; requests remember the value they were sent under
        self._generation = 0
        self._error: Optional[AuthenticationError] = None
        self._lock = threading.Lock()

    @property
    def token(self) -> Optional[str]:
        return self._token

    def snapshot(self) -> Tuple[Optional[str], int]:
        with self._lock:
            return self._token, self._generation

    def refresh(self, stale: Optional[str], generation: Optional[int] = None) -> str:
        """Replace `stale` with a fresh token.

        Callers that hit a 401 under the same token generation share one
        exchange: whoever takes the lock second finds the generation moved on
        and reuses the outcome, the new token or the failure, without calling
        the token endpoint again. Without a generation the stored token is
        compared with `stale` instead.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                if self._error is not None:
                    log.error("[Get ServiceUser Token] concurrent exchange failed, not retrying")
                    raise AuthenticationError(str(self._error)) from self._error
                log.debug("[Get ServiceUser Token] token already refreshed, reusing it")
                return self._token
            if generation is None and self._token is not None and self._token != stale:
                log.debug("[Get ServiceUser Token] token already refreshed, reusing it")
                return self._token

            self._generation += 1
            try:
                self._token = self._exchange()
            except AuthenticationError as e:
                self._error = e
                raise
            self._error = None
            return self._token

    def _exchange(self) -> str:
        log.debug("[Get ServiceUser Token] Getting token from %s", self.token_endpoint)
        form = {
            "client_id": self.client_id,
            "grant_type": "password",
            "username": self.username or "",
            "password": self.password or "",
        }
        try:
            r = self.session.post(
                self.token_endpoint,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error("[Get ServiceUser Token] request failed: %s", e)
            raise AuthenticationError(f"Could not get token: {e}") from e

        if r.status_code != 200:
            log.error("[Get ServiceUser Token] ERROR %s %s", r.status_code, r.text[:300])
            raise AuthenticationError(f"Could not get token (HTTP {r.status_code})")

        try:
            body = r.json()
        except ValueError:
            body = None
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            log.error("[Get ServiceUser Token] response carried no access_token")
            raise AuthenticationError("Could not get token: no access_token in response")
        return token
