import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

import requests

from prov_engine.common.config import Settings
from prov_engine.common.logging import get_logger
from prov_engine.fhir.auth import ServiceAccountAuth
from prov_engine.fhir.errors import NetworkError, UpstreamError, UpstreamStatus, normalize_error

log = get_logger("fhir_client")


@dataclass
class RetryableRequest:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    json: Any = None
    data: Any = None
    retries_left: int = 0
    # token and generation attached by the last _before_send, handed back on refresh
    token: Optional[str] = None
    generation: Optional[int] = None


def _parse_body(r: requests.Response) -> Any:
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError:
        return r.text


class FHIRClient:
    def __init__(
        self,
        settings: Settings,
        session: Optional[requests.Session] = None,
        auth: Optional[ServiceAccountAuth] = None,
    ):
        self.settings = settings
        self.base_url = settings.fhir_server_url
        self.timeout = settings.timeout
        self.retry = settings.retry
        self.retry_delay = settings.retry_delay
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/fhir+json, */*"})
        self.auth = auth or ServiceAccountAuth(
            self.session,
            settings.token_endpoint,
            settings.client_id,
            settings.service_username,
            settings.service_password,
            timeout=settings.timeout,
        )

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _before_send(self, req: RetryableRequest) -> None:
        req.token, req.generation = self.auth.snapshot()
        if req.token:
            req.headers["Authorization"] = f"Bearer {req.token}"
        else:
            req.headers.pop("Authorization", None)
        log.debug(
            "[Request] [Method: %s] [URL: %s] [Params: %s] [Retries left: %d]",
            req.method, req.url, req.params, req.retries_left,
        )

    def _after_receive(self, req: RetryableRequest, r: requests.Response) -> Any:
        if 200 <= r.status_code < 300:
            log.debug("[Response] [Status: %s] [URL: %s] [%d bytes]", r.status_code, req.url, len(r.content or b""))
            return _parse_body(r)

        payload = _parse_body(r)
        err = normalize_error(r.status_code, payload, url=req.url)
        log.error(
            "[Response Error] %s %s -> %s, surfaced as %d %r (upstream body: %.300s)",
            req.method, req.url, r.status_code, int(err.status), err.message, payload,
        )
        raise err

    def _send(self, req: RetryableRequest) -> Any:
        while True:
            self._before_send(req)
            try:
                r = self.session.request(
                    req.method,
                    req.url,
                    params=req.params,
                    json=req.json,
                    data=req.data,
                    headers=req.headers,
                    timeout=self.timeout,
                )
            except requests.Timeout as e:
                log.error("[Network Error] %s %s timed out after %ss", req.method, req.url, self.timeout)
                raise NetworkError(f"Request timed out after {self.timeout}s", url=req.url) from e
            except requests.RequestException as e:
                log.error("[Network Error] %s %s failed: %s", req.method, req.url, e)
                raise NetworkError(f"No response received: {e}", url=req.url) from e

            if r.status_code == 401 and req.retries_left > 0:
                log.error(
                    "[Response Error] %s %s -> 401, refreshing service token (%d retries left)",
                    req.method, req.url, req.retries_left,
                )
                self.auth.refresh(stale=req.token, generation=req.generation)
                req.retries_left -= 1
                time.sleep(self.retry_delay)
                log.debug("[Retry] Retrying %s %s", req.method, req.url)
                continue

            return self._after_receive(req, r)

    def request(self, method: str, path: str, **kwargs) -> Any:
        req = RetryableRequest(
            method=method.upper(),
            url=self._url(path),
            headers=dict(kwargs.pop("headers", None) or {}),
            retries_left=self.retry,
            **kwargs,
        )
        return self._send(req)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("POST", path, params=params, **_body_kwargs(body))

    def put(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("PUT", path, params=params, **_body_kwargs(body))

    def patch(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("PATCH", path, params=params, **_body_kwargs(body))

    def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("DELETE", path, params=params)

    def _bundle(self, url: str, body: Any) -> Dict[str, Any]:
        if body is None:
            return {}
        if not isinstance(body, dict):
            log.error("[Response Error] GET %s returned %s instead of a Bundle: %.300s", url, type(body).__name__, body)
            raise UpstreamError(
                UpstreamStatus.INTERNAL_ERROR, "Internal server error", upstream_status=200, url=url,
            )
        return body

    def iter_bundle(self, resource: str, params: Dict[str, Any], max_pages: int = 50) -> Iterator[Dict[str, Any]]:
        # follow 'next' links until the server stops sending them
        bundle = self._bundle(self._url(resource), self.get(resource, params))
        yield bundle
        pages = 1
        seen = set()
        while True:
            next_url = None
            for link in bundle.get("link", []) or []:
                if isinstance(link, dict) and link.get("relation") == "next":
                    next_url = link.get("url")
                    break
            if not next_url:
                return
            if next_url in seen:
                log.warning("Bundle for %s repeats next link %s, stopping", resource, next_url)
                return
            if pages >= max_pages:
                log.warning("Bundle for %s still paginated after %d pages, stopping", resource, pages)
                return
            seen.add(next_url)
            bundle = self._bundle(next_url, self.get(next_url))
            pages += 1
            yield bundle


def _body_kwargs(body: Any) -> Dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, (str, bytes)):
        return {"data": body}
    return {"json": body}
