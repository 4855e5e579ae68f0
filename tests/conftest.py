import json
import threading
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from prov_engine.common.config import Settings
from prov_engine.fhir.client import FHIRClient
from prov_engine.provenance.crawler import ProvenanceCrawler, qualify_reference

BASE_URL = "http://fhir.test"
TOKEN_URL = f"{BASE_URL}/auth/realms/GravitateHealth/protocol/openid-connect/token"


def make_response(status, body=None, url=""):
    r = requests.Response()
    r.status_code = status
    r.url = url
    r.encoding = "utf-8"
    if body is None:
        r._content = b""
    elif isinstance(body, (bytes, str)):
        r._content = body.encode() if isinstance(body, str) else body
    else:
        r._content = json.dumps(body).encode()
    return r


class FakeSession(requests.Session):
    """requests.Session whose wire is a Python callable."""

    def __init__(self, handler):
        super().__init__()
        self.handler = handler
        self.calls = []
        self._calls_lock = threading.Lock()

    def request(self, method, url, params=None, data=None, headers=None, json=None, timeout=None, **kwargs):
        merged = dict(self.headers)
        merged.update(headers or {})
        call = {
            "method": method,
            "url": url,
            "params": params,
            "data": data,
            "json": json,
            "headers": merged,
            "timeout": timeout,
        }
        with self._calls_lock:
            self.calls.append(call)
        result = self.handler(call)
        if isinstance(result, requests.Response):
            return result
        status, body = result
        return make_response(status, body, url=url)


class FakeFHIRServer:
    """In-memory Provenance store with keycloak-style token checks.

    `provenances` maps a Provenance id to its list of target references.
    """

    def __init__(self, provenances, page_size=None, require_auth=True):
        self.provenances = provenances
        self.page_size = page_size
        self.require_auth = require_auth
        self.exchanges = 0
        self.valid_token = None
        self.searches = []
        self.lock = threading.Lock()

    def issue_token(self):
        with self.lock:
            self.exchanges += 1
            self.valid_token = f"token-{self.exchanges}"
            return self.valid_token

    def expire_token(self):
        self.valid_token = None

    def entry(self, pid):
        return {
            "fullUrl": f"{BASE_URL}/Provenance/{pid}",
            "resource": {
                "resourceType": "Provenance",
                "id": pid,
                "target": [{"reference": ref} for ref in self.provenances[pid]],
            },
        }

    def matching(self, target):
        wanted = qualify_reference(BASE_URL, target)
        return [
            pid for pid, refs in self.provenances.items()
            if any(qualify_reference(BASE_URL, ref) == wanted for ref in refs)
        ]

    def __call__(self, call):
        if call["url"] == TOKEN_URL:
            return 200, {"access_token": self.issue_token(), "expires_in": 300}

        if self.require_auth:
            auth = call["headers"].get("Authorization")
            if self.valid_token is None or auth != f"Bearer {self.valid_token}":
                return 401, {"error": "invalid token"}

        parsed = urlparse(call["url"])
        query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        query.update(call["params"] or {})
        target = query["target"]
        offset = int(query.get("_offset", 0))
        self.searches.append(target)

        ids = self.matching(target)
        size = self.page_size or len(ids) or 1
        page = ids[offset:offset + size]
        bundle = {
            "resourceType": "Bundle",
            "type": "searchset",
            "total": len(ids),
            "link": [{"relation": "self", "url": call["url"]}],
            "entry": [self.entry(pid) for pid in page],
        }
        if offset + size < len(ids):
            bundle["link"].append({
                "relation": "next",
                "url": f"{BASE_URL}/Provenance?target={target}&_offset={offset + size}",
            })
        if not page:
            del bundle["entry"]
        return 200, bundle


@pytest.fixture
def settings():
    return Settings(
        fhir_server_url=BASE_URL,
        service_username="svc-user",
        service_password="svc-pass",
        retry_delay=0,
    )


@pytest.fixture
def make_client(settings):
    def _make(handler):
        return FHIRClient(settings, session=FakeSession(handler))
    return _make


@pytest.fixture
def make_crawler(make_client, settings):
    def _make(server):
        client = make_client(server)
        return ProvenanceCrawler(client, page_size=settings.page_size, max_pages=settings.max_pages)
    return _make
