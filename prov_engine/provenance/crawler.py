"""
Provenance lineage discovery.

Starting from one resource reference, search every Provenance whose target is
that reference, collect the targets those records point at, and keep searching
until a full round over the known targets turns up nothing new.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from prov_engine.common.logging import get_logger
from prov_engine.fhir.client import FHIRClient
from prov_engine.fhir.errors import UpstreamError, UpstreamStatus

log = get_logger("crawler")


def qualify_reference(base_url: str, reference: str) -> str:
    if reference.startswith("http://") or reference.startswith("https://"):
        return reference
    return f"{base_url.rstrip('/')}/{reference.lstrip('/')}"


def _resource(entry: Any) -> Dict[str, Any]:
    resource = entry.get("resource") if isinstance(entry, dict) else None
    return resource if isinstance(resource, dict) else {}


def provenance_targets(entry: Dict[str, Any], base_url: str) -> List[str]:
    targets = _resource(entry).get("target")
    out = []
    for target in targets if isinstance(targets, list) else []:
        ref = target.get("reference") if isinstance(target, dict) else None
        if isinstance(ref, str) and ref:
            out.append(qualify_reference(base_url, ref))
    return out


@dataclass
class TraversalState:
    # insertion ordered; doubles as the worklist
    targets: List[str] = field(default_factory=list)
    seen_targets: Set[str] = field(default_factory=set)
    provenance_ids: Set[str] = field(default_factory=set)
    records: List[Dict[str, Any]] = field(default_factory=list)
    rounds: int = 0
    searches: int = 0

    def add_target(self, ref: str) -> bool:
        if ref in self.seen_targets:
            return False
        self.seen_targets.add(ref)
        self.targets.append(ref)
        return True

    def add_record(self, entry: Dict[str, Any]) -> bool:
        pid = _resource(entry).get("id")
        if not isinstance(pid, str) or pid in self.provenance_ids:
            return False
        self.provenance_ids.add(pid)
        self.records.append(entry)
        return True


class ProvenanceCrawler:
    def __init__(self, client: FHIRClient, base_url: Optional[str] = None, page_size: int = 9999, max_pages: int = 100):
        self.client = client
        self.base_url = (base_url or client.base_url).rstrip("/")
        self.page_size = page_size
        self.max_pages = max_pages

    def search(self, ref: str) -> List[Dict[str, Any]]:
        """All Provenance bundle entries whose target is `ref`, across pages."""
        params = {"target": ref, "_count": self.page_size}
        entries: List[Dict[str, Any]] = []
        for bundle in self.client.iter_bundle("Provenance", params, max_pages=self.max_pages):
            page = bundle.get("entry") or []
            if not isinstance(page, list) or not all(isinstance(e, dict) for e in page):
                log.error("Provenance search for %s returned a malformed entry list: %.300s", ref, page)
                raise UpstreamError(UpstreamStatus.INTERNAL_ERROR, "Internal server error", upstream_status=200)
            entries.extend(page)
        return entries

    def _scan(self, state: TraversalState, ref: str) -> int:
        entries = self.search(ref)
        state.searches += 1
        new_targets = 0
        for entry in entries:
            state.add_record(entry)
            for target in provenance_targets(entry, self.base_url):
                if state.add_target(target):
                    log.debug("New target: %s", target)
                    new_targets += 1
        log.debug("Searched %s: %d entries, %d new targets", ref, len(entries), new_targets)
        return new_targets

    def discover(self, start_ref: str) -> List[Dict[str, Any]]:
        """Return every Provenance entry reachable from `start_ref`.

        Each round re-searches every known target, in discovery order, and
        targets found during a round are searched in that same round. The walk
        stops after the first round that adds no target. Entries are
        deduplicated by Provenance id and kept in first-seen order.

        Transport errors propagate; there is no partial result.
        """
        if not start_ref:
            return []

        state = TraversalState()
        state.add_target(start_ref)
        log.info("Searching Provenance for target %s", start_ref)

        while True:
            state.rounds += 1
            found = 0
            i = 0
            while i < len(state.targets):
                found += self._scan(state, state.targets[i])
                i += 1
            log.debug("Round %d: %d targets, %d new", state.rounds, len(state.targets), found)
            if found == 0:
                break

        log.info(
            "Provenance for %s: %d records over %d targets (%d rounds, %d searches)",
            start_ref, len(state.records), len(state.targets), state.rounds, state.searches,
        )
        return state.records
