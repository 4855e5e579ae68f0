"""Discover the Provenance lineage of one resource from the terminal.

Usage:
    python -m prov_engine.cli.crawl_cli Observation/123 [--ids-only]

Reads the same FHIR_SERVER_URL / SERVICE_USERNAME / SERVICE_PASSWORD /
KEYCLOAK_REALM environment as the HTTP service.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from prov_engine.common.config import ConfigError, Settings
from prov_engine.fhir.errors import FHIRError
from prov_engine.service.api import build_crawler


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Resolve the Provenance closure of a FHIR resource.")
    parser.add_argument("resource_id", help="resource reference, e.g. Observation/123")
    parser.add_argument("--ids-only", action="store_true", help="print Provenance ids instead of full entries")
    args = parser.parse_args(argv)

    try:
        crawler = build_crawler(Settings.from_env())
        records = crawler.discover(args.resource_id)
    except (ConfigError, FHIRError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    if args.ids_only:
        for entry in records:
            print(entry["resource"]["id"])
    else:
        print(json.dumps(records, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
