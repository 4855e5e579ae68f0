"""Run the provenance HTTP service.

Usage:
    python -m prov_engine.cli.serve_cli [--host 0.0.0.0] [--port 3000]
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

import uvicorn


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Serve the Provenance lineage API.")
    parser.add_argument("--host", default=os.environ.get("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("PORT", "3000")))
    parser.add_argument("--workers", type=int, default=1)
    args = parser.parse_args(argv)

    uvicorn.run(
        "prov_engine.service.api:app",
        host=args.host,
        port=args.port,
        workers=args.workers,
        log_level=os.environ.get("LOG_LEVEL", "info").lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
