import threading
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from prov_engine.common.config import ConfigError, Settings
from prov_engine.common.logging import get_logger, set_level
from prov_engine.fhir.client import FHIRClient
from prov_engine.fhir.errors import AuthenticationError, NetworkError, UpstreamError
from prov_engine.provenance.crawler import ProvenanceCrawler
from prov_engine.service.schemas import ErrorResponse, HealthResponse

log = get_logger("api")


def build_crawler(settings: Settings) -> ProvenanceCrawler:
    set_level(settings.log_level)
    client = FHIRClient(settings)
    return ProvenanceCrawler(
        client,
        base_url=settings.fhir_server_url,
        page_size=settings.page_size,
        max_pages=settings.max_pages,
    )


def create_app(crawler: Optional[ProvenanceCrawler] = None) -> FastAPI:
    app = FastAPI(title="Provenance Engine", version="1.0")
    app.state.crawler = crawler
    build_lock = threading.Lock()

    def get_crawler() -> ProvenanceCrawler:
        # one crawler (and so one token) per process
        with build_lock:
            if app.state.crawler is None:
                app.state.crawler = build_crawler(Settings.from_env())
            return app.state.crawler

    @app.exception_handler(UpstreamError)
    async def upstream_error(request: Request, exc: UpstreamError):
        return JSONResponse(status_code=int(exc.status), content={"error": exc.message})

    @app.exception_handler(NetworkError)
    async def network_error(request: Request, exc: NetworkError):
        return JSONResponse(status_code=502, content={"error": "FHIR server unreachable"})

    @app.exception_handler(AuthenticationError)
    async def authentication_error(request: Request, exc: AuthenticationError):
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.exception_handler(ConfigError)
    async def config_error(request: Request, exc: ConfigError):
        log.error("Service misconfigured: %s", exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health", response_model=HealthResponse)
    def health():
        try:
            settings = Settings.from_env()
        except ConfigError:
            return HealthResponse(status="degraded")
        return HealthResponse(status="ok", fhir_server_url=settings.fhir_server_url)

    @app.get(
        "/",
        response_model=None,
        responses={400: {"description": "resourceId is required"}, 502: {"model": ErrorResponse}},
    )
    def get_provenance(resourceId: Optional[str] = None) -> Any:
        if not resourceId:
            return Response(status_code=400)
        records: List[Dict[str, Any]] = get_crawler().discover(resourceId)
        return records

    return app


app = create_app()
