"""HTTP front end serving mirrored release artifacts."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from http import HTTPStatus
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import FileResponse, HTMLResponse, PlainTextResponse
import structlog
from opentelemetry import trace

from ..common.http_security import require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Counter, Histogram
from ..common.networking import remote_ip, request_source
from ..common.observability import (
    configure_logging,
    configure_tracing,
    instrument_fastapi_app,
    instrument_http_client,
)
from ..common.settings import MirrorSettings
from .artifacts import ArtifactIdentity, parse_filename
from .cache import INFLIGHT_DOWNLOADS_GAUGE, ArtifactCache, build_http_client, cache_from_settings
from .errors import InvalidFilename, MirrorError


LOGGER = structlog.get_logger("zigmirror.mirror")
TRACER = trace.get_tracer("zigmirror.mirror")
INDEX_TEMPLATE = Path(__file__).with_name("templates") / "index.html"
ARTIFACT_MEDIA_TYPE = "application/octet-stream"
# nginx convention for a request the client abandoned before the response
CLIENT_CLOSED_REQUEST = 499

REQUEST_COUNTER = GLOBAL_REGISTRY.register(Counter("zigmirror_requests_total", "Total HTTP requests"))
REQUEST_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "zigmirror_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
        description="HTTP request latency",
    )
)


class MirrorState:
    def __init__(self, settings: MirrorSettings, cache: ArtifactCache, index_html: str) -> None:
        self.settings = settings
        self.cache = cache
        self.index_html = index_html


def get_state(request: Request) -> MirrorState:
    return request.app.state.mirror  # type: ignore[attr-defined]


def artifact_name(path: str) -> str:
    """Only the final path segment ever reaches the validator."""
    return PurePosixPath("/" + path).name


async def wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def ensure_cached_for_client(
    request: Request,
    cache: ArtifactCache,
    identity: ArtifactIdentity,
    log,
) -> Optional[Path]:
    """Fill the cache for ``identity`` while the client is still connected.

    Returns None if the client disconnects first. The fetch is then cancelled,
    which discards its scratch file and passes the slot to the next waiter.
    """
    fetch = asyncio.ensure_future(cache.ensure_cached(identity, logger=log))
    disconnect = asyncio.ensure_future(wait_for_disconnect(request))
    try:
        await asyncio.wait({fetch, disconnect}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        fetch.cancel()
        disconnect.cancel()
        raise
    disconnect.cancel()
    if fetch.done():
        return fetch.result()

    log.info("client_disconnected")
    fetch.cancel()
    await asyncio.wait({fetch})
    if not fetch.cancelled():
        # finished or failed while being cancelled; the client is gone either way
        fetch.exception()
    return None


def create_app(
    settings: Optional[MirrorSettings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or MirrorSettings()
    configure_logging("zigmirror", settings.log_level)
    configure_tracing(
        service_name="zigmirror",
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        client = http_client
        owns_client = client is None
        if client is None:
            client = build_http_client(
                timeout=settings.download_timeout_seconds,
                idle_timeout=settings.idle_connection_timeout_seconds,
            )
            instrument_http_client(client)
        settings.cache_dir.mkdir(parents=True, exist_ok=True)
        cache = cache_from_settings(settings, client)
        INFLIGHT_DOWNLOADS_GAUGE.bind(lambda: len(cache.slots))
        app.state.mirror = MirrorState(settings, cache, INDEX_TEMPLATE.read_text(encoding="utf-8"))
        LOGGER.info("mirror_ready", cache_dir=str(settings.cache_dir), upstream=settings.upstream_url)
        try:
            yield
        finally:
            INFLIGHT_DOWNLOADS_GAUGE.bind(None)
            if owns_client:
                await client.aclose()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    instrument_fastapi_app(app)

    @app.exception_handler(MirrorError)
    async def mirror_error_handler(request: Request, exc: MirrorError) -> PlainTextResponse:
        detail = exc.public_detail or HTTPStatus(exc.status_code).phrase
        return PlainTextResponse(detail, status_code=exc.status_code)

    @app.middleware("http")
    async def limit_request_body(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > settings.max_request_body_bytes:
            return PlainTextResponse(
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE.phrase,
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            )
        return await call_next(request)

    @app.middleware("http")
    async def record_request(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        REQUEST_COUNTER.inc()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            REQUEST_LATENCY_HISTOGRAM.observe(duration)
            LOGGER.exception(
                "http_request_error",
                remote_ip=remote_ip(request),
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        REQUEST_LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "remote_ip": remote_ip(request),
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
            "user_agent": request.headers.get("user-agent", ""),
        }
        if response.status_code >= 500:
            LOGGER.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            LOGGER.warning("http_request", **log_kwargs)
        else:
            LOGGER.info("http_request", **log_kwargs)
        return response

    @app.get("/", response_class=HTMLResponse)
    async def index(state: MirrorState = Depends(get_state)) -> HTMLResponse:
        return HTMLResponse(state.index_html)

    @app.get("/healthz")
    async def health_check(state: MirrorState = Depends(get_state)) -> dict:
        """Health check for readiness/liveness probes."""
        cache_status = state.cache.status()
        health = {"status": "healthy", "checks": cache_status}
        if not cache_status.get("writable"):
            health["status"] = "unhealthy"
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=health)
        return health

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request, state: MirrorState = Depends(get_state)) -> PlainTextResponse:
        token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    async def serve_artifact(request: Request, path: str, state: MirrorState) -> Response:
        filename = artifact_name(path)
        log = LOGGER.bind(
            remote_ip=remote_ip(request),
            path=request.url.path,
            filename=filename,
            source=request_source(request),
        )
        try:
            identity = parse_filename(filename)
        except InvalidFilename:
            log.warning("invalid_filename")
            raise

        with TRACER.start_as_current_span("zigmirror.serve", attributes={"zigmirror.filename": filename}) as span:
            cached = state.cache.is_cached(identity)
            span.set_attribute("zigmirror.cache_hit", cached)
            if cached:
                artifact_path = await state.cache.ensure_cached(identity, logger=log)
            else:
                log.info("file_not_in_cache")
                artifact_path = await ensure_cached_for_client(request, state.cache, identity, log)
                if artifact_path is None:
                    return Response(status_code=CLIENT_CLOSED_REQUEST)
        log.info("serving_from_cache")
        return FileResponse(artifact_path, media_type=ARTIFACT_MEDIA_TYPE)

    artifact_methods = ["GET", "HEAD"]

    @app.api_route("/zig/{file}", methods=artifact_methods)
    async def zig_artifact(file: str, request: Request, state: MirrorState = Depends(get_state)) -> Response:
        return await serve_artifact(request, file, state)

    @app.api_route("/builds/{file}", methods=artifact_methods)
    async def build_artifact(file: str, request: Request, state: MirrorState = Depends(get_state)) -> Response:
        return await serve_artifact(request, file, state)

    @app.api_route("/download/{rest:path}", methods=artifact_methods)
    async def release_artifact(rest: str, request: Request, state: MirrorState = Depends(get_state)) -> Response:
        return await serve_artifact(request, rest, state)

    @app.api_route("/{file}", methods=artifact_methods)
    async def artifact(file: str, request: Request, state: MirrorState = Depends(get_state)) -> Response:
        return await serve_artifact(request, file, state)

    return app
