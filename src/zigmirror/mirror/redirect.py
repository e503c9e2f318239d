"""Plain-HTTP listener that sends every request to the TLS listener."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import RedirectResponse
import structlog

from ..common.networking import remote_ip


LOGGER = structlog.get_logger("zigmirror.redirect")


def https_target(request: Request, tls_port: int) -> str:
    host = request.headers.get("host") or (request.url.hostname or "")
    # drop any port, including on bracketed IPv6 literals
    if host.startswith("["):
        host = host.split("]", 1)[0] + "]"
    else:
        host = host.rsplit(":", 1)[0] if ":" in host else host
    target = f"https://{host}:{tls_port}{request.url.path}"
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return target


def create_redirect_app(tls_port: int) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.api_route("/{path:path}", methods=["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"])
    async def redirect_to_https(request: Request) -> RedirectResponse:
        target = https_target(request, tls_port)
        LOGGER.info(
            "redirecting_to_https",
            remote_ip=remote_ip(request),
            method=request.method,
            host=request.headers.get("host"),
            path=request.url.path,
            target=target,
        )
        return RedirectResponse(target, status_code=status.HTTP_301_MOVED_PERMANENTLY)

    return app
