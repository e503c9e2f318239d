"""Command-line entrypoint for running the mirror listeners."""

from __future__ import annotations

import argparse
import asyncio
import socket
import sys
from typing import Any, Sequence

import structlog
import uvicorn
from pydantic import ValidationError

from ..common.observability import configure_logging
from ..common.settings import MirrorSettings
from ..mirror.app import create_app
from ..mirror.redirect import create_redirect_app


LOGGER = structlog.get_logger("zigmirror.server")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Caching mirror for Zig release artifacts")
    parser.add_argument("--cache-dir", help="Directory where downloaded artifacts are cached")
    parser.add_argument("--upstream-url", help="Base URL of the upstream server to mirror")
    parser.add_argument("--http-port", type=int, help="Port for the plain HTTP listener")
    parser.add_argument("--tls-port", type=int, help="Port for the TLS (HTTPS) listener")
    parser.add_argument("--listen-address", help="Address to listen on; empty listens on all interfaces")
    parser.add_argument("--enable-tls", action="store_true", default=None, help="Serve HTTPS (requires cert and key)")
    parser.add_argument("--tls-cert-file", help="Path to the TLS certificate file")
    parser.add_argument("--tls-key-file", help="Path to the TLS private key file")
    parser.add_argument(
        "--redirect-to-https",
        action="store_true",
        default=None,
        help="Redirect plain HTTP requests to HTTPS (requires --enable-tls)",
    )
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> MirrorSettings:
    """Command-line flags take precedence over ZIGMIRROR_* environment variables."""
    overrides: dict[str, Any] = {key: value for key, value in vars(args).items() if value is not None}
    return MirrorSettings(**overrides)


def wildcard_host() -> str:
    # "::" accepts IPv4 too on dual-stack hosts
    return "::" if socket.has_ipv6 else "0.0.0.0"


def build_servers(settings: MirrorSettings) -> list[uvicorn.Server]:
    host = settings.listen_address or wildcard_host()
    common: dict[str, Any] = {
        "host": host,
        "log_config": None,
        "proxy_headers": False,
        "timeout_graceful_shutdown": settings.shutdown_timeout_seconds,
    }
    servers: list[uvicorn.Server] = []
    if settings.enable_tls:
        servers.append(
            uvicorn.Server(
                uvicorn.Config(
                    create_app(settings),
                    port=settings.tls_port,
                    ssl_certfile=str(settings.tls_cert_file),
                    ssl_keyfile=str(settings.tls_key_file),
                    **common,
                )
            )
        )
    else:
        servers.append(uvicorn.Server(uvicorn.Config(create_app(settings), port=settings.http_port, **common)))

    if settings.redirect_to_https:
        servers.append(
            uvicorn.Server(
                uvicorn.Config(
                    create_redirect_app(settings.tls_port),
                    port=settings.http_port,
                    lifespan="off",
                    **common,
                )
            )
        )
    return servers


def listener_address(settings: MirrorSettings, server: uvicorn.Server) -> str:
    if server.config.ssl_certfile:
        return settings.https_address()
    return settings.http_address()


async def serve(settings: MirrorSettings) -> None:
    servers = build_servers(settings)
    for server in servers:
        scheme = "https" if server.config.ssl_certfile else "http"
        LOGGER.info("starting_server", scheme=scheme, addr=listener_address(settings, server))
    # uvicorn installs SIGINT/SIGTERM handlers per server and re-raises the
    # signal on exit, so one signal drains every listener in turn.
    await asyncio.gather(*(server.serve() for server in servers))
    LOGGER.info("server_exited_gracefully")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = settings_from_args(args)
    except ValidationError as exc:
        configure_logging("zigmirror", "INFO")
        LOGGER.error("invalid_configuration", error=str(exc))
        return 2
    configure_logging("zigmirror", settings.log_level)
    asyncio.run(serve(settings))
    return 0


if __name__ == "__main__":
    sys.exit(main())
