"""Request attribution helpers used for access logging."""

from __future__ import annotations

from typing import Optional

from fastapi import Request


def remote_ip(request: Request) -> str:
    """Return the originating client address, honouring ``X-Forwarded-For``."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client is None:
        return ""
    return request.client.host


def request_source(request: Request) -> Optional[str]:
    # Clients such as setup-zig tag their downloads with ?source=<name>
    source = request.query_params.get("source")
    return source or None
