from __future__ import annotations

import json
import logging

import structlog
from fastapi import FastAPI

from zigmirror.common import observability


def test_configure_logging_emits_json(caplog, monkeypatch):
    monkeypatch.setattr(observability, "_logging_configured", False)

    observability.configure_logging("zigmirror.test", "INFO")
    logger = structlog.get_logger("zigmirror.test.logger")

    with caplog.at_level(logging.INFO):
        logger.info("download_started", filename="zig-0.13.0.tar.xz")

    record = caplog.records[-1]
    payload = json.loads(record.message)
    assert payload["message"] == "download_started"
    assert payload["filename"] == "zig-0.13.0.tar.xz"
    assert payload["service"] == "zigmirror.test"


def test_parse_otlp_headers():
    value = "authorization=Bearer token, custom=abc, ,broken"
    headers = observability.parse_otlp_headers(value)
    assert headers == {"authorization": "Bearer token", "custom": "abc"}


def test_instrument_fastapi_app_adds_middleware(monkeypatch):
    monkeypatch.setattr(observability, "_tracer_configured", False)
    app = FastAPI()
    observability.configure_tracing("zigmirror.obs", None, None, 1.0)
    observability.instrument_fastapi_app(app)
    assert any(m.cls.__name__ == "OpenTelemetryMiddleware" for m in app.user_middleware)


def test_configure_logging_quiets_library_loggers(monkeypatch):
    monkeypatch.setattr(observability, "_logging_configured", False)

    observability.configure_logging("zigmirror.test", "DEBUG")

    assert logging.getLogger("uvicorn.access").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING
