"""Application configuration models for the mirror service."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


def join_host_port(host: str, port: int) -> str:
    if ":" in host and not host.startswith("["):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class MirrorSettings(BaseSettings):
    """Runtime settings for the artifact mirror."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    cache_dir: Path = env_field(Path("./"), "ZIGMIRROR_CACHE_DIR")
    upstream_url: str = env_field("https://ziglang.org", "ZIGMIRROR_UPSTREAM_URL")
    listen_address: str = env_field("", "ZIGMIRROR_LISTEN_ADDRESS")
    http_port: int = env_field(80, "ZIGMIRROR_HTTP_PORT")
    tls_port: int = env_field(443, "ZIGMIRROR_TLS_PORT")
    enable_tls: bool = env_field(False, "ZIGMIRROR_ENABLE_TLS")
    tls_cert_file: Optional[Path] = env_field(None, "ZIGMIRROR_TLS_CERT_FILE")
    tls_key_file: Optional[Path] = env_field(None, "ZIGMIRROR_TLS_KEY_FILE")
    redirect_to_https: bool = env_field(False, "ZIGMIRROR_REDIRECT_TO_HTTPS")
    download_timeout_seconds: float = env_field(30 * 60.0, "ZIGMIRROR_DOWNLOAD_TIMEOUT")
    idle_connection_timeout_seconds: float = env_field(90.0, "ZIGMIRROR_IDLE_CONN_TIMEOUT")
    download_chunk_bytes: int = env_field(64 * 1024, "ZIGMIRROR_DOWNLOAD_CHUNK_BYTES")
    max_request_body_bytes: int = env_field(1 << 20, "ZIGMIRROR_MAX_REQUEST_BODY")
    shutdown_timeout_seconds: float = env_field(5.0, "ZIGMIRROR_SHUTDOWN_TIMEOUT")
    metrics_token: Optional[SecretStr] = env_field(None, "ZIGMIRROR_METRICS_TOKEN")
    log_level: str = env_field("INFO", "ZIGMIRROR_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "ZIGMIRROR_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "ZIGMIRROR_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "ZIGMIRROR_OTEL_SAMPLER_RATIO")

    @field_validator("upstream_url", mode="after")
    @classmethod
    def _strip_upstream_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("download_timeout_seconds", "download_chunk_bytes", mode="after")
    @classmethod
    def _require_positive(cls, value):
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @model_validator(mode="after")
    def _check_tls(self) -> "MirrorSettings":
        if self.enable_tls:
            if self.tls_cert_file is None or self.tls_key_file is None:
                raise ValueError("to enable TLS, both tls_cert_file and tls_key_file must be provided")
            for path in (self.tls_cert_file, self.tls_key_file):
                if not path.is_file():
                    raise ValueError(f"TLS file not found: {path}")
        if self.redirect_to_https and not self.enable_tls:
            raise ValueError("redirect_to_https requires enable_tls to be set")
        return self

    def http_address(self) -> str:
        return join_host_port(self.listen_address, self.http_port)

    def https_address(self) -> str:
        return join_host_port(self.listen_address, self.tls_port)
