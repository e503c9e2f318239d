"""Download cache: single-flight upstream fetches published atomically into the cache directory."""

from __future__ import annotations

import asyncio
import os
import tempfile
import time
from pathlib import Path

import httpx
import structlog
from opentelemetry import trace

from ..common.metrics import GLOBAL_REGISTRY, Counter, Gauge, Histogram
from .artifacts import ArtifactIdentity, upstream_url
from .errors import LocalIOFailure, UpstreamNotFound, UpstreamUnavailable
from .slots import DownloadSlots


LOGGER = structlog.get_logger("zigmirror.cache")
TRACER = trace.get_tracer("zigmirror.cache")

HIT_COUNTER = GLOBAL_REGISTRY.register(Counter("zigmirror_cache_hits_total", "Artifacts served without a download"))
MISS_COUNTER = GLOBAL_REGISTRY.register(Counter("zigmirror_cache_misses_total", "Requests that found no cached artifact"))
UPSTREAM_FETCH_COUNTER = GLOBAL_REGISTRY.register(
    Counter("zigmirror_upstream_fetches_total", "Upstream downloads started")
)
UPSTREAM_FAILURE_COUNTER = GLOBAL_REGISTRY.register(
    Counter("zigmirror_upstream_failures_total", "Upstream downloads that failed or timed out")
)
BYTES_DOWNLOADED_COUNTER = GLOBAL_REGISTRY.register(
    Counter("zigmirror_bytes_downloaded_total", "Bytes published into the cache")
)
INFLIGHT_DOWNLOADS_GAUGE = GLOBAL_REGISTRY.register(
    Gauge("zigmirror_inflight_downloads", "Filenames with a download slot currently held or awaited")
)
DOWNLOAD_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "zigmirror_download_latency_seconds",
        buckets=[0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0],
        description="Wall time of upstream fetch-and-publish cycles",
    )
)

DEFAULT_DOWNLOAD_TIMEOUT = 30 * 60.0
DEFAULT_CHUNK_SIZE = 64 * 1024


class ArtifactCache:
    """Mirror of upstream release artifacts kept in a flat local directory.

    Cache entries are plain files named after the artifact. A file only ever
    appears at its final path through ``os.replace`` of a fully written scratch
    file in the same directory, so readers see either nothing or the whole
    artifact. Concurrent misses for one filename share a download slot and
    result in a single upstream request.
    """

    def __init__(
        self,
        cache_dir: Path,
        upstream_base: str,
        http_client: httpx.AsyncClient,
        *,
        download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._cache_dir = Path(cache_dir)
        self._upstream_base = upstream_base.rstrip("/")
        self._client = http_client
        self._download_timeout = download_timeout
        self._chunk_size = chunk_size
        self.slots = DownloadSlots()

    def path_for(self, identity: ArtifactIdentity) -> Path:
        return self._cache_dir / identity.filename

    def is_cached(self, identity: ArtifactIdentity) -> bool:
        # is_file() is False for directories and for paths that do not exist
        return self.path_for(identity).is_file()

    def status(self) -> dict[str, object]:
        return {
            "cache_dir": str(self._cache_dir),
            "writable": self._cache_dir.is_dir() and os.access(self._cache_dir, os.W_OK),
            "upstream": self._upstream_base,
            "inflight_downloads": len(self.slots),
        }

    async def ensure_cached(self, identity: ArtifactIdentity, *, logger=None) -> Path:
        """Make sure ``identity`` is present in the cache and return its path."""
        log = logger or LOGGER.bind(filename=identity.filename)
        path = self.path_for(identity)
        if self.is_cached(identity):
            HIT_COUNTER.inc()
            return path

        MISS_COUNTER.inc()
        async with self.slots.hold(identity.filename):
            if self.is_cached(identity):
                log.info("cached_while_waiting")
                HIT_COUNTER.inc()
                return path
            log.info("download_started")
            await self.fetch_and_publish(identity, logger=log)
        return path

    async def fetch_and_publish(self, identity: ArtifactIdentity, *, logger=None) -> int:
        """Download ``identity`` from upstream into the cache; returns bytes written.

        Callers are expected to hold the slot for ``identity.filename``.
        """
        source_url = upstream_url(self._upstream_base, identity)
        log = (logger or LOGGER.bind(filename=identity.filename)).bind(source_url=source_url)
        log.info("fetching_upstream")
        UPSTREAM_FETCH_COUNTER.inc()
        start = time.perf_counter()
        with TRACER.start_as_current_span(
            "zigmirror.fetch",
            attributes={"zigmirror.filename": identity.filename, "zigmirror.source_url": source_url},
        ) as span:
            try:
                written = await asyncio.wait_for(
                    self._download(identity, source_url, log),
                    timeout=self._download_timeout,
                )
            except asyncio.TimeoutError as exc:
                UPSTREAM_FAILURE_COUNTER.inc()
                log.error("upstream_error", error="download timed out", timeout_seconds=self._download_timeout)
                raise UpstreamUnavailable("Upstream download timed out", filename=identity.filename) from exc
            except asyncio.CancelledError:
                log.warning("download_cancelled")
                raise
            finally:
                DOWNLOAD_LATENCY_HISTOGRAM.observe(time.perf_counter() - start)
            span.set_attribute("zigmirror.bytes_written", written)

        BYTES_DOWNLOADED_COUNTER.inc(written)
        log.info("download_complete", bytes=written)
        return written

    async def _download(self, identity: ArtifactIdentity, source_url: str, log) -> int:
        try:
            async with self._client.stream("GET", source_url) as response:
                if response.status_code == 404:
                    log.warning("upstream_not_found")
                    raise UpstreamNotFound("File not found on upstream", filename=identity.filename)
                if response.status_code != 200:
                    UPSTREAM_FAILURE_COUNTER.inc()
                    log.error("upstream_error", status_code=response.status_code)
                    raise UpstreamUnavailable(
                        f"Upstream returned status {response.status_code}",
                        filename=identity.filename,
                    )
                return await self._publish(identity, response, log)
        except httpx.HTTPError as exc:
            UPSTREAM_FAILURE_COUNTER.inc()
            log.error("upstream_error", error=str(exc) or type(exc).__name__)
            raise UpstreamUnavailable("Upstream request failed", filename=identity.filename) from exc

    async def _publish(self, identity: ArtifactIdentity, response: httpx.Response, log) -> int:
        final_path = self.path_for(identity)
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f"{identity.filename}.", suffix=".tmp", dir=self._cache_dir)
        except OSError as exc:
            log.error("scratch_create_failed", cache_dir=str(self._cache_dir), error=str(exc))
            raise LocalIOFailure("Failed to create scratch file", filename=identity.filename) from exc

        tmp_path = Path(tmp_name)
        written = 0
        try:
            try:
                with os.fdopen(fd, "wb") as handle:
                    async for chunk in response.aiter_bytes(self._chunk_size):
                        await asyncio.to_thread(handle.write, chunk)
                        written += len(chunk)
            except OSError as exc:
                log.error("scratch_write_failed", temp_file=str(tmp_path), error=str(exc))
                raise LocalIOFailure("Failed to write scratch file", filename=identity.filename) from exc

            try:
                os.replace(tmp_path, final_path)
            except OSError as exc:
                log.error("publish_failed", temp_file=str(tmp_path), final_path=str(final_path), error=str(exc))
                raise LocalIOFailure("Failed to publish cached file", filename=identity.filename) from exc
        finally:
            _discard(tmp_path, log)
        return written


def _discard(path: Path, log) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log.warning("scratch_cleanup_failed", temp_file=str(path), error=str(exc))


def build_http_client(*, timeout: float, idle_timeout: float) -> httpx.AsyncClient:
    """Create the process-wide upstream client shared by all downloads."""
    limits = httpx.Limits(keepalive_expiry=idle_timeout)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, connect=min(timeout, 30.0)),
        limits=limits,
        follow_redirects=True,
    )


def cache_from_settings(settings, http_client: httpx.AsyncClient) -> ArtifactCache:
    return ArtifactCache(
        settings.cache_dir,
        settings.upstream_url,
        http_client,
        download_timeout=settings.download_timeout_seconds,
        chunk_size=settings.download_chunk_bytes,
    )

