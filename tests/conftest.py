from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from tests.utils.upstream import UPSTREAM, FakeUpstream
from zigmirror.mirror.cache import ArtifactCache


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def artifact_cache(cache_dir: Path, upstream: FakeUpstream):
    async with upstream.client() as client:
        yield ArtifactCache(cache_dir, UPSTREAM, client, download_timeout=5.0, chunk_size=4096)
