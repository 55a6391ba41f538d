#!/usr/bin/env python

"""Blob cache tests."""

import asyncio

from pathlib import Path

import pytest

from oci_registry_client_async import (
    FilesystemCache,
    FormattedSHA256,
    IntegrityError,
    MemoryCache,
    ReadOnlyCache,
)

from .testutils import collect, iterate

pytestmark = [pytest.mark.asyncio]

DATA = b"cached content " * 100
DIGEST = FormattedSHA256.calculate(DATA)


async def test_memory_cache():
    """Test that blobs are stored and loaded in memory."""
    cache = MemoryCache()
    assert await cache.load(DIGEST) is None
    assert await cache.store(DIGEST, iterate(DATA))
    assert await collect(await cache.load(DIGEST)) == DATA

    with pytest.raises(IntegrityError):
        await cache.store(FormattedSHA256.calculate(b"other"), iterate(DATA))
    assert len(cache.blobs) == 1


async def test_filesystem_cache(tmp_path: Path):
    """Test that blobs are stored and loaded from disk, one file per digest."""
    cache = FilesystemCache(tmp_path)
    assert await cache.load(DIGEST) is None
    assert await cache.store(DIGEST, iterate(DATA))
    path = tmp_path.joinpath("sha256", DIGEST.hex)
    assert path.read_bytes() == DATA
    assert await collect(await cache.load(DIGEST)) == DATA

    # Another instance observes the same content
    assert await collect(await FilesystemCache(tmp_path).load(DIGEST)) == DATA


async def test_filesystem_cache_mismatch(tmp_path: Path):
    """Test that mismatched content is rejected, and leaves nothing behind."""
    cache = FilesystemCache(tmp_path)
    digest = FormattedSHA256.calculate(b"other")
    with pytest.raises(IntegrityError):
        await cache.store(digest, iterate(DATA))
    assert await cache.load(digest) is None
    assert not list(tmp_path.joinpath("sha256").iterdir())


async def test_filesystem_cache_concurrent(tmp_path: Path):
    """Test that concurrent writers of the same digest are serialized."""
    cache = FilesystemCache(tmp_path)
    results = await asyncio.gather(
        *[cache.store(DIGEST, iterate(DATA, 16)) for _ in range(5)]
    )
    assert all(results)
    assert [path.name for path in tmp_path.joinpath("sha256").iterdir()] == [DIGEST.hex]
    assert await collect(await cache.load(DIGEST)) == DATA


async def test_read_only_cache():
    """Test that a read only cache serves, but declines to store, blobs."""
    inner = MemoryCache()
    await inner.store(DIGEST, iterate(DATA))
    cache = ReadOnlyCache(inner)
    assert await collect(await cache.load(DIGEST)) == DATA

    digest = FormattedSHA256.calculate(b"new")
    assert not await cache.store(digest, iterate(b"new"))
    assert await cache.load(digest) is None
