#!/usr/bin/env python

# pylint: disable=redefined-outer-name

"""HashingGenerator tests."""

from pathlib import Path
from typing import Generator, NamedTuple

import aiofiles
import pytest
import pytest_asyncio

from oci_registry_client_async import FormattedSHA256, IntegrityError
from oci_registry_client_async.hashinggenerator import (
    hash_chunks,
    HashingGenerator,
    HashingIterator,
    VerifyingIterator,
)

from .testutils import collect, hash_file, iterate, raw_manifests

pytestmark = [pytest.mark.asyncio]


class TypingHashingGenerator(NamedTuple):
    # pylint: disable=missing-class-docstring
    hashing_generator: HashingGenerator
    path: Path


@pytest.fixture(params=raw_manifests(), ids=lambda x: x["media_type"])
def manifest_name(request, tmp_path: Path) -> Path:
    """Provides raw manifest files."""
    path = tmp_path.joinpath("manifest.json")
    path.write_bytes(request.param["bytes"])
    return path


@pytest_asyncio.fixture()
async def hashing_generator_async(
    manifest_name: Path,
) -> Generator[TypingHashingGenerator, None, None]:
    """Provides hashing generator instance and associated data."""
    async with aiofiles.open(manifest_name, mode="r+b") as file:
        yield TypingHashingGenerator(
            hashing_generator=HashingGenerator(file, chunk_size=16), path=manifest_name
        )


@pytest.fixture()
def hashing_generator_sync(
    manifest_name: Path,
) -> Generator[TypingHashingGenerator, None, None]:
    """Provides hashing generator instance and associated data."""
    with manifest_name.open("r+b") as file:
        yield TypingHashingGenerator(
            hashing_generator=HashingGenerator(file, file_is_async=False, chunk_size=16),
            path=manifest_name,
        )


async def test_get_digest_async(
    hashing_generator_async: TypingHashingGenerator,
):
    """Test digest value calculation (async)."""
    async for _ in hashing_generator_async.hashing_generator:
        pass
    digest = await hash_file(hashing_generator_async.path)
    assert hashing_generator_async.hashing_generator.get_digest() == digest
    assert (
        hashing_generator_async.hashing_generator.get_size()
        == hashing_generator_async.path.stat().st_size
    )


async def test_get_digest_sync(
    hashing_generator_sync: TypingHashingGenerator,
):
    """Test digest value calculation (sync)."""
    async for _ in hashing_generator_sync.hashing_generator:
        pass
    digest = await hash_file(hashing_generator_sync.path)
    assert hashing_generator_sync.hashing_generator.get_digest() == digest


async def test_hashing_iterator():
    """Test that chunks are forwarded unmodified while being hashed."""
    data = b"forwarded content"
    iterator = HashingIterator(iterate(data))
    assert await collect(iterator) == data
    assert iterator.get_digest() == FormattedSHA256.calculate(data)
    assert iterator.get_size() == len(data)


async def test_hash_chunks():
    """Test that an iterable can be hashed without retaining it."""
    data = b"x" * 100
    result = await hash_chunks(iterate(data))
    assert result.digest == FormattedSHA256.calculate(data)
    assert result.size == 100


@pytest.mark.parametrize(
    "data,size",
    [(b"verified content", None), (b"verified content", 16), (b"", 0)],
)
async def test_verifying_iterator(data: bytes, size):
    """Test that matching content is forwarded."""
    iterator = VerifyingIterator(iterate(data), FormattedSHA256.calculate(data), size)
    assert await collect(iterator) == data


async def test_verifying_iterator_digest_mismatch():
    """Test that a digest mismatch is raised once the stream is exhausted."""
    digest = FormattedSHA256.calculate(b"expected")
    chunks = []
    with pytest.raises(IntegrityError) as exc_info:
        async for chunk in VerifyingIterator(iterate(b"tampered"), digest):
            chunks.append(chunk)
    assert "Digest mismatch" in str(exc_info.value)
    assert b"".join(chunks) == b"tampered"


async def test_verifying_iterator_size():
    """Test that size overflows are raised eagerly, and underflows at the end of the stream."""
    data = b"0123456789" * 3
    digest = FormattedSHA256.calculate(data)

    chunks = []
    with pytest.raises(IntegrityError) as exc_info:
        async for chunk in VerifyingIterator(iterate(data, 10), digest, 15):
            chunks.append(chunk)
    assert "overflow" in str(exc_info.value)
    assert len(chunks) == 1

    with pytest.raises(IntegrityError) as exc_info:
        await collect(VerifyingIterator(iterate(data), digest, 31))
    assert "Size mismatch" in str(exc_info.value)
