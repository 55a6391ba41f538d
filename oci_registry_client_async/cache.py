#!/usr/bin/env python

"""Content addressed blob caches."""

import asyncio
import logging
import uuid

from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterable, AsyncIterator, Dict, Optional

import aiofiles
import aiofiles.os

from .errors import IntegrityError
from .formattedsha256 import FormattedSHA256
from .hashinggenerator import HashingIterator
from .utils import CHUNK_SIZE

LOGGER = logging.getLogger(__name__)


class BlobCache(ABC):
    """
    Stores blobs by digest. Implementations must be safe for concurrent use. Only positive results are cached.
    """

    @abstractmethod
    async def load(self, digest: FormattedSHA256) -> Optional[AsyncIterator[bytes]]:
        """
        Retrieves a blob.

        Args:
            digest: The digest of the blob.

        Returns:
            The blob content, or None on a cache miss.
        """

    @abstractmethod
    async def store(self, digest: FormattedSHA256, chunks: AsyncIterable[bytes]) -> bool:
        """
        Stores a blob, consuming the given stream.

        Args:
            digest: The digest of the blob.
            chunks: The blob content.

        Returns:
            True if the blob was stored; False if the cache declined it (without consuming the stream).
        """


class MemoryCache(BlobCache):
    """A cache held in memory."""

    def __init__(self):
        self.blobs = {}  # type: Dict[str, bytes]

    async def load(self, digest: FormattedSHA256) -> Optional[AsyncIterator[bytes]]:
        data = self.blobs.get(str(digest), None)
        if data is None:
            return None

        async def _chunks():
            yield data

        return _chunks()

    async def store(self, digest: FormattedSHA256, chunks: AsyncIterable[bytes]) -> bool:
        data = b"".join([chunk async for chunk in chunks])
        if FormattedSHA256.calculate(data) != digest:
            raise IntegrityError(f"Refusing to cache content that does not match {digest}")
        self.blobs[str(digest)] = data
        return True


class FilesystemCache(BlobCache):
    """
    A cache stored in a directory, one file per blob. Writes are atomic and serialized per digest.
    """

    def __init__(self, path: Path):
        """
        Args:
            path: The directory in which blobs are stored.
        """
        self.locks = {}  # type: Dict[str, asyncio.Lock]
        self.path = Path(path)

    def _get_lock(self, digest: FormattedSHA256) -> asyncio.Lock:
        key = str(digest)
        if key not in self.locks:
            self.locks[key] = asyncio.Lock()
        return self.locks[key]

    def _get_path(self, digest: FormattedSHA256) -> Path:
        return self.path.joinpath(digest.algorithm, digest.hex)

    async def load(self, digest: FormattedSHA256) -> Optional[AsyncIterator[bytes]]:
        path = self._get_path(digest)
        if not await aiofiles.os.path.isfile(path):
            return None

        async def _chunks():
            async with aiofiles.open(path, mode="rb") as file:
                while True:
                    chunk = await file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk

        return _chunks()

    async def store(self, digest: FormattedSHA256, chunks: AsyncIterable[bytes]) -> bool:
        path = self._get_path(digest)
        async with self._get_lock(digest):
            if await aiofiles.os.path.isfile(path):
                return True
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            temporary = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
            iterator = HashingIterator(chunks)
            try:
                async with aiofiles.open(temporary, mode="wb") as file:
                    async for chunk in iterator:
                        await file.write(chunk)
                actual = iterator.get_digest()
                if actual != digest:
                    raise IntegrityError(
                        f"Refusing to cache content that does not match {digest}: {actual}"
                    )
                await aiofiles.os.replace(temporary, path)
            finally:
                if await aiofiles.os.path.exists(temporary):
                    await aiofiles.os.remove(temporary)
        LOGGER.debug("Cached blob: %s", digest)
        return True


class ReadOnlyCache(BlobCache):
    """Serves blobs from another cache, silently declining writes."""

    def __init__(self, cache: BlobCache):
        self.cache = cache

    async def load(self, digest: FormattedSHA256) -> Optional[AsyncIterator[bytes]]:
        return await self.cache.load(digest)

    async def store(self, digest: FormattedSHA256, chunks: AsyncIterable[bytes]) -> bool:
        return False
