#!/usr/bin/env python

"""Generators that hash the data they retrieve."""

import hashlib

from typing import AsyncIterable, AsyncIterator, Optional

from .errors import IntegrityError
from .formattedsha256 import FormattedSHA256
from .typing import HashChunks
from .utils import async_wrap, be_kind_rewind, CHUNK_SIZE


class HashingGenerator:
    """
    Generator that hashes the data it retrieves from a file.
    """

    def __init__(
        self, file, *, file_is_async: bool = True, chunk_size: int = CHUNK_SIZE
    ):
        """
        Args:
            file: The file from which to retrieve the file chunks.
            file_is_async: If True, all file IO operations will be awaited.
            chunk_size: The maximum size of each retrieved chunk.
        """
        self.chunk_size = chunk_size
        self.file = file
        self.file_is_async = file_is_async
        self.hasher = hashlib.sha256()
        self.size = 0

    async def __aiter__(self):
        # https://docs.aiohttp.org/en/stable/client_quickstart.html#streaming-uploads
        coroutine = self.file.read if self.file_is_async else async_wrap(self.file.read)
        while True:
            chunk = await coroutine(self.chunk_size)
            if not chunk:
                break
            self.hasher.update(chunk)
            self.size += len(chunk)
            yield chunk

        await be_kind_rewind(self.file, file_is_async=self.file_is_async)

    def get_digest(self) -> FormattedSHA256:
        """Retrieves the digest value of the read data."""
        return FormattedSHA256.from_hasher(self.hasher)

    def get_size(self) -> int:
        """Retrieves the size (length) of the read data."""
        return self.size


class HashingIterator:
    """
    Forwards chunks from an asynchronous iterable while hashing and counting them.
    """

    def __init__(self, chunks: AsyncIterable[bytes]):
        self.chunks = chunks
        self.hasher = hashlib.sha256()
        self.size = 0

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[bytes]:
        async for chunk in self.chunks:
            self._update(chunk)
            yield chunk
        self._finish()

    def _finish(self):
        pass

    def _update(self, chunk: bytes):
        self.hasher.update(chunk)
        self.size += len(chunk)

    def get_digest(self) -> FormattedSHA256:
        """Retrieves the digest value of the forwarded data."""
        return FormattedSHA256.from_hasher(self.hasher)

    def get_size(self) -> int:
        """Retrieves the size (length) of the forwarded data."""
        return self.size


class VerifyingIterator(HashingIterator):
    """
    Forwards chunks from an asynchronous iterable, raising IntegrityError once the stream is exhausted if the
    content does not match the expected digest (and size). A size overflow is raised as soon as it is observed.
    """

    def __init__(
        self,
        chunks: AsyncIterable[bytes],
        digest: FormattedSHA256,
        size: Optional[int] = None,
    ):
        """
        Args:
            chunks: The chunks to be verified.
            digest: The expected digest value.
            size: The expected size, if known.
        """
        super().__init__(chunks)
        self.expected_digest = digest
        self.expected_size = size

    def _finish(self):
        if self.expected_size is not None and self.size != self.expected_size:
            raise IntegrityError(
                f"Size mismatch for {self.expected_digest}: {self.size} != {self.expected_size}"
            )
        digest = self.get_digest()
        if digest != self.expected_digest:
            raise IntegrityError(
                f"Digest mismatch: {digest} != {self.expected_digest}"
            )

    def _update(self, chunk: bytes):
        super()._update(chunk)
        if self.expected_size is not None and self.size > self.expected_size:
            raise IntegrityError(
                f"Size overflow for {self.expected_digest}: read {self.size} of {self.expected_size} bytes"
            )


async def hash_chunks(chunks: AsyncIterable[bytes]) -> HashChunks:
    """
    Consumes an asynchronous iterable, hashing and counting its content.

    Args:
        chunks: The asynchronous iterable to be consumed.

    Returns:
        digest: The digest value of the consumed data.
        size: The byte size of the consumed data.
    """
    iterator = HashingIterator(chunks)
    async for _ in iterator:
        pass
    return HashChunks(digest=iterator.get_digest(), size=iterator.get_size())
