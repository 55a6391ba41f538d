#!/usr/bin/env python

"""Utility classes."""

import asyncio
import contextvars
import hashlib
import os
import re

from functools import wraps, partial
from typing import AsyncIterable, Awaitable, Callable, Iterable, List, Optional

from .errors import CanceledError, IntegrityError
from .formattedsha256 import FormattedSHA256
from .typing import UtilsChunkToFile

# https://github.com/docker/docker-py/blob/master/docker/constants.py
CHUNK_SIZE = int(os.environ.get("ORCA_CHUNK_SIZE", 2097152))

RANGE_PATTERN = re.compile(r"^(?:bytes=)?(?P<start>\d+)-(?P<end>\d+)$")

# Cancellation handle observed by every request issued within the current context
CANCEL_EVENT = contextvars.ContextVar("CANCEL_EVENT", default=None)


def async_wrap(func):
    """Decorates a given function for execution via an executor."""
    # https://dev.to/0xbf/turn-sync-function-to-async-python-tips-58nn
    @wraps(func)
    async def run_in_executor(*args, executor=None, **kwargs):
        loop = asyncio.get_running_loop()
        partial_func = partial(func, *args, **kwargs)
        return await loop.run_in_executor(executor, partial_func)

    return run_in_executor


async def be_kind_rewind(file, *, file_is_async: bool = True, offset: int = 0):
    """
    Reset the file position (offset) to the absolute beginning, or to a given offset.

    Args:
        file: The file for which to reset the offset.
        file_is_async: If True, all file IO operations will be awaited.
        offset: The absolute position to assign.
    """
    if file_is_async:
        coroutine = file.seek(offset)
    else:
        coroutine = async_wrap(file.seek)(offset)
    await coroutine


async def chunk_to_file(
    chunks: AsyncIterable[bytes], file, *, file_is_async: bool = True
) -> UtilsChunkToFile:
    """
    Asynchronously stores chunks to a given file.

    Args:
        chunks: The asynchronous iterable from which to read the chunks.
        file: The file to which to store the chunks.
        file_is_async: If True, all file IO operations will be awaited.

    Returns:
        digest: The digest value of the chunked data.
        size: The byte size of the chunked data in bytes.
    """
    hasher = hashlib.sha256()
    size = 0
    coroutine = file.write if file_is_async else async_wrap(file.write)
    async for chunk in chunks:
        await coroutine(chunk)
        hasher.update(chunk)
        size += len(chunk)

    await be_kind_rewind(file, file_is_async=file_is_async)

    return UtilsChunkToFile(digest=FormattedSHA256.from_hasher(hasher), size=size)


def check_canceled(event: Optional[asyncio.Event] = None):
    """
    Raises CanceledError if a given cancellation handle, or the handle bound to the current context, is set.

    Args:
        event: The cancellation handle; defaults to the handle bound to the current context.
    """
    if event is None:
        event = CANCEL_EVENT.get()
    if event is not None and event.is_set():
        raise CanceledError("Operation canceled")


def must_be_equal(
    expected,
    actual,
    msg: str = "Actual value does not match expected value",
    *,
    error_type=IntegrityError,
):
    """
    Compares two values and raises an exception if they are not equal.

    Args:
        expected: The expected value.
        actual: The actual value.
        msg: Message describing the context of the comparison.
        error_type: The type of exception to be raised if not equal.
    """
    if actual != expected:
        raise error_type(f"{msg}: {actual} != {expected}")


def parse_range(value: Optional[str]) -> Optional[int]:
    """
    Parses the inclusive end offset from a registry "Range" header (e.g. "0-1048575").

    Args:
        value: The header value.

    Returns:
        The inclusive end offset, or None if the header is absent or malformed.
    """
    if not value:
        return None
    match = RANGE_PATTERN.match(value.strip())
    if not match:
        return None
    return int(match.group("end"))


async def run_bounded(
    factories: Iterable[Callable[[], Awaitable]], *, limit: int
) -> List:
    """
    Runs coroutines with bounded concurrency. The first failure cancels all outstanding coroutines and is raised.

    Args:
        factories: Callables that each return the awaitable to be executed.
        limit: The maximum number of awaitables executing at once.

    Returns:
        The results, in the order of the given factories.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(factory):
        async with semaphore:
            return await factory()

    tasks = [asyncio.ensure_future(_run(factory)) for factory in factories]
    if not tasks:
        return []
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return [task.result() for task in tasks]
