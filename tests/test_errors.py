#!/usr/bin/env python

"""Error mapping and retry tests."""

import asyncio
import json

import pytest

from aiohttp import ClientConnectionError

from oci_registry_client_async import (
    Backoff,
    CanceledError,
    gcr_backoff,
    IntegrityError,
    NotFoundError,
    ProtocolError,
    RepositoryCopyError,
    TransientError,
    UnauthorizedError,
)
from oci_registry_client_async.errors import (
    BODY_PREFIX_SIZE,
    decode_errors,
    error_from_status,
    has_status,
    is_retryable,
)
from oci_registry_client_async.retry import retry

pytestmark = [pytest.mark.asyncio]

NO_SLEEP = Backoff(duration=0.0, factor=1.0, jitter=0.0, steps=3)


@pytest.mark.parametrize(
    "status,error_type",
    [
        (400, ProtocolError),
        (401, UnauthorizedError),
        (403, UnauthorizedError),
        (404, NotFoundError),
        (405, ProtocolError),
        (416, ProtocolError),
        (429, TransientError),
        (500, TransientError),
        (503, TransientError),
    ],
)
async def test_error_from_status(status: int, error_type):
    """Test that status codes map to error types."""
    error = error_from_status(status, method="GET", url="http://example.com/v2/")
    assert type(error) is error_type  # pylint: disable=unidiomatic-typecheck
    assert error.status == status
    assert "GET http://example.com/v2/" in str(error)
    assert has_status(error, status)


async def test_error_details():
    """Test that registry error documents are decoded, and bodies are truncated."""
    body = json.dumps(
        {"errors": [{"code": "MANIFEST_UNKNOWN", "message": "manifest unknown", "detail": {"Tag": "x"}}]}
    ).encode("utf-8")
    error = error_from_status(404, body=body)
    assert error.has_code("MANIFEST_UNKNOWN")
    assert not error.has_code("BLOB_UNKNOWN")
    assert error.errors[0].detail == {"Tag": "x"}
    assert "MANIFEST_UNKNOWN: manifest unknown" in str(error)

    error = error_from_status(500, body=b"x" * (BODY_PREFIX_SIZE * 2))
    assert len(error.body) == BODY_PREFIX_SIZE
    assert "Internal Server Error" in str(error)

    assert not decode_errors(b"not json")
    assert not decode_errors(b'{"errors": "nope"}')
    assert not decode_errors(b"[]")


@pytest.mark.parametrize(
    "error,result",
    [
        (error_from_status(429), True),
        (error_from_status(502), True),
        (error_from_status(404), False),
        (error_from_status(401), False),
        (error_from_status(400), False),
        (IntegrityError("x"), False),
        (CanceledError("x"), False),
        (ClientConnectionError("x"), True),
        (asyncio.TimeoutError(), True),
        (ConnectionResetError(), True),
        (ValueError("x"), False),
    ],
)
async def test_is_retryable(error: BaseException, result: bool):
    """Test retry classification."""
    assert is_retryable(error) == result


async def test_repository_copy_error():
    """Test that per repository failures are aggregated."""
    error = RepositoryCopyError({"example.com/a": ValueError("one"), "example.com/b": ValueError("two")})
    assert "2 repositories" in str(error)
    assert "example.com/a: one" in str(error)
    assert set(error.errors) == {"example.com/a", "example.com/b"}


async def test_backoff_sleep():
    """Test exponential backoff, with jitter and a cap."""
    backoff = Backoff(duration=1.0, factor=3.0, jitter=0.1, steps=3)
    assert backoff.attempts() == 4
    assert backoff.sleep(0, rand=lambda: 0.5) == pytest.approx(1.0)
    assert backoff.sleep(2, rand=lambda: 0.5) == pytest.approx(9.0)
    assert backoff.sleep(2, rand=lambda: 0.0) == pytest.approx(8.1)
    assert backoff.sleep(2, rand=lambda: 1.0) == pytest.approx(9.9)

    backoff = gcr_backoff()
    assert backoff.sleep(1, rand=lambda: 0.5) == pytest.approx(60.0)
    assert backoff.sleep(10, rand=lambda: 0.5) == pytest.approx(3600.0)


async def test_retry():
    """Test that retryable errors are retried until the policy is exhausted."""
    attempts = []

    async def _flaky():
        attempts.append(True)
        if len(attempts) < 3:
            raise error_from_status(503)
        return "ok"

    assert await retry(_flaky, backoff=NO_SLEEP) == "ok"
    assert len(attempts) == 3

    attempts.clear()

    async def _failing():
        attempts.append(True)
        raise error_from_status(429)

    with pytest.raises(TransientError):
        await retry(_failing, backoff=NO_SLEEP)
    assert len(attempts) == NO_SLEEP.attempts()


async def test_retry_not_retryable():
    """Test that other errors are raised immediately."""
    attempts = []

    async def _missing():
        attempts.append(True)
        raise error_from_status(404)

    with pytest.raises(NotFoundError):
        await retry(_missing, backoff=NO_SLEEP)
    assert len(attempts) == 1

    attempts.clear()
    with pytest.raises(NotFoundError):
        await retry(_missing, backoff=NO_SLEEP, predicate=lambda error: True)
    assert len(attempts) == NO_SLEEP.attempts()
