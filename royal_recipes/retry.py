"""Retrying calls to a rate limited api.

Rate limit errors are retried with exponential backoff. Anything else fails
straight away.
"""

import asyncio
from enum import Enum
import logging
from typing import Awaitable, Callable

import httpx

from royal_recipes.errors import (
    EmptyResponse,
    RateLimited,
    SchemaMismatch,
)


logger = logging.getLogger(__name__)


MAX_ATTEMPTS = 3
BASE_DELAY_MS = 2000
RATE_LIMIT_STATUS = 429


type Sleep = Callable[[float], Awaitable[None]]


class ErrorKind(Enum):
    rate_limited = "rate_limited"
    empty_response = "empty_response"
    schema_mismatch = "schema_mismatch"
    upstream_failure = "upstream_failure"


def _statuses_of(error: BaseException) -> list[object]:
    if isinstance(error, httpx.HTTPStatusError):
        return [error.response.status_code]
    return [getattr(error, attr, None) for attr in ("status", "status_code", "code")]


def classify_error(error: BaseException) -> ErrorKind:
    """Sort an error into one of a closed set of kinds.

    Known exception types are checked first, then a 429 carried on any of
    ``status``, ``status_code`` or ``code``. As a last resort the message is
    searched for ``"429"`` or ``"quota"``.
    """
    if isinstance(error, RateLimited):
        return ErrorKind.rate_limited
    if isinstance(error, EmptyResponse):
        return ErrorKind.empty_response
    if isinstance(error, SchemaMismatch):
        return ErrorKind.schema_mismatch

    statuses = _statuses_of(error)
    if RATE_LIMIT_STATUS in statuses or str(RATE_LIMIT_STATUS) in statuses:
        return ErrorKind.rate_limited

    msg = str(error)
    if "429" in msg or "quota" in msg:
        return ErrorKind.rate_limited

    return ErrorKind.upstream_failure


def backoff_delay_ms(attempt: int, *, base_delay_ms: int = BASE_DELAY_MS) -> int:
    """Wait before retrying after the zero-based ``attempt`` failed."""
    return base_delay_ms * 2**attempt


async def retry_with_backoff[T](
    op: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = MAX_ATTEMPTS,
    base_delay_ms: int = BASE_DELAY_MS,
    sleep: Sleep | None = None,
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1.")
    sleep = asyncio.sleep if sleep is None else sleep

    attempt = 0
    while True:
        try:
            return await op()
        except Exception as e:
            last = attempt == max_attempts - 1
            if last or classify_error(e) is not ErrorKind.rate_limited:
                raise
            wait = backoff_delay_ms(attempt, base_delay_ms=base_delay_ms)
            logger.warning("Rate limit hit. Retrying in %dms...", wait)
            await sleep(wait / 1000)
            attempt += 1
