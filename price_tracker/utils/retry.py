"""
Shared retry loop and backoff math.

Both the HTTP fetch layer and the generic `with_retry` wrapper go through
`retry_async`; they only differ in the classifier that decides whether an
error is worth another attempt.
"""
import asyncio
import errno
import logging
import random
import socket
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import aiohttp

from price_tracker.errors import FetchError, RejectedRequest, UpstreamErrorPayload

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "EAI_AGAIN"})


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 4
    base_delay: float = 0.6
    backoff_factor: float = 2.0
    jitter: float = 0.35
    max_delay: float = 10.0
    request_timeout: float = 18.0


class Decision(str, Enum):
    RETRY = "retry"
    FATAL = "fatal"


def backoff_delay(policy: RetryPolicy, attempt: int, rand: Callable[[], float] = random.random) -> float:
    """min(base * factor^attempt, max) scaled by a uniform factor in [1 - jitter, 1 + jitter]."""
    backoff = min(policy.base_delay * (policy.backoff_factor ** attempt), policy.max_delay)
    return backoff * (1 + (rand() * 2 - 1) * policy.jitter)


def transport_error_code(exc: BaseException) -> str | None:
    """
    Map a transport-level exception (or anything in its cause chain) to one of
    the POSIX-style codes the retry classifiers understand.
    """
    seen = set()
    current = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))

        if isinstance(current, asyncio.TimeoutError):
            return "ETIMEDOUT"
        if isinstance(current, aiohttp.ServerDisconnectedError):
            return "ECONNRESET"
        if isinstance(current, ConnectionResetError):
            return "ECONNRESET"
        if isinstance(current, socket.gaierror):
            if current.errno == socket.EAI_AGAIN:
                return "EAI_AGAIN"
            return f"EAI_{current.errno}"
        if isinstance(current, OSError) and current.errno is not None:
            if current.errno in (errno.ECONNRESET, errno.ETIMEDOUT):
                return errno.errorcode[current.errno]

        code = getattr(current, "code", None)
        if isinstance(code, str) and code:
            return code

        os_error = getattr(current, "os_error", None)
        if isinstance(os_error, BaseException):
            current = os_error
        else:
            current = current.__cause__ or current.__context__
    return None


def is_transient_code(exc: BaseException) -> bool:
    return transport_error_code(exc) in TRANSIENT_CODES


FATAL_ERRORS = (UpstreamErrorPayload, RejectedRequest)


def classify_transient(exc: BaseException, attempt: int) -> Decision:
    if isinstance(exc, FATAL_ERRORS):
        return Decision.FATAL
    # otherwise only the first attempt short-circuits on a non-transient error
    if not is_transient_code(exc) and attempt == 0:
        return Decision.FATAL
    return Decision.RETRY


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    classify: Callable[[BaseException, int], Decision],
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
    label: str = "operation",
) -> T:
    """
    Run `operation` until it succeeds, the classifier says FATAL, or
    `policy.max_retries` retries have been spent. The final attempt never sleeps.

    An exception carrying a `retry_after` (seconds) overrides the computed delay.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            decision = classify(exc, attempt)
            if decision is Decision.FATAL or attempt >= policy.max_retries:
                if isinstance(exc, FetchError):
                    exc.attempts = attempt + 1
                raise

            retry_after = getattr(exc, "retry_after", None)
            delay = retry_after if retry_after is not None else backoff_delay(policy, attempt, rand)
            logger.warning(
                f"{label} failed (attempt {attempt + 1}/{policy.max_retries + 1}): {exc}; "
                f"retrying in {delay:.2f}s"
            )
            await sleep(delay)
            attempt += 1


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
    label: str = "operation",
) -> T:
    """Generic retry for non-HTTP coroutines, judged by transport error codes only."""
    return await retry_async(operation, policy, classify_transient, sleep=sleep, rand=rand, label=label)
