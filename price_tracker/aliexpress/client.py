import asyncio
import json
import logging
import random
import time
from typing import Awaitable, Callable
from urllib.parse import urlencode

import aiohttp

from price_tracker.aliexpress.signing import sign_sha256
from price_tracker.errors import FetchError, RateLimited, RejectedRequest, TransientNetworkError
from price_tracker.utils.retry import (
    TRANSIENT_CODES,
    Decision,
    RetryPolicy,
    retry_async,
    transport_error_code,
)

logger = logging.getLogger(__name__)

AE_API_URL = "https://api-sg.aliexpress.com/sync"
AE_API_VERSION = "1.0"


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return max(seconds, 0.0)


def classify_http_error(exc: BaseException, attempt: int) -> Decision:
    if isinstance(exc, (RateLimited, TransientNetworkError)):
        return Decision.RETRY
    return Decision.FATAL


async def _get_json_once(session: aiohttp.ClientSession, url: str, timeout: float) -> dict:
    try:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
            if 200 <= resp.status < 300:
                body = await resp.read()
                try:
                    return json.loads(body.decode("utf-8"))
                except ValueError:
                    logger.warning(f"Malformed JSON body from upstream (status {resp.status}); treating as empty")
                    return {}

            if resp.status == 429 or 500 <= resp.status <= 599:
                raise RateLimited(resp.status, retry_after=_parse_retry_after(resp.headers.get("Retry-After")))

            body = (await resp.read()).decode("utf-8", errors="replace")
            raise RejectedRequest(f"HTTP {resp.status}: {body[:300]}", status=resp.status)

    except FetchError:
        raise
    except (asyncio.TimeoutError, aiohttp.ClientError, OSError) as e:
        code = transport_error_code(e)
        if code in TRANSIENT_CODES:
            raise TransientNetworkError(f"transport error: {e!r}", code=code) from e
        raise FetchError(f"transport error: {e!r}", code=code) from e


async def fetch_json_with_retry(
    session: aiohttp.ClientSession,
    url: str,
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rand: Callable[[], float] = random.random,
) -> dict:
    """
    GET `url` and parse the JSON body.

    - 2xx: parsed body, or {} if the body is not valid JSON
    - 429 / 5xx: retried, honoring Retry-After when the server sends one
    - other 4xx: RejectedRequest, no retry
    - timeout / connection reset / DNS try-again: retried
    - any other transport error: FetchError, no retry
    """
    return await retry_async(
        lambda: _get_json_once(session, url, policy.request_timeout),
        policy,
        classify_http_error,
        sleep=sleep,
        rand=rand,
        label=f"GET {url.split('?', 1)[0]}",
    )


class AliExpressClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        app_key: str,
        app_secret: str,
        tracking_id: str,
        policy: RetryPolicy,
        api_url: str = AE_API_URL,
        signer: Callable[[dict, str], str] = sign_sha256,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session = session
        self.app_key = app_key
        self.app_secret = app_secret
        self.tracking_id = tracking_id
        self.policy = policy
        self.api_url = api_url
        self.signer = signer
        self.sleep = sleep

    def build_url(self, method: str, params: dict) -> str:
        """System params + business params, signed once, as a GET URL."""
        signed = {
            "app_key": self.app_key,
            "method": method,
            "sign_method": "sha256",
            "timestamp": int(time.time() * 1000),
            "v": AE_API_VERSION,
            "tracking_id": self.tracking_id,
            **params,
        }
        signed = {k: v for k, v in signed.items() if v is not None}
        signed["sign"] = self.signer(signed, self.app_secret)
        return f"{self.api_url}?{urlencode(signed)}"

    async def call(self, method: str, params: dict, policy: RetryPolicy | None = None) -> dict:
        url = self.build_url(method, params)
        return await fetch_json_with_retry(self.session, url, policy or self.policy, sleep=self.sleep)
