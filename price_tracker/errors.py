class PriceTrackerError(Exception):
    pass


class FetchError(PriceTrackerError):
    """
    An upstream call that did not produce a usable response.
    `attempts` is filled in by the retry loop once it gives up.
    """

    def __init__(self, message: str, status: int | None = None, code: str | None = None,
                 attempts: int | None = None):
        super().__init__(message)
        self.status = status
        self.code = code
        self.attempts = attempts

    def __str__(self):
        base = super().__str__()
        extra = []
        if self.status is not None:
            extra.append(f"status={self.status}")
        if self.code:
            extra.append(f"code={self.code}")
        if self.attempts is not None:
            extra.append(f"attempts={self.attempts}")
        return f"{base} ({', '.join(extra)})" if extra else base


class TransientNetworkError(FetchError):
    pass


class RateLimited(FetchError):
    def __init__(self, status: int, retry_after: float | None = None, attempts: int | None = None):
        super().__init__(f"HTTP {status}", status=status, attempts=attempts)
        self.retry_after = retry_after


class RejectedRequest(FetchError):
    pass


class UpstreamErrorPayload(PriceTrackerError):
    """HTTP succeeded but the body is an `error_response`."""

    def __init__(self, code=None, sub_code=None, message: str = "", payload: dict | None = None):
        super().__init__(f"upstream error_response code={code} sub_code={sub_code}: {message}")
        self.code = code
        self.sub_code = sub_code
        self.payload = payload or {}


class EnrichError(PriceTrackerError):
    def __init__(self, product_id: str, attempts: int | None = None, cause: Exception | None = None):
        super().__init__(f"detail fetch failed for product {product_id}: {cause}")
        self.product_id = product_id
        self.attempts = attempts
        self.code = getattr(cause, "code", None)
        self.sub_code = getattr(cause, "sub_code", None)


class PersistenceError(PriceTrackerError):
    def __init__(self, product_id: str, message: str, index: int | None = None, code: int | None = None):
        super().__init__(f"write failed for product {product_id}: {message}")
        self.product_id = product_id
        self.index = index
        self.code = code
        self.message = message

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "index": self.index,
            "code": self.code,
            "message": self.message,
        }
