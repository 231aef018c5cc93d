import hashlib
import hmac


def sign_sha256(params: dict, secret: str) -> str:
    """
    AliExpress open-platform signature:
    keys sorted, `sign` and null values skipped, key+value concatenated,
    HMAC-SHA256 with the app secret, upper-case hex.
    """
    base = "".join(
        f"{k}{params[k]}"
        for k in sorted(params)
        if params[k] is not None and k != "sign"
    )
    return hmac.new(secret.encode("utf-8"), base.encode("utf-8"), hashlib.sha256).hexdigest().upper()
