from __future__ import annotations

import hashlib
import hmac
import time
from typing import Mapping, Sequence

_SIGNATURE_PARAM = "signature"


def app_proxy_message(params: Mapping[str, Sequence[str]]) -> str:
    """Sorted ``key=value`` pairs, multi-values joined by commas, no separators."""
    pairs = [
        f"{key}={','.join(values)}"
        for key, values in params.items()
        if key != _SIGNATURE_PARAM
    ]
    return "".join(sorted(pairs))


def sign_app_proxy_params(params: Mapping[str, Sequence[str]], secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), app_proxy_message(params).encode("utf-8"), hashlib.sha256).hexdigest()


def verify_app_proxy_params(
    params: Mapping[str, Sequence[str]],
    *,
    secret: str,
    max_skew_seconds: int,
    now: float | None = None,
) -> str | None:
    """Return the shop domain of a correctly signed, fresh app proxy request, else None."""
    if not secret:
        return None
    signature = "".join(params.get(_SIGNATURE_PARAM) or [])
    shop = "".join(params.get("shop") or []).strip()
    if not signature or not shop:
        return None
    expected = sign_app_proxy_params(params, secret)
    if not hmac.compare_digest(expected, signature):
        return None
    if max_skew_seconds > 0:
        try:
            timestamp = int("".join(params.get("timestamp") or []))
        except ValueError:
            return None
        current = time.time() if now is None else now
        if abs(current - timestamp) > max_skew_seconds:
            return None
    return shop
