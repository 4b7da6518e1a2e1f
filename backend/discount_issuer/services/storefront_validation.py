from __future__ import annotations

import time
from dataclasses import dataclass

# Allowance for clock drift between the visitor's browser and this service.
_CLOCK_SKEW_MS = 5 * 60 * 1000
_MAX_POPUP_AGE_MS = 24 * 60 * 60 * 1000


@dataclass(frozen=True)
class StorefrontValidation:
    valid: bool
    bot_likely: bool = False
    reason: str | None = None


VALID = StorefrontValidation(valid=True)


def validate_storefront_request(
    *,
    honeypot: str | None,
    popup_shown_at: int | None,
    min_dwell_ms: int,
    now_ms: int | None = None,
) -> StorefrontValidation:
    """Cheap request-shape checks run before a request may reach issuance."""
    if (honeypot or "").strip():
        return StorefrontValidation(valid=False, bot_likely=True, reason="honeypot")
    if popup_shown_at is None:
        return VALID
    now = int(time.time() * 1000) if now_ms is None else now_ms
    if popup_shown_at > now + _CLOCK_SKEW_MS:
        return StorefrontValidation(valid=False, reason="invalid_timestamp")
    if now - popup_shown_at > _MAX_POPUP_AGE_MS:
        return StorefrontValidation(valid=False, reason="session_expired")
    if min_dwell_ms > 0 and now - popup_shown_at < min_dwell_ms:
        return StorefrontValidation(valid=False, bot_likely=True, reason="too_fast")
    return VALID
