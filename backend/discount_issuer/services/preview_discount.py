from __future__ import annotations

import logging
import math
from typing import Any, Mapping

from discount_issuer.core.kv_store import KeyValueStore
from discount_issuer.core.redis_client import json_loads

logger = logging.getLogger(__name__)

PREVIEW_CAMPAIGN_PREFIX = "preview-"
PREVIEW_SESSION_PREFIX = "session:preview"
DEFAULT_PREVIEW_CODE = "PREVIEW-SAVE"
DEFAULT_PREVIEW_PREFIX = "PREVIEW"
DEFAULT_PREVIEW_BEHAVIOR = "SHOW_CODE_AND_AUTO_APPLY"


def is_preview_campaign(campaign_id: str | None) -> bool:
    return bool(campaign_id) and str(campaign_id).startswith(PREVIEW_CAMPAIGN_PREFIX)


def preview_token(campaign_id: str) -> str:
    return campaign_id[len(PREVIEW_CAMPAIGN_PREFIX):] if is_preview_campaign(campaign_id) else ""


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return float(value)
    return None


def _preview_kind(config: Mapping[str, Any]) -> str | None:
    value_type = str(config.get("valueType") or "").strip().upper()
    if value_type:
        return value_type
    legacy = str(config.get("type") or "").strip().lower()
    if legacy in {"percentage", "fixed_amount", "free_shipping"}:
        return legacy.upper()
    if _number(config.get("value")) is not None or _number(config.get("percentage")) is not None:
        return "PERCENTAGE"
    return None


def generate_preview_discount_code(config: Mapping[str, Any] | None) -> str | None:
    """
    Derive a human readable mock code from a previewed discount config.

    ``None`` means the previewed discount is switched off (e.g. a "try again"
    wheel segment); an empty or unknown config gives the generic preview code.
    """
    if not config:
        return DEFAULT_PREVIEW_CODE
    if config.get("enabled") is False:
        return None
    prefix = str(config.get("prefix") or "").strip() or DEFAULT_PREVIEW_PREFIX
    kind = _preview_kind(config)
    value = _number(config.get("value"))
    if kind == "PERCENTAGE":
        if value is None:
            value = _number(config.get("percentage"))
        return f"{prefix}-{_round_half_up(value if value is not None else 10)}OFF"
    if kind == "FIXED_AMOUNT":
        return f"{prefix}-${_round_half_up(value if value is not None else 10)}"
    if kind == "FREE_SHIPPING":
        return f"{prefix}-FREESHIP"
    return DEFAULT_PREVIEW_CODE


class PreviewSessionSource:
    """Reads the discount config a merchant is previewing, by preview token."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def get_discount_config(self, token: str) -> Mapping[str, Any] | None:
        if not token:
            return None
        try:
            raw = await self._store.get(f"{PREVIEW_SESSION_PREFIX}:{token}")
            if not raw:
                return None
            session_data = json_loads(raw)
        except Exception as exc:
            logger.warning("preview_session_read_failed", extra={"error": str(exc)})
            return None
        data = session_data.get("data") if isinstance(session_data, dict) else None
        config = data.get("discountConfig") if isinstance(data, dict) else None
        return config if isinstance(config, Mapping) else None
