from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from discount_issuer.core.config import settings
from discount_issuer.core.kv_store import KeyValueStore
from discount_issuer.core.redis_client import json_dumps, json_loads

logger = logging.getLogger(__name__)

SESSION_CACHE_PREFIX = "discount_session"


@dataclass(frozen=True)
class IssuanceRecord:
    campaign_id: str
    code: str
    issued_at_epoch_millis: int


def _cache_key(session_id: str, campaign_id: str) -> str:
    return f"{SESSION_CACHE_PREFIX}:{session_id}:{campaign_id}"


def _decode_record(raw: str, campaign_id: str) -> IssuanceRecord | None:
    data = json_loads(raw)
    if not isinstance(data, dict):
        return None
    code = str(data.get("code") or "").strip()
    if not code:
        return None
    return IssuanceRecord(
        campaign_id=str(data.get("campaignId") or campaign_id),
        code=code,
        issued_at_epoch_millis=int(data.get("timestamp") or 0),
    )


class IdempotencyCache:
    """
    Remembers the code issued to a visitor session for a campaign.

    Entries expire a fixed ``ttl_seconds`` after issuance. A failing backend
    degrades to "always miss": a duplicate code is acceptable, a failed request is not.
    """

    def __init__(self, store: KeyValueStore, *, ttl_seconds: int | None = None) -> None:
        self._store = store
        self._ttl_seconds = int(settings.idempotency_ttl_seconds if ttl_seconds is None else ttl_seconds)

    async def get_or_none(self, session_id: str, campaign_id: str) -> IssuanceRecord | None:
        try:
            raw = await self._store.get(_cache_key(session_id, campaign_id))
            if not raw:
                return None
            return _decode_record(raw, campaign_id)
        except Exception as exc:
            logger.warning(
                "idempotency_cache_read_failed",
                extra={"campaign_id": campaign_id, "error": str(exc)},
            )
            return None

    async def put(self, session_id: str, campaign_id: str, code: str) -> None:
        record = {"campaignId": campaign_id, "code": code, "timestamp": int(time.time() * 1000)}
        try:
            await self._store.set(_cache_key(session_id, campaign_id), json_dumps(record), ttl_seconds=self._ttl_seconds)
        except Exception as exc:
            logger.warning(
                "idempotency_cache_write_failed",
                extra={"campaign_id": campaign_id, "error": str(exc)},
            )
