from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from discount_issuer.models.popup_event import PopupEvent

logger = logging.getLogger(__name__)

COUPON_ISSUED = "COUPON_ISSUED"


@dataclass(frozen=True)
class IssuanceEvent:
    store_id: str
    campaign_id: str
    session_id: str
    code: str
    tier_used: int | None = None
    cart_subtotal_cents: int | None = None
    user_agent: str | None = None
    ip_address: str | None = None


class AnalyticsSink(Protocol):
    async def record_issuance(self, event: IssuanceEvent) -> None: ...


class LoggingAnalyticsSink:
    async def record_issuance(self, event: IssuanceEvent) -> None:
        logger.info(
            "coupon_issued",
            extra={
                "store_id": event.store_id,
                "campaign_id": event.campaign_id,
                "tier_used": event.tier_used,
                "cart_subtotal_cents": event.cart_subtotal_cents,
            },
        )


class DatabaseAnalyticsSink:
    """Stores issuance events as ``popup_events`` rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_issuance(self, event: IssuanceEvent) -> None:
        self._session.add(
            PopupEvent(
                store_id=event.store_id,
                campaign_id=event.campaign_id,
                session_id=event.session_id or "unknown",
                event_type=COUPON_ISSUED,
                user_agent=event.user_agent[:512] if event.user_agent else None,
                ip_address=event.ip_address,
                event_metadata={
                    "discountCode": event.code,
                    "tierUsed": event.tier_used,
                    "cartSubtotalCents": event.cart_subtotal_cents,
                    "source": "api_issue",
                },
            )
        )
        try:
            await self._session.commit()
        except Exception:
            await self._session.rollback()
            raise
