from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from discount_issuer.models.campaign import Campaign, CampaignStatus


@dataclass(frozen=True)
class CampaignRecord:
    id: str
    store_id: str
    shop_domain: str
    name: str
    status: str
    discount_config: Any

    @property
    def is_active(self) -> bool:
        return self.status == CampaignStatus.active.value


class CampaignSource(Protocol):
    async def get_campaign(self, campaign_id: str) -> CampaignRecord | None: ...


def _to_record(campaign: Campaign) -> CampaignRecord:
    status = campaign.status.value if isinstance(campaign.status, CampaignStatus) else str(campaign.status)
    return CampaignRecord(
        id=campaign.id,
        store_id=campaign.store_id,
        shop_domain=campaign.shop_domain,
        name=campaign.name,
        status=status,
        discount_config=campaign.discount_config,
    )


class SqlCampaignSource:
    """Read-only campaign lookup against the ``campaigns`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_campaign(self, campaign_id: str) -> CampaignRecord | None:
        result = await self._session.execute(select(Campaign).where(Campaign.id == campaign_id))
        campaign = result.scalar_one_or_none()
        if campaign is None:
            return None
        return _to_record(campaign)
