from discount_issuer.db.base import Base  # noqa: F401
from discount_issuer.models.campaign import Campaign, CampaignStatus  # noqa: F401
from discount_issuer.models.popup_event import PopupEvent  # noqa: F401

__all__ = [
    "Base",
    "Campaign",
    "CampaignStatus",
    "PopupEvent",
]
