import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, String, func
from sqlalchemy.orm import Mapped, mapped_column

from discount_issuer.db.base import Base


class CampaignStatus(str, enum.Enum):
    draft = "DRAFT"
    active = "ACTIVE"
    paused = "PAUSED"
    archived = "ARCHIVED"


class Campaign(Base):
    __tablename__ = "campaigns"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    store_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[CampaignStatus] = mapped_column(
        Enum(CampaignStatus, native_enum=False, values_callable=lambda members: [m.value for m in members]),
        nullable=False,
        default=CampaignStatus.draft,
    )
    # Merchant-authored, loosely typed; normalized at issuance time.
    discount_config: Mapped[Any] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
