import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from discount_issuer.services.discount_issuance import IssuanceRequest, IssuanceResult
from discount_issuer.services.preview_discount import PREVIEW_CAMPAIGN_PREFIX

CAMPAIGN_ID_RE = re.compile(r"^[cC][^\s-]{8,}$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DiscountIssueRequest(_CamelModel):
    campaign_id: str = Field(min_length=1, max_length=128)
    session_id: str = Field(min_length=1, max_length=255)
    cart_subtotal_cents: int | None = Field(default=None, ge=0)
    visitor_id: str | None = Field(default=None, max_length=255)
    selected_product_ids: list[str] | None = Field(default=None, max_length=250)
    cart_product_ids: list[str] | None = Field(default=None, max_length=250)
    popup_shown_at: int | None = None
    honeypot: str | None = None

    @field_validator("campaign_id")
    @classmethod
    def validate_campaign_id(cls, value: str) -> str:
        cleaned = value.strip()
        if cleaned.startswith(PREVIEW_CAMPAIGN_PREFIX) or CAMPAIGN_ID_RE.fullmatch(cleaned):
            return cleaned
        raise ValueError("Invalid campaign ID format")

    @field_validator("session_id")
    @classmethod
    def validate_session_id(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Session ID is required")
        return cleaned

    def to_issuance_request(self) -> IssuanceRequest:
        return IssuanceRequest(
            campaign_id=self.campaign_id,
            session_id=self.session_id,
            cart_subtotal_cents=self.cart_subtotal_cents,
            selected_product_ids=tuple(self.selected_product_ids or ()),
            cart_product_ids=tuple(self.cart_product_ids or ()),
            visitor_id=self.visitor_id,
        )


class DiscountIssueResponse(_CamelModel):
    success: bool = True
    code: str
    type: str | None = None
    tier_used: str | None = None
    expires_at: datetime | None = None
    usage_remaining: int | None = None
    applicability: dict[str, Any] | None = None
    behavior: str
    cached: bool | None = None
    message: str | None = None

    @classmethod
    def from_result(cls, result: IssuanceResult) -> "DiscountIssueResponse":
        return cls(
            code=result.code,
            type=result.value_type,
            tier_used=result.tier_used,
            expires_at=result.expires_at,
            usage_remaining=result.usage_remaining,
            applicability=result.applicability,
            behavior=result.behavior,
            cached=True if result.cached else None,
            message=result.message,
        )
