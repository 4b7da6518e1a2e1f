from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from discount_issuer.core import metrics
from discount_issuer.core.config import settings
from discount_issuer.core.dependencies import get_storefront_shop
from discount_issuer.core.kv_store import get_key_value_store
from discount_issuer.core.rate_limit import RateLimiter, discount_issue_limit, get_rate_limiter, rate_limit_bypassed
from discount_issuer.db.session import get_session
from discount_issuer.schemas.discounts import DiscountIssueRequest, DiscountIssueResponse
from discount_issuer.services.analytics import AnalyticsSink, DatabaseAnalyticsSink, LoggingAnalyticsSink
from discount_issuer.services.campaigns import CampaignSource, SqlCampaignSource
from discount_issuer.services.discount_issuance import DiscountIssuanceService
from discount_issuer.services.idempotency import IdempotencyCache
from discount_issuer.services.issuance_errors import InvalidRequest
from discount_issuer.services.preview_discount import PreviewSessionSource
from discount_issuer.services.provisioning import HttpProvisioningGateway, ProvisioningGateway
from discount_issuer.services.storefront_validation import validate_storefront_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/discounts", tags=["discounts"])

BOT_DECOY_RESPONSE = {"success": True, "code": "THANK-YOU-10", "type": "PERCENTAGE", "behavior": "SHOW_CODE_ONLY"}


def get_campaign_source(session: AsyncSession = Depends(get_session)) -> CampaignSource:
    return SqlCampaignSource(session)


def get_idempotency_cache() -> IdempotencyCache:
    return IdempotencyCache(get_key_value_store(), ttl_seconds=settings.idempotency_ttl_seconds)


def get_preview_sessions() -> PreviewSessionSource:
    return PreviewSessionSource(get_key_value_store())


def get_provisioning_gateway() -> ProvisioningGateway:
    return HttpProvisioningGateway.from_settings()


def get_analytics_sink(session: AsyncSession = Depends(get_session)) -> AnalyticsSink:
    if (settings.analytics_sink or "").strip().lower() == "log":
        return LoggingAnalyticsSink()
    return DatabaseAnalyticsSink(session)


def get_issuance_service(
    campaigns: CampaignSource = Depends(get_campaign_source),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    gateway: ProvisioningGateway = Depends(get_provisioning_gateway),
    analytics: AnalyticsSink = Depends(get_analytics_sink),
    previews: PreviewSessionSource = Depends(get_preview_sessions),
) -> DiscountIssuanceService:
    return DiscountIssuanceService(
        campaigns=campaigns,
        cache=cache,
        rate_limiter=rate_limiter,
        gateway=gateway,
        analytics=analytics,
        previews=previews,
        provisioning_timeout_seconds=settings.provisioning_timeout_seconds,
        rate_limit=discount_issue_limit(),
        bypass_rate_limit=rate_limit_bypassed(),
    )


def _client_ip(request: Request) -> str | None:
    forwarded = (request.headers.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


@router.post("/issue")
async def issue_discount(
    payload: DiscountIssueRequest,
    request: Request,
    shop: str = Depends(get_storefront_shop),
    service: DiscountIssuanceService = Depends(get_issuance_service),
) -> dict[str, Any]:
    validation = validate_storefront_request(
        honeypot=payload.honeypot,
        popup_shown_at=payload.popup_shown_at,
        min_dwell_ms=settings.bot_min_dwell_ms,
    )
    if not validation.valid:
        if validation.bot_likely:
            metrics.record_bot_decoy()
            logger.warning(
                "discount_bot_detected",
                extra={"campaign_id": payload.campaign_id, "reason": validation.reason, "ip": _client_ip(request)},
            )
            return dict(BOT_DECOY_RESPONSE)
        if validation.reason == "session_expired":
            raise InvalidRequest("Session expired. Please refresh the page.")
        raise InvalidRequest()

    result = await service.issue(
        payload.to_issuance_request(),
        shop_domain=shop,
        user_agent=request.headers.get("user-agent"),
        ip_address=_client_ip(request),
    )
    return DiscountIssueResponse.from_result(result).model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get("/issue", include_in_schema=False)
def issue_discount_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        content={"error": "Method not allowed. Use POST to issue discounts."},
    )
