"""
Discount issuance pipeline.

One request walks Validating -> RateLimitCheck -> IdempotencyCheck -> Resolving ->
Provisioning -> Recording -> Responding, or stops early in ``cached_hit`` or with
an ``IssuanceError``. Preview campaign ids never leave the preview branch.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Sequence

from discount_issuer.core import metrics
from discount_issuer.core.rate_limit import RateLimit, RateLimiter, discount_issue_limit, session_identifier
from discount_issuer.services.analytics import AnalyticsSink, IssuanceEvent
from discount_issuer.services.campaigns import CampaignRecord, CampaignSource
from discount_issuer.services.discount_config import (
    DiscountBehavior,
    DiscountConfig,
    DiscountValueType,
    normalize_discount_config,
)
from discount_issuer.services.discount_scope import apply_scope_overrides
from discount_issuer.services.discount_tiers import select_tier, tier_label
from discount_issuer.services.idempotency import IdempotencyCache
from discount_issuer.services.issuance_errors import (
    CampaignUnavailable,
    DiscountDisabled,
    IssuanceError,
    ProvisioningFailed,
    RateLimited,
)
from discount_issuer.services.preview_discount import (
    DEFAULT_PREVIEW_BEHAVIOR,
    DEFAULT_PREVIEW_CODE,
    PreviewSessionSource,
    generate_preview_discount_code,
    is_preview_campaign,
    preview_token,
)
from discount_issuer.services.provisioning import ProvisioningGateway, ProvisioningResult

logger = logging.getLogger(__name__)

RATE_LIMIT_OPERATION = "discount_issue"


class _KeyedLocks:
    """Per-key asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._holders: dict[tuple[str, str], int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: tuple[str, str]) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]


# Serializes issuance for one (session, campaign) inside this process so a
# duplicate request waits for the first one and then reads its cached code.
_issuance_locks = _KeyedLocks()


class IssuanceState(str, enum.Enum):
    validating = "validating"
    rate_limit_check = "rate_limit_check"
    idempotency_check = "idempotency_check"
    resolving = "resolving"
    provisioning = "provisioning"
    recording = "recording"
    responding = "responding"
    cached_hit = "cached_hit"
    rejected = "rejected"
    preview = "preview"


@dataclass(frozen=True)
class IssuanceRequest:
    campaign_id: str
    session_id: str
    cart_subtotal_cents: int | None = None
    selected_product_ids: tuple[str, ...] = ()
    cart_product_ids: tuple[str, ...] = ()
    visitor_id: str | None = None


@dataclass(frozen=True)
class ResolvedDiscount:
    config: DiscountConfig
    tier_index: int | None = None


@dataclass(frozen=True)
class IssuanceResult:
    code: str
    state: IssuanceState
    behavior: str
    value_type: str | None = None
    tier_used: str | None = None
    applicability: dict[str, Any] | None = None
    expires_at: datetime | None = None
    usage_remaining: int | None = None
    cached: bool = False
    message: str | None = None


def resolve_discount(
    raw_config: Any,
    *,
    selected_product_ids: Sequence[str] = (),
    cart_product_ids: Sequence[str] = (),
    cart_subtotal_cents: int | None = None,
) -> ResolvedDiscount:
    """Normalize, apply request scoping, then pick the tier the cart qualifies for."""
    config = normalize_discount_config(raw_config)
    config = apply_scope_overrides(config, selected_product_ids, cart_product_ids)
    return ResolvedDiscount(config=config, tier_index=select_tier(config.tiers, cart_subtotal_cents))


def _enter(trail: list[IssuanceState], request: IssuanceRequest, state: IssuanceState) -> None:
    trail.append(state)
    logger.debug("discount_issuance_state", extra={"campaign_id": request.campaign_id, "state": state.value})


def _effective_value_type(config: DiscountConfig, tier_index: int | None) -> DiscountValueType:
    if tier_index is not None and tier_index < len(config.tiers):
        override = config.tiers[tier_index].value_type
        if override is not None:
            return override
    return config.value_type


class DiscountIssuanceService:
    def __init__(
        self,
        *,
        campaigns: CampaignSource,
        cache: IdempotencyCache,
        rate_limiter: RateLimiter,
        gateway: ProvisioningGateway,
        analytics: AnalyticsSink,
        previews: PreviewSessionSource,
        provisioning_timeout_seconds: float = 5.0,
        rate_limit: RateLimit | None = None,
        bypass_rate_limit: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._campaigns = campaigns
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._gateway = gateway
        self._analytics = analytics
        self._previews = previews
        self._timeout = provisioning_timeout_seconds
        self._rate_limit = rate_limit or discount_issue_limit()
        self._bypass_rate_limit = bypass_rate_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def issue(
        self,
        request: IssuanceRequest,
        *,
        shop_domain: str,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> IssuanceResult:
        if is_preview_campaign(request.campaign_id):
            return await self._issue_preview(request)

        trail: list[IssuanceState] = []
        try:
            return await self._issue_live(
                request, trail, shop_domain=shop_domain, user_agent=user_agent, ip_address=ip_address
            )
        except IssuanceError as exc:
            logger.info(
                "discount_issuance_rejected",
                extra={
                    "campaign_id": request.campaign_id,
                    "stage": trail[-1].value if trail else None,
                    "error_code": exc.code,
                },
            )
            _enter(trail, request, IssuanceState.rejected)
            raise

    async def _issue_live(
        self,
        request: IssuanceRequest,
        trail: list[IssuanceState],
        *,
        shop_domain: str,
        user_agent: str | None,
        ip_address: str | None,
    ) -> IssuanceResult:
        _enter(trail, request, IssuanceState.validating)
        campaign, config = await self._validate(request, shop_domain)
        _enter(trail, request, IssuanceState.rate_limit_check)
        await self._check_rate_limit(request)

        async with _issuance_locks.hold((request.session_id, request.campaign_id)):
            _enter(trail, request, IssuanceState.idempotency_check)
            cached = await self._cache.get_or_none(request.session_id, request.campaign_id)
            if cached is not None:
                metrics.record_cache_hit()
                logger.info("discount_cache_hit", extra={"campaign_id": request.campaign_id})
                _enter(trail, request, IssuanceState.cached_hit)
                return IssuanceResult(
                    code=cached.code,
                    state=IssuanceState.cached_hit,
                    behavior=config.behavior.value,
                    cached=True,
                )

            _enter(trail, request, IssuanceState.resolving)
            resolved = resolve_discount(
                campaign.discount_config,
                selected_product_ids=request.selected_product_ids,
                cart_product_ids=request.cart_product_ids,
                cart_subtotal_cents=request.cart_subtotal_cents,
            )
            _enter(trail, request, IssuanceState.provisioning)
            result = await self._provision(campaign, resolved, request.cart_subtotal_cents)
            code = result.discount_code or ""
            _enter(trail, request, IssuanceState.recording)
            await self._cache.put(request.session_id, request.campaign_id, code)

        tier_index = result.tier_used if result.tier_used is not None else resolved.tier_index
        await self._record_analytics(
            IssuanceEvent(
                store_id=campaign.store_id,
                campaign_id=campaign.id,
                session_id=request.session_id,
                code=code,
                tier_used=tier_index,
                cart_subtotal_cents=request.cart_subtotal_cents,
                user_agent=user_agent,
                ip_address=ip_address,
            )
        )
        metrics.record_code_issued()
        logger.info(
            "discount_issued",
            extra={
                "campaign_id": campaign.id,
                "strategy": resolved.config.strategy.value,
                "tier_used": tier_index,
                "is_new": result.is_new_discount,
            },
        )
        _enter(trail, request, IssuanceState.responding)
        return self._respond(code, resolved.config, tier_index)

    async def _issue_preview(self, request: IssuanceRequest) -> IssuanceResult:
        preview_config = await self._previews.get_discount_config(preview_token(request.campaign_id))
        code = DEFAULT_PREVIEW_CODE
        behavior = DEFAULT_PREVIEW_BEHAVIOR
        if preview_config is not None:
            code = generate_preview_discount_code(preview_config) or DEFAULT_PREVIEW_CODE
            behavior = str(preview_config.get("behavior") or DEFAULT_PREVIEW_BEHAVIOR)
        metrics.record_preview_code()
        logger.info("discount_preview_issued", extra={"campaign_id": request.campaign_id})
        return IssuanceResult(
            code=code,
            state=IssuanceState.preview,
            behavior=behavior,
            message="Preview mode: Discount code generated (mock code)",
        )

    async def _validate(self, request: IssuanceRequest, shop_domain: str) -> tuple[CampaignRecord, DiscountConfig]:
        campaign = await self._campaigns.get_campaign(request.campaign_id)
        if campaign is None or not campaign.is_active or campaign.shop_domain != shop_domain:
            raise CampaignUnavailable()
        config = normalize_discount_config(campaign.discount_config)
        if not config.enabled:
            raise DiscountDisabled()
        return campaign, config

    async def _check_rate_limit(self, request: IssuanceRequest) -> None:
        if self._bypass_rate_limit:
            return
        decision = await self._rate_limiter.check_and_consume(
            session_identifier(request.session_id), RATE_LIMIT_OPERATION, self._rate_limit
        )
        if not decision.allowed:
            metrics.record_rate_limited()
            raise RateLimited(retry_after_seconds=decision.retry_after_seconds)

    async def _provision(
        self, campaign: CampaignRecord, resolved: ResolvedDiscount, cart_subtotal_cents: int | None
    ) -> ProvisioningResult:
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._gateway.get_or_create_discount_code(
                    campaign.store_id,
                    campaign.id,
                    resolved.config,
                    cart_subtotal_cents,
                    selected_tier=resolved.tier_index,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            metrics.record_provisioning_failure()
            logger.warning("discount_provisioning_timeout", extra={"campaign_id": campaign.id, "timeout": self._timeout})
            raise ProvisioningFailed("Discount provisioning timed out")
        except Exception:
            metrics.record_provisioning_failure()
            logger.exception("discount_provisioning_error", extra={"campaign_id": campaign.id})
            raise ProvisioningFailed()
        if not result.success or not result.discount_code:
            metrics.record_provisioning_failure()
            logger.warning(
                "discount_provisioning_failed",
                extra={"campaign_id": campaign.id, "errors": list(result.errors)},
            )
            raise ProvisioningFailed.from_errors(list(result.errors))
        logger.debug(
            "discount_provisioned",
            extra={"campaign_id": campaign.id, "duration_ms": int((time.monotonic() - started) * 1000)},
        )
        return result

    async def _record_analytics(self, event: IssuanceEvent) -> None:
        try:
            await self._analytics.record_issuance(event)
        except Exception:
            logger.exception("discount_analytics_failed", extra={"campaign_id": event.campaign_id})

    def _respond(self, code: str, config: DiscountConfig, tier_index: int | None) -> IssuanceResult:
        tier_used = None
        if tier_index is not None and 0 <= tier_index < len(config.tiers):
            tier_used = tier_label(config.tiers[tier_index], tier_index)
        else:
            tier_index = None
        expires_at = None
        if config.expiry_days:
            expires_at = self._clock() + timedelta(days=config.expiry_days)
        return IssuanceResult(
            code=code,
            state=IssuanceState.responding,
            behavior=(config.behavior or DiscountBehavior.show_code_and_auto_apply).value,
            value_type=_effective_value_type(config, tier_index).value,
            tier_used=tier_used,
            applicability=config.applicability.to_payload(),
            expires_at=expires_at,
            usage_remaining=config.usage_limit,
        )
