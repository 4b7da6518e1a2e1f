from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from discount_issuer.core.config import settings
from discount_issuer.services.discount_config import DiscountConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisioningResult:
    success: bool
    discount_code: str | None = None
    tier_used: int | None = None
    is_new_discount: bool = False
    errors: tuple[str, ...] = ()

    @classmethod
    def failure(cls, *errors: str) -> "ProvisioningResult":
        return cls(success=False, errors=tuple(errors))


class ProvisioningGateway(Protocol):
    async def get_or_create_discount_code(
        self,
        store_id: str,
        campaign_id: str,
        config: DiscountConfig,
        cart_subtotal_cents: int | None,
        *,
        selected_tier: int | None = None,
    ) -> ProvisioningResult: ...


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _errors_from(data: dict[str, Any]) -> tuple[str, ...]:
    raw = data.get("errors") or []
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, list):
        return ()
    errors: list[str] = []
    for item in raw:
        message = item.get("message") if isinstance(item, dict) else item
        if message:
            errors.append(str(message))
    return tuple(errors)


def parse_provisioning_response(data: Any) -> ProvisioningResult:
    if not isinstance(data, dict):
        return ProvisioningResult.failure("Malformed provisioning response")
    code = str(data.get("discountCode") or "").strip() or None
    return ProvisioningResult(
        success=bool(data.get("success")) and code is not None,
        discount_code=code,
        tier_used=_optional_int(data.get("tierUsed")),
        is_new_discount=bool(data.get("isNewDiscount")),
        errors=_errors_from(data),
    )


class HttpProvisioningGateway:
    """Client for the commerce-side service that creates or reuses real discount codes."""

    def __init__(
        self,
        base_url: str | None,
        *,
        api_key: str | None = None,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or "").rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "HttpProvisioningGateway":
        return cls(
            settings.provisioning_base_url,
            api_key=settings.provisioning_api_key,
            timeout=settings.provisioning_timeout_seconds,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def get_or_create_discount_code(
        self,
        store_id: str,
        campaign_id: str,
        config: DiscountConfig,
        cart_subtotal_cents: int | None,
        *,
        selected_tier: int | None = None,
    ) -> ProvisioningResult:
        if not self._base_url:
            return ProvisioningResult.failure("Provisioning gateway is not configured")
        payload = {
            "storeId": store_id,
            "campaignId": campaign_id,
            "cartSubtotalCents": cart_subtotal_cents,
            "selectedTier": selected_tier,
            "config": config.to_payload(),
        }
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, headers=self._headers(), transport=self._transport
            ) as client:
                resp = await client.post("/discount-codes", json=payload)
        except httpx.TimeoutException:
            logger.warning("provisioning_timeout", extra={"campaign_id": campaign_id})
            return ProvisioningResult.failure("Discount provisioning timed out")
        except httpx.HTTPError as exc:
            logger.warning("provisioning_http_error", extra={"campaign_id": campaign_id, "error": str(exc)})
            return ProvisioningResult.failure("Discount provisioning unavailable")

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = None
        if resp.status_code >= 400:
            errors = _errors_from(data) if isinstance(data, dict) else ()
            return ProvisioningResult.failure(*(errors or (f"Provisioning gateway returned HTTP {resp.status_code}",)))
        return parse_provisioning_response(data)
