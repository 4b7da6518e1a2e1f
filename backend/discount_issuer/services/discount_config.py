"""
Canonical discount configuration.

Merchant-authored configs arrive as loosely typed JSON. ``normalize_discount_config``
turns them into a ``DiscountConfig`` whose ``offer`` is exactly one of the offer
variants below; the strategy is decided there once and read from the variant
everywhere else.
"""

from __future__ import annotations

import enum
import json
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_DISCOUNT_VALUE = 10.0
DEFAULT_EXPIRY_DAYS = 30
DEFAULT_CODE_PREFIX = "WELCOME"


class DiscountStrategy(str, enum.Enum):
    basic = "basic"
    tiered = "tiered"
    bogo = "bogo"
    free_gift = "free_gift"
    bundle = "bundle"


class DiscountValueType(str, enum.Enum):
    percentage = "PERCENTAGE"
    fixed_amount = "FIXED_AMOUNT"
    free_shipping = "FREE_SHIPPING"


class DiscountBehavior(str, enum.Enum):
    show_code_and_auto_apply = "SHOW_CODE_AND_AUTO_APPLY"
    show_code_only = "SHOW_CODE_ONLY"
    auto_apply_only = "AUTO_APPLY_ONLY"


class ApplicabilityScope(str, enum.Enum):
    all = "all"
    products = "products"
    collections = "collections"
    cart = "cart"


_VALUE_TYPE_ALIASES = {
    "percentage": DiscountValueType.percentage,
    "percent": DiscountValueType.percentage,
    "fixed_amount": DiscountValueType.fixed_amount,
    "fixed": DiscountValueType.fixed_amount,
    "amount": DiscountValueType.fixed_amount,
    "free_shipping": DiscountValueType.free_shipping,
}


@dataclass(frozen=True)
class DiscountTier:
    threshold_cents: int
    value: float | None = None
    value_type: DiscountValueType | None = None


@dataclass(frozen=True)
class Applicability:
    scope: ApplicabilityScope = ApplicabilityScope.all
    product_ids: tuple[str, ...] = ()
    collection_ids: tuple[str, ...] = ()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"scope": self.scope.value}
        if self.product_ids:
            payload["productIds"] = list(self.product_ids)
        if self.collection_ids:
            payload["collectionIds"] = list(self.collection_ids)
        return payload


@dataclass(frozen=True)
class BasicOffer:
    strategy: ClassVar[DiscountStrategy] = DiscountStrategy.basic


@dataclass(frozen=True)
class TieredOffer:
    strategy: ClassVar[DiscountStrategy] = DiscountStrategy.tiered

    tiers: tuple[DiscountTier, ...]


@dataclass(frozen=True)
class BogoBuy:
    scope: str
    ids: tuple[str, ...]
    quantity: int
    min_subtotal_cents: int | None = None


@dataclass(frozen=True)
class BogoGet:
    scope: str
    ids: tuple[str, ...]
    quantity: int
    discount_kind: str
    discount_value: float
    applies_once_per_order: bool = True


@dataclass(frozen=True)
class BogoOffer:
    strategy: ClassVar[DiscountStrategy] = DiscountStrategy.bogo

    buy: BogoBuy
    get: BogoGet


@dataclass(frozen=True)
class FreeGiftOffer:
    strategy: ClassVar[DiscountStrategy] = DiscountStrategy.free_gift

    product_id: str
    variant_id: str
    quantity: int = 1
    min_subtotal_cents: int | None = None


@dataclass(frozen=True)
class BundleOffer:
    strategy: ClassVar[DiscountStrategy] = DiscountStrategy.bundle

    product_ids: tuple[str, ...]


DiscountOffer = Union[BasicOffer, TieredOffer, BogoOffer, FreeGiftOffer, BundleOffer]


@dataclass(frozen=True)
class DiscountConfig:
    enabled: bool = False
    offer: DiscountOffer = field(default_factory=BasicOffer)
    value_type: DiscountValueType = DiscountValueType.percentage
    value: float | None = DEFAULT_DISCOUNT_VALUE
    applicability: Applicability = field(default_factory=Applicability)
    behavior: DiscountBehavior = DiscountBehavior.show_code_and_auto_apply
    expiry_days: int | None = None
    usage_limit: int | None = None
    minimum_amount: float | None = None
    prefix: str | None = None

    @property
    def strategy(self) -> DiscountStrategy:
        return self.offer.strategy

    @property
    def tiers(self) -> tuple[DiscountTier, ...]:
        if isinstance(self.offer, TieredOffer):
            return self.offer.tiers
        return ()

    def with_changes(self, **changes: Any) -> "DiscountConfig":
        return replace(self, **changes)

    def to_payload(self) -> dict[str, Any]:
        """camelCase rendering used on the wire to the provisioning gateway."""
        payload: dict[str, Any] = {
            "enabled": self.enabled,
            "strategy": self.strategy.value,
            "valueType": self.value_type.value,
            "value": self.value,
            "applicability": self.applicability.to_payload(),
            "behavior": self.behavior.value,
            "expiryDays": self.expiry_days,
            "usageLimit": self.usage_limit,
            "minimumAmount": self.minimum_amount,
            "prefix": self.prefix,
        }
        offer = self.offer
        if isinstance(offer, TieredOffer):
            payload["tiers"] = [
                {
                    "thresholdCents": tier.threshold_cents,
                    "valueOverride": tier.value,
                    "valueType": tier.value_type.value if tier.value_type else None,
                }
                for tier in offer.tiers
            ]
        elif isinstance(offer, BogoOffer):
            payload["bogo"] = {
                "buy": {
                    "scope": offer.buy.scope,
                    "ids": list(offer.buy.ids),
                    "quantity": offer.buy.quantity,
                    "minSubtotalCents": offer.buy.min_subtotal_cents,
                },
                "get": {
                    "scope": offer.get.scope,
                    "ids": list(offer.get.ids),
                    "quantity": offer.get.quantity,
                    "discount": {"kind": offer.get.discount_kind, "value": offer.get.discount_value},
                    "appliesOncePerOrder": offer.get.applies_once_per_order,
                },
            }
        elif isinstance(offer, FreeGiftOffer):
            payload["freeGift"] = {
                "productId": offer.product_id,
                "variantId": offer.variant_id,
                "quantity": offer.quantity,
                "minSubtotalCents": offer.min_subtotal_cents,
            }
        elif isinstance(offer, BundleOffer):
            payload["bundle"] = {"productIds": list(offer.product_ids)}
        return payload


DISABLED_CONFIG = DiscountConfig()


# Raw input shapes. Each sub-object is validated on its own so one malformed
# block does not take the rest of the config down with it.


class _RawModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _RawTierDiscount(_RawModel):
    kind: Literal["percentage", "fixed", "free_shipping"]
    value: float = Field(default=0, ge=0)


class _RawTier(_RawModel):
    threshold_cents: int = Field(alias="thresholdCents", ge=0)
    value_override: float | None = Field(default=None, alias="valueOverride", ge=0)
    discount: _RawTierDiscount | None = None


class _RawBogoBuy(_RawModel):
    scope: Literal["any", "products", "collections"] = "any"
    ids: list[str] = Field(default_factory=list)
    quantity: int = Field(ge=1)
    min_subtotal_cents: int | None = Field(default=None, alias="minSubtotalCents", ge=0)


class _RawBogoDiscount(_RawModel):
    kind: Literal["percentage", "fixed", "free_product"]
    value: float = Field(ge=0, le=100)


class _RawBogoGet(_RawModel):
    scope: Literal["products", "collections"]
    ids: list[str] = Field(min_length=1)
    quantity: int = Field(ge=1)
    discount: _RawBogoDiscount
    applies_once_per_order: bool = Field(default=True, alias="appliesOncePerOrder")


class _RawBogo(_RawModel):
    buy: _RawBogoBuy
    get: _RawBogoGet


class _RawFreeGift(_RawModel):
    product_id: str = Field(alias="productId", min_length=1)
    variant_id: str = Field(alias="variantId", min_length=1)
    quantity: int = Field(default=1, ge=1)
    min_subtotal_cents: int | None = Field(default=None, alias="minSubtotalCents", ge=0)


def _coerce_mapping(raw: Any) -> Mapping[str, Any] | None:
    if isinstance(raw, (str, bytes)):
        if not raw:
            return None
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    return raw if isinstance(raw, Mapping) else None


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if cleaned in {"true", "1", "yes"}:
            return True
        if cleaned in {"false", "0", "no"}:
            return False
    return default


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def _coerce_positive_int(value: Any) -> int | None:
    number = _coerce_number(value)
    if number is None or number < 1 or number != int(number):
        return None
    return int(number)


def _coerce_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None


def _coerce_ids(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    seen: dict[str, None] = {}
    for item in value:
        if isinstance(item, int) and not isinstance(item, bool):
            cleaned: str | None = str(item)
        else:
            cleaned = _coerce_str(item)
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


def _coerce_value_type(value: Any) -> DiscountValueType | None:
    cleaned = _coerce_str(value)
    if cleaned is None:
        return None
    try:
        return DiscountValueType(cleaned.upper())
    except ValueError:
        return _VALUE_TYPE_ALIASES.get(cleaned.lower())


def _coerce_behavior(value: Any) -> DiscountBehavior:
    cleaned = _coerce_str(value)
    if cleaned is not None:
        try:
            return DiscountBehavior(cleaned.upper())
        except ValueError:
            pass
    return DiscountBehavior.show_code_and_auto_apply


def _coerce_applicability(value: Any) -> Applicability:
    if not isinstance(value, Mapping):
        return Applicability()
    scope_raw = (_coerce_str(value.get("scope")) or "all").lower()
    try:
        scope = ApplicabilityScope(scope_raw)
    except ValueError:
        scope = ApplicabilityScope.all
    return Applicability(
        scope=scope,
        product_ids=_coerce_ids(value.get("productIds")),
        collection_ids=_coerce_ids(value.get("collectionIds")),
    )


def _tier_from_raw(raw: _RawTier) -> DiscountTier:
    if raw.discount is not None:
        value_type = _VALUE_TYPE_ALIASES[raw.discount.kind]
        value = None if value_type == DiscountValueType.free_shipping else raw.discount.value
        return DiscountTier(threshold_cents=raw.threshold_cents, value=value, value_type=value_type)
    return DiscountTier(threshold_cents=raw.threshold_cents, value=raw.value_override)


def _parse_tiers(value: Any) -> tuple[DiscountTier, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    tiers: list[DiscountTier] = []
    for index, item in enumerate(value):
        try:
            tiers.append(_tier_from_raw(_RawTier.model_validate(item)))
        except ValidationError:
            logger.warning("discount_tier_dropped", extra={"tier_index": index})
    return tuple(sorted(tiers, key=lambda tier: tier.threshold_cents))


def _parse_bogo(value: Any) -> BogoOffer | None:
    if value is None:
        return None
    try:
        raw = _RawBogo.model_validate(value)
    except ValidationError:
        logger.warning("discount_bogo_dropped")
        return None
    return BogoOffer(
        buy=BogoBuy(
            scope=raw.buy.scope,
            ids=_coerce_ids(raw.buy.ids),
            quantity=raw.buy.quantity,
            min_subtotal_cents=raw.buy.min_subtotal_cents,
        ),
        get=BogoGet(
            scope=raw.get.scope,
            ids=_coerce_ids(raw.get.ids),
            quantity=raw.get.quantity,
            discount_kind=raw.get.discount.kind,
            discount_value=raw.get.discount.value,
            applies_once_per_order=raw.get.applies_once_per_order,
        ),
    )


def _parse_free_gift(value: Any) -> FreeGiftOffer | None:
    if value is None:
        return None
    try:
        raw = _RawFreeGift.model_validate(value)
    except ValidationError:
        logger.warning("discount_free_gift_dropped")
        return None
    return FreeGiftOffer(
        product_id=raw.product_id.strip(),
        variant_id=raw.variant_id.strip(),
        quantity=raw.quantity,
        min_subtotal_cents=raw.min_subtotal_cents,
    )


def _select_offer(raw: Mapping[str, Any]) -> DiscountOffer:
    tiers = _parse_tiers(raw.get("tiers"))
    candidates: dict[DiscountStrategy, DiscountOffer] = {}
    if tiers:
        candidates[DiscountStrategy.tiered] = TieredOffer(tiers=tiers)
    bogo = _parse_bogo(raw.get("bogo"))
    if bogo is not None:
        candidates[DiscountStrategy.bogo] = bogo
    free_gift = _parse_free_gift(raw.get("freeGift"))
    if free_gift is not None:
        candidates[DiscountStrategy.free_gift] = free_gift

    requested = (_coerce_str(raw.get("strategy")) or "").lower()
    for strategy, offer in candidates.items():
        if strategy.value == requested:
            return offer
    for strategy in (DiscountStrategy.tiered, DiscountStrategy.bogo, DiscountStrategy.free_gift):
        if strategy in candidates:
            return candidates[strategy]
    return BasicOffer()


def _base_value(raw: Mapping[str, Any], value_type: DiscountValueType) -> float | None:
    if value_type == DiscountValueType.free_shipping:
        return None
    value = _coerce_number(raw.get("value"))
    if value is None:
        return DEFAULT_DISCOUNT_VALUE
    if value_type == DiscountValueType.percentage and value > 100:
        return DEFAULT_DISCOUNT_VALUE
    return value


def _expiry_days(value: Any) -> int | None:
    if value is None:
        return DEFAULT_EXPIRY_DAYS
    return _coerce_positive_int(value)


def normalize_discount_config(raw: Any) -> DiscountConfig:
    """
    Parse a merchant discount config. Never raises.

    Unusable input yields a disabled config; a parsed config without an ``enabled``
    flag is enabled.
    """
    try:
        mapping = _coerce_mapping(raw)
        if mapping is None:
            return DISABLED_CONFIG
        value_type = _coerce_value_type(mapping.get("valueType")) or DiscountValueType.percentage
        return DiscountConfig(
            enabled=_coerce_bool(mapping.get("enabled"), True),
            offer=_select_offer(mapping),
            value_type=value_type,
            value=_base_value(mapping, value_type),
            applicability=_coerce_applicability(mapping.get("applicability")),
            behavior=_coerce_behavior(mapping.get("behavior")),
            expiry_days=_expiry_days(mapping.get("expiryDays")),
            usage_limit=_coerce_positive_int(mapping.get("usageLimit")),
            minimum_amount=_coerce_number(mapping.get("minimumAmount")),
            prefix=_coerce_str(mapping.get("prefix")) or DEFAULT_CODE_PREFIX,
        )
    except Exception:
        logger.exception("discount_config_normalize_failed")
        return DISABLED_CONFIG
