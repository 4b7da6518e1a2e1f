from __future__ import annotations

from typing import Iterable

from discount_issuer.services.discount_config import (
    Applicability,
    ApplicabilityScope,
    BundleOffer,
    DiscountConfig,
)


def _clean_ids(ids: Iterable[str] | None) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for raw in ids or ():
        cleaned = (raw or "").strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return tuple(seen)


def apply_scope_overrides(
    config: DiscountConfig,
    selected_product_ids: Iterable[str] | None = None,
    cart_product_ids: Iterable[str] | None = None,
) -> DiscountConfig:
    """
    Apply request-time scoping on top of a normalized config.

    A runtime product selection (bundle / upsell) wins over everything the merchant
    configured and turns the offer into a bundle. Otherwise a ``cart`` scope is
    materialized into the product ids currently in the cart, leaving the offer alone.
    """
    selected = _clean_ids(selected_product_ids)
    if selected:
        return config.with_changes(
            offer=BundleOffer(product_ids=selected),
            applicability=Applicability(scope=ApplicabilityScope.products, product_ids=selected),
        )

    cart_ids = _clean_ids(cart_product_ids)
    if config.applicability.scope == ApplicabilityScope.cart and cart_ids:
        return config.with_changes(
            applicability=Applicability(scope=ApplicabilityScope.products, product_ids=cart_ids),
        )
    return config
