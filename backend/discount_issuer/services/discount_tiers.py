from __future__ import annotations

from typing import Sequence

from discount_issuer.services.discount_config import DiscountTier


def select_tier(tiers: Sequence[DiscountTier], cart_subtotal_cents: int | None) -> int | None:
    """
    Index of the most generous tier the cart qualifies for, or None.

    ``tiers`` must be sorted ascending by threshold. The platform enforces the
    tier minimum again at checkout; a cart that shrinks after issuance is not
    re-checked here, so a higher-tier code can still be rejected at checkout.
    """
    if cart_subtotal_cents is None:
        return None
    selected: int | None = None
    for index, tier in enumerate(tiers):
        if tier.threshold_cents <= cart_subtotal_cents:
            selected = index
        else:
            break
    return selected


def tier_label(tier: DiscountTier, index: int) -> str:
    return f"Tier {index + 1}: ${tier.threshold_cents / 100:.2f}+"
