import json

from discount_issuer.services.discount_config import (
    DISABLED_CONFIG,
    ApplicabilityScope,
    BasicOffer,
    BogoOffer,
    DiscountBehavior,
    DiscountStrategy,
    DiscountValueType,
    FreeGiftOffer,
    TieredOffer,
    normalize_discount_config,
)


def test_unusable_input_yields_disabled_config() -> None:
    assert normalize_discount_config(None) is DISABLED_CONFIG
    assert normalize_discount_config("") is DISABLED_CONFIG
    assert normalize_discount_config("{not json") is DISABLED_CONFIG
    assert normalize_discount_config(["enabled", True]) is DISABLED_CONFIG
    assert normalize_discount_config(42) is DISABLED_CONFIG
    assert DISABLED_CONFIG.enabled is False


def test_json_string_is_parsed() -> None:
    config = normalize_discount_config(json.dumps({"enabled": True, "valueType": "FIXED_AMOUNT", "value": 5}))

    assert config.enabled is True
    assert config.value_type == DiscountValueType.fixed_amount
    assert config.value == 5
    assert config.strategy == DiscountStrategy.basic


def test_defaults_fill_missing_fields() -> None:
    config = normalize_discount_config({"valueType": "PERCENTAGE", "value": 15})

    assert isinstance(config.offer, BasicOffer)
    assert config.value_type == DiscountValueType.percentage
    assert config.enabled is True
    assert config.value == 15
    assert config.behavior == DiscountBehavior.show_code_and_auto_apply
    assert config.applicability.scope == ApplicabilityScope.all
    assert config.expiry_days == 30
    assert config.prefix == "WELCOME"
    assert config.usage_limit is None


def test_explicit_flags_override_defaults() -> None:
    config = normalize_discount_config({"enabled": False, "expiryDays": None, "prefix": "  "})

    assert config.enabled is False
    assert config.expiry_days == 30
    assert config.prefix == "WELCOME"
    assert normalize_discount_config({"expiryDays": 0}).expiry_days is None


def test_out_of_range_values_fall_back() -> None:
    assert normalize_discount_config({"enabled": True, "value": 150}).value == 10
    assert normalize_discount_config({"enabled": True, "value": -3}).value == 10
    assert normalize_discount_config({"enabled": True, "value": "abc"}).value == 10
    fixed = normalize_discount_config({"enabled": True, "valueType": "fixed", "value": 150})
    assert fixed.value_type == DiscountValueType.fixed_amount
    assert fixed.value == 150


def test_free_shipping_carries_no_value() -> None:
    config = normalize_discount_config({"enabled": True, "valueType": "FREE_SHIPPING", "value": 20})

    assert config.value_type == DiscountValueType.free_shipping
    assert config.value is None


def test_tiers_are_sorted_and_invalid_entries_dropped() -> None:
    config = normalize_discount_config(
        {
            "enabled": True,
            "tiers": [
                {"thresholdCents": 10000, "discount": {"kind": "percentage", "value": 20}},
                {"thresholdCents": -1, "valueOverride": 5},
                {"valueOverride": 7},
                {"thresholdCents": 5000, "valueOverride": 10},
                {"thresholdCents": 15000, "discount": {"kind": "free_shipping"}},
            ],
        }
    )

    assert isinstance(config.offer, TieredOffer)
    assert [tier.threshold_cents for tier in config.tiers] == [5000, 10000, 15000]
    assert config.tiers[0].value == 10
    assert config.tiers[0].value_type is None
    assert config.tiers[1].value == 20
    assert config.tiers[1].value_type == DiscountValueType.percentage
    assert config.tiers[2].value is None
    assert config.tiers[2].value_type == DiscountValueType.free_shipping


def test_all_tiers_invalid_falls_back_to_basic() -> None:
    config = normalize_discount_config({"enabled": True, "strategy": "tiered", "tiers": [{"thresholdCents": "x"}]})

    assert config.strategy == DiscountStrategy.basic
    assert config.tiers == ()


def test_variants_are_picked_in_priority_order() -> None:
    bogo = {
        "buy": {"scope": "any", "quantity": 2},
        "get": {"scope": "products", "ids": ["p1"], "quantity": 1, "discount": {"kind": "free_product", "value": 100}},
    }
    gift = {"productId": "gid://product/1", "variantId": "gid://variant/1"}
    tiers = [{"thresholdCents": 5000, "valueOverride": 15}]

    assert normalize_discount_config({"enabled": True, "tiers": tiers, "bogo": bogo, "freeGift": gift}).strategy == (
        DiscountStrategy.tiered
    )
    assert normalize_discount_config({"enabled": True, "bogo": bogo, "freeGift": gift}).strategy == DiscountStrategy.bogo
    assert normalize_discount_config({"enabled": True, "freeGift": gift}).strategy == DiscountStrategy.free_gift


def test_explicit_strategy_wins_when_its_variant_parses() -> None:
    gift = {"productId": "gid://product/1", "variantId": "gid://variant/1", "quantity": 2}
    config = normalize_discount_config(
        {"enabled": True, "strategy": "free_gift", "tiers": [{"thresholdCents": 100, "valueOverride": 5}], "freeGift": gift}
    )

    assert isinstance(config.offer, FreeGiftOffer)
    assert config.offer.quantity == 2
    assert config.tiers == ()


def test_malformed_bogo_is_dropped() -> None:
    config = normalize_discount_config(
        {"enabled": True, "strategy": "bogo", "bogo": {"buy": {"quantity": 0}, "get": {"scope": "products", "ids": []}}}
    )

    assert config.strategy == DiscountStrategy.basic


def test_bogo_fields_are_preserved() -> None:
    config = normalize_discount_config(
        {
            "enabled": True,
            "bogo": {
                "buy": {"scope": "collections", "ids": ["c1", "c1", " "], "quantity": 3, "minSubtotalCents": 2000},
                "get": {
                    "scope": "products",
                    "ids": ["p9"],
                    "quantity": 1,
                    "discount": {"kind": "percentage", "value": 50},
                    "appliesOncePerOrder": False,
                },
            },
        }
    )

    assert isinstance(config.offer, BogoOffer)
    assert config.offer.buy.ids == ("c1",)
    assert config.offer.buy.min_subtotal_cents == 2000
    assert config.offer.get.discount_kind == "percentage"
    assert config.offer.get.applies_once_per_order is False


def test_optional_fields_are_cleaned() -> None:
    config = normalize_discount_config(
        {
            "enabled": "true",
            "behavior": "show_code_only",
            "expiryDays": 7,
            "usageLimit": 0,
            "minimumAmount": 25,
            "prefix": "  WELCOME ",
            "applicability": {"scope": "Products", "productIds": ["a", "", "a", "b"]},
        }
    )

    assert config.enabled is True
    assert config.behavior == DiscountBehavior.show_code_only
    assert config.expiry_days == 7
    assert config.usage_limit is None
    assert config.minimum_amount == 25
    assert config.prefix == "WELCOME"
    assert config.applicability.scope == ApplicabilityScope.products
    assert config.applicability.product_ids == ("a", "b")


def test_payload_uses_camel_case() -> None:
    config = normalize_discount_config({"enabled": True, "tiers": [{"thresholdCents": 5000, "valueOverride": 15}]})
    payload = config.to_payload()

    assert payload["strategy"] == "tiered"
    assert payload["valueType"] == "PERCENTAGE"
    assert payload["applicability"] == {"scope": "all"}
    assert payload["tiers"] == [{"thresholdCents": 5000, "valueOverride": 15.0, "valueType": None}]
