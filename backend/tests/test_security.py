from discount_issuer.core.security import app_proxy_message, sign_app_proxy_params, verify_app_proxy_params

SECRET = "proxy-secret"
NOW = 1_700_000_000


def _signed(**overrides: list[str]) -> dict[str, list[str]]:
    params = {"shop": ["demo.myshopify.com"], "timestamp": [str(NOW)], "path_prefix": ["/apps/popups"]}
    params.update(overrides)
    params["signature"] = [sign_app_proxy_params(params, SECRET)]
    return params


def test_message_is_sorted_and_skips_signature() -> None:
    message = app_proxy_message({"shop": ["a"], "extra": ["1", "2"], "signature": ["x"]})

    assert message == "extra=1,2shop=a"


def test_valid_signature_returns_shop() -> None:
    assert verify_app_proxy_params(_signed(), secret=SECRET, max_skew_seconds=300, now=NOW + 10) == "demo.myshopify.com"


def test_tampered_params_are_rejected() -> None:
    params = _signed()
    params["shop"] = ["other.myshopify.com"]

    assert verify_app_proxy_params(params, secret=SECRET, max_skew_seconds=300, now=NOW) is None


def test_wrong_secret_or_missing_parts_are_rejected() -> None:
    params = _signed()

    assert verify_app_proxy_params(params, secret="other", max_skew_seconds=300, now=NOW) is None
    assert verify_app_proxy_params(params, secret="", max_skew_seconds=300, now=NOW) is None
    assert verify_app_proxy_params({"shop": ["demo.myshopify.com"]}, secret=SECRET, max_skew_seconds=300, now=NOW) is None


def test_stale_or_invalid_timestamp_is_rejected() -> None:
    assert verify_app_proxy_params(_signed(), secret=SECRET, max_skew_seconds=300, now=NOW + 301) is None
    assert verify_app_proxy_params(_signed(timestamp=["soon"]), secret=SECRET, max_skew_seconds=300, now=NOW) is None
    assert verify_app_proxy_params(_signed(), secret=SECRET, max_skew_seconds=0, now=NOW + 86400) == "demo.myshopify.com"
