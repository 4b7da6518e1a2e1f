from collections import defaultdict

from fastapi import Request

from discount_issuer.core.config import settings
from discount_issuer.core.security import verify_app_proxy_params
from discount_issuer.services.issuance_errors import Unauthorized


def _query_params(request: Request) -> dict[str, list[str]]:
    params: dict[str, list[str]] = defaultdict(list)
    for key, value in request.query_params.multi_items():
        params[key].append(value)
    return dict(params)


async def get_storefront_shop(request: Request) -> str:
    """Authenticate an app proxy request and return the shop domain it was signed for."""
    shop = verify_app_proxy_params(
        _query_params(request),
        secret=settings.app_proxy_secret,
        max_skew_seconds=settings.app_proxy_max_skew_seconds,
    )
    if shop is None:
        raise Unauthorized()
    return shop
