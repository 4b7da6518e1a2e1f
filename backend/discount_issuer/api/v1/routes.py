from fastapi import APIRouter

from discount_issuer.api.v1 import discounts
from discount_issuer.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(discounts.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/health/ready", tags=["health"])
def readiness() -> dict[str, str]:
    return {"status": "ready"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
