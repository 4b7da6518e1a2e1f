from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from discount_issuer.api.v1.routes import api_router
from discount_issuer.core.config import settings
from discount_issuer.core.logging_config import configure_logging
from discount_issuer.core.redis_client import close_redis
from discount_issuer.middleware import RequestLoggingMiddleware
from discount_issuer.schemas.error import ErrorResponse
from discount_issuer.services.issuance_errors import IssuanceError


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await close_redis()


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    tags_metadata = [
        {"name": "discounts", "description": "Storefront discount code issuance"},
        {"name": "health", "description": "Liveness and readiness"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(IssuanceError)
    async def issuance_exception_handler(request: Request, exc: IssuanceError):
        payload = ErrorResponse(error=exc.message, code=exc.code)
        return JSONResponse(
            status_code=exc.status_code,
            content=payload.model_dump(exclude_none=True),
            headers=exc.headers or None,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(error=str(exc.detail), code=None)
        return JSONResponse(status_code=exc.status_code, content=payload.model_dump(exclude_none=True))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(error="Invalid request", code="invalid_request", detail=errors)
        return JSONResponse(status_code=400, content=payload.model_dump())

    return app


app = get_application()
