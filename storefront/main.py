from __future__ import annotations

import os
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import AccessGuard, SessionIssuer
from .config import Settings, get_settings
from .database import configure_engine, init_db
from .errors import InternalError, StorefrontError
from .routers import cart_router, order_router, product_router, user_router
from .utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def _envelope(status_code: int, message: str, error: Optional[dict] = None, data=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"message": message, "status": status_code, "data": data, "error": error},
    )


async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, kind=exc.kind, detail=exc.detail)
    return _envelope(exc.status_code, exc.message, error=jsonable_encoder(exc.to_error()))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [{k: v for k, v in err.items() if k not in ("ctx", "url")} for err in exc.errors()]
    return _envelope(400, "invalid request", error={"kind": "validation", "detail": jsonable_encoder(errors)})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    kind = "not_found" if exc.status_code == 404 else "http"
    return _envelope(exc.status_code, str(exc.detail), error={"kind": kind})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    return _envelope(500, InternalError.default_message, error={"kind": InternalError.kind})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application. A missing or invalid JWT secret stops startup here."""
    settings = (settings or get_settings()).validate()
    configure_logging(settings.log_level, json=settings.log_json)

    app = FastAPI(
        title="Storefront Service",
        description="Accounts, product browsing, carts and order placement",
        version="1.0.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["access_token", "refresh_token"],
    )

    app.state.settings = settings
    app.state.session_issuer = SessionIssuer.from_settings(settings)
    app.state.access_guard = AccessGuard.from_settings(settings)

    # Create database tables
    init_db(configure_engine(settings.database_url))

    app.include_router(user_router.router)
    app.include_router(product_router.router)
    app.include_router(cart_router.router)
    app.include_router(order_router.router)

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "service": "storefront"}

    logger.info("Storefront service configured", database=settings.database_url.split("://", 1)[0])
    return app


def run() -> None:
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(create_app, factory=True, host="0.0.0.0", port=port)
