from __future__ import annotations

import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from securedocs.apps.api.errors import (
    http_exception_handler,
    securedocs_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from securedocs.apps.api.response import API_PREFIX, API_VERSION
from securedocs.apps.api.routes.access import router as access_router
from securedocs.apps.api.routes.documents import router as documents_router
from securedocs.apps.api.routes.health import router as health_router
from securedocs.apps.api.routes.qrcode import router as qrcode_router
from securedocs.apps.api.routes.subscription import router as subscription_router
from securedocs.core.config import get_settings
from securedocs.core.errors import SecureDocsError
from securedocs.core.logging import configure_logging
from securedocs.services.telemetry import record_request


# Reachable without a bearer token.
_PUBLIC_PATHS = {
    f"{API_PREFIX}/health",
    f"{API_PREFIX}/qrcode/validate/{{code}}",
    f"{API_PREFIX}/access/request",
    f"{API_PREFIX}/access/verify",
    f"{API_PREFIX}/access/requests/{{request_id}}/documents",
    f"{API_PREFIX}/subscription/plans",
}


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        openapi_url=f"{API_PREFIX}/openapi.json",
        docs_url=f"{API_PREFIX}/docs",
        redoc_url=None,
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        record_request(path=request.url.path, status_code=response.status_code, latency_ms=latency_ms)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(SecureDocsError)
    async def _securedocs_exception_handler(request: Request, exc: SecureDocsError):
        return await securedocs_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(qrcode_router, prefix=API_PREFIX)
    app.include_router(access_router, prefix=API_PREFIX)
    app.include_router(documents_router, prefix=API_PREFIX)
    app.include_router(subscription_router, prefix=API_PREFIX)

    def custom_openapi() -> dict:
        # Inject bearer auth into the schema for every non-public operation.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title=settings.app_name, version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi

    return app


app = create_app()
