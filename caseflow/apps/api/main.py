from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException

from caseflow.apps.api.errors import (
    caseflow_exception_handler,
    http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from caseflow.apps.api.response import API_VERSION
from caseflow.apps.api.routes.audit import router as audit_router
from caseflow.apps.api.routes.cases import router as cases_router
from caseflow.apps.api.routes.health import router as health_router
from caseflow.apps.api.routes.vault import router as vault_router
from caseflow.core.config import get_settings
from caseflow.core.errors import CaseflowError
from caseflow.core.logging import configure_logging
from caseflow.persistence.guards import TenantPredicateError
from caseflow.services.events import drain_pending


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight event deliveries finish before the loop closes.
    await drain_pending()


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="Caseflow API", version=API_VERSION, lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(CaseflowError, caseflow_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(TenantPredicateError, tenant_predicate_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    prefix = f"/{API_VERSION}"
    app.include_router(health_router, prefix=prefix)
    app.include_router(cases_router, prefix=prefix)
    # Vault lease endpoints for secured document access.
    app.include_router(vault_router, prefix=prefix)
    # Admin-only audit queries for investigations.
    app.include_router(audit_router, prefix=prefix)

    def custom_openapi() -> dict:
        # Inject bearer auth into the OpenAPI schema for every non-public path.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="Caseflow API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        security_schemes = components.setdefault("securitySchemes", {})
        security_schemes["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        public_paths = {f"{prefix}/health"}
        for path, operations in schema.get("paths", {}).items():
            if path in public_paths:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi
    logger.info("app_created name=%s dev_bypass=%s", settings.app_name, settings.auth_dev_bypass)
    return app


app = create_app()
