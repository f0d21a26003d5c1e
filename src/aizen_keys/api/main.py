from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from pydantic import BaseModel

from ..config import AppConfig, load_config
from ..errors import KeyExpired, KeyServiceError
from ..services.lifecycle import KeyLifecycleManager
from ..version import __version__

logger = structlog.get_logger(__name__)


# ---- Metrics ----
REQS = Counter("aizen_requests_total", "Total API requests", ["path", "method"])
LAT = Histogram("aizen_request_seconds", "Request latency", ["path", "method"])
KEY_OPS = Counter("aizen_key_operations_total", "Key operations by outcome", ["op", "outcome"])


class GenerateKeyRequest(BaseModel):
    durationDays: Any = None
    adminPassword: Optional[str] = None


class ValidateKeyRequest(BaseModel):
    key: Optional[str] = None


class ListKeysRequest(BaseModel):
    adminPassword: Optional[str] = None


class DeactivateKeyRequest(BaseModel):
    key: Optional[str] = None
    adminPassword: Optional[str] = None


def get_manager(request: Request) -> KeyLifecycleManager:
    return request.app.state.manager


router = APIRouter(prefix="/api")


@router.post("/generate-key")
def generate_key(req: GenerateKeyRequest, manager: KeyLifecycleManager = Depends(get_manager)):
    with LAT.labels("/api/generate-key", "POST").time():
        REQS.labels("/api/generate-key", "POST").inc()
        try:
            record = manager.generate(req.durationDays, req.adminPassword)
        except KeyServiceError as exc:
            KEY_OPS.labels("generate", exc.reason).inc()
            raise
        KEY_OPS.labels("generate", "ok").inc()
        return {
            "success": True,
            "key": record.token,
            "expiresAt": record.expires_at,
            "message": "Key generated successfully",
        }


@router.post("/validate-key")
def validate_key(req: ValidateKeyRequest, manager: KeyLifecycleManager = Depends(get_manager)):
    with LAT.labels("/api/validate-key", "POST").time():
        REQS.labels("/api/validate-key", "POST").inc()
        try:
            result = manager.validate(req.key)
        except KeyServiceError as exc:
            KEY_OPS.labels("validate", exc.reason).inc()
            body: dict[str, Any] = {"valid": False, "error": exc.message}
            if isinstance(exc, KeyExpired):
                body["expired"] = True
            return JSONResponse(status_code=exc.status_code, content=body)
        KEY_OPS.labels("validate", "ok").inc()
        return {"valid": True, "expiresAt": result.expires_at, "message": result.message}


@router.post("/list-keys")
def list_keys(req: ListKeysRequest, manager: KeyLifecycleManager = Depends(get_manager)):
    with LAT.labels("/api/list-keys", "POST").time():
        REQS.labels("/api/list-keys", "POST").inc()
        try:
            records = manager.list_keys(req.adminPassword)
        except KeyServiceError as exc:
            KEY_OPS.labels("list", exc.reason).inc()
            raise
        KEY_OPS.labels("list", "ok").inc()
        return {"success": True, "keys": [record.to_dict() for record in records]}


@router.post("/deactivate-key")
def deactivate_key(req: DeactivateKeyRequest, manager: KeyLifecycleManager = Depends(get_manager)):
    with LAT.labels("/api/deactivate-key", "POST").time():
        REQS.labels("/api/deactivate-key", "POST").inc()
        try:
            manager.deactivate(req.key, req.adminPassword)
        except KeyServiceError as exc:
            KEY_OPS.labels("deactivate", exc.reason).inc()
            raise
        KEY_OPS.labels("deactivate", "ok").inc()
        return {"success": True, "message": "Key deactivated successfully"}


async def _key_service_error(_request: Request, exc: KeyServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.failed", reason=exc.reason, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _request_validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {detail}"})


def create_app(
    config: Optional[AppConfig] = None,
    manager: Optional[KeyLifecycleManager] = None,
) -> FastAPI:
    """Build the HTTP app. ``manager`` overrides the store built from ``config``."""
    config = config or load_config()
    manager = manager or KeyLifecycleManager.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.manager.store.initialize_if_absent()
        yield

    app = FastAPI(title="Aizen Key Server", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.manager = manager
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)
        return await call_next(request)

    app.add_exception_handler(KeyServiceError, _key_service_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.include_router(router)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "ts": int(time.time())}

    @app.get("/metrics")
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


__all__ = ["create_app", "get_manager"]
