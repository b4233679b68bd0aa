import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import entitlements, health, projects
from app.config import Settings, settings
from app.errors import ServiceError
from app.logging import configure_logging
from app.services.entitlements import QuotaGate, TierQuotas
from app.services.preview import PreviewService
from app.stores import build_store
from app.utils.decor8 import build_job_client

configure_logging()

logger = structlog.get_logger()


def _with_request_id(request: Request, response: JSONResponse) -> JSONResponse:
    response.headers["X-Request-ID"] = getattr(
        request.state, "request_id", request.headers.get("X-Request-ID", "")
    )
    return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the provider HTTP client and database pool on shutdown."""
    logger.info(
        "api_starting",
        decor8_mode=app.state.job_client.mode,
        use_database=app.state.settings.use_database,
    )
    yield
    await app.state.job_client.aclose()
    await app.state.store.close()
    logger.info("api_stopped")


async def request_id_middleware(request: Request, call_next):
    """Attach a unique request ID to every request for log correlation.

    Sets the ID in structlog context vars (appears in all log entries for the
    request) and returns it in the X-Request-ID response header so the iOS
    app can report it when debugging errors.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.monotonic()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return response


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError as ``{ok: false, error, message, retryable, ...}``."""
    if exc.status_code >= 500:
        logger.warning("service_error", path=request.url.path, error=exc.error, message=exc.message)
    content = {
        "ok": False,
        "error": exc.error,
        "message": exc.message,
        "retryable": exc.retryable,
        **exc.extra,
    }
    return _with_request_id(request, JSONResponse(status_code=exc.status_code, content=content))


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for Pydantic validation errors.

    FastAPI's default 422 returns {"detail": [...]}; the iOS app expects the
    same error shape from every endpoint.
    """
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=422,
        content={
            "ok": False,
            "error": "validation_error",
            "message": "; ".join(messages),
            "retryable": False,
        },
    )
    return _with_request_id(request, response)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return consistent ErrorResponse JSON for unhandled exceptions."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "retryable": True,
        },
    )
    return _with_request_id(request, response)


def create_app(cfg: Settings | None = None) -> FastAPI:
    """Build the API with its store, provider client and services wired in.

    Collaborators are constructed here once and read by route dependencies
    from ``app.state``; nothing else holds process-wide clients.
    """
    cfg = cfg or settings
    app = FastAPI(
        title="DIY Genie API",
        version=cfg.app_version,
        docs_url="/docs",
        redoc_url=None,
        lifespan=lifespan,
    )

    store = build_store(cfg)
    job_client = build_job_client(cfg)
    app.state.settings = cfg
    app.state.store = store
    app.state.job_client = job_client
    app.state.preview_service = PreviewService(store, job_client, cfg)
    app.state.quota_gate = QuotaGate(
        store, TierQuotas.from_settings(cfg), retries=cfg.quota_consume_retries
    )
    app.state.started_monotonic = time.monotonic()

    app.middleware("http")(request_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_allow_origins,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(health.router)
    app.include_router(entitlements.router)
    app.include_router(entitlements.me_router, prefix="/api")
    app.include_router(projects.router, prefix="/api")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="0.0.0.0", port=8000)  # noqa: S104
