"""Health and version endpoints.

``/health`` and ``/health/live`` only confirm the process is up and always
return 200. ``/health/ready`` and ``/health/full`` probe the record store
with a short timeout and answer 503 when a check fails, so orchestrators
stop routing to an instance that cannot reach its database.
"""

from __future__ import annotations

import asyncio
import platform
import time
from datetime import UTC, datetime, timedelta
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.api.deps import get_job_client, get_settings, get_store
from app.config import Settings
from app.logging import mask_settings
from app.stores.base import RecordStore
from app.utils.decor8 import PreviewJobClient

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds per service check

Cfg = Annotated[Settings, Depends(get_settings)]
Store = Annotated[RecordStore, Depends(get_store)]
JobClient = Annotated[PreviewJobClient, Depends(get_job_client)]


def _uptime_seconds(request: Request) -> int:
    return int(time.monotonic() - request.app.state.started_monotonic)


async def _check_store(store: RecordStore) -> dict:
    """Ping the record store (SELECT 1 on Postgres)."""
    try:
        await asyncio.wait_for(store.ping(), timeout=_CHECK_TIMEOUT)
        return {"name": "db", "ok": True}
    except Exception as exc:
        logger.debug("health_db_failed", error=str(exc))
        return {"name": "db", "ok": False, "err": type(exc).__name__}


def _config_checks(cfg: Settings) -> list[dict]:
    checks = [{"name": "config.decor8_base_url", "ok": bool(cfg.decor8_base_url)}]
    if cfg.use_database:
        checks.append({"name": "config.database_url", "ok": bool(cfg.database_url)})
    return checks


@router.get("/health")
async def health_check(request: Request, cfg: Cfg) -> dict:
    return {
        "ok": True,
        "status": "healthy",
        "version": cfg.app_version,
        "environment": cfg.environment,
        "uptime_s": _uptime_seconds(request),
    }


@router.get("/health/live")
async def liveness() -> dict:
    return {"ok": True, "status": "live"}


@router.get("/health/ready")
async def readiness(cfg: Cfg, store: Store) -> JSONResponse:
    checks = [await _check_store(store), *_config_checks(cfg)]
    ok = all(c["ok"] for c in checks)
    if not ok:
        logger.warning("health_ready_failed", checks=checks)
    return JSONResponse(status_code=200 if ok else 503, content={"ok": ok, "checks": checks})


@router.get("/health/full")
async def full_health(request: Request, cfg: Cfg, store: Store, jobs: JobClient) -> JSONResponse:
    """Readiness checks plus provider modes, version and a redacted config summary."""
    started = time.monotonic()
    checks = [await _check_store(store), *_config_checks(cfg)]
    ok = all(c["ok"] for c in checks)
    uptime = _uptime_seconds(request)
    payload = {
        "ok": ok,
        "checks": checks,
        "modes": {"decor8": jobs.mode, "store": "postgres" if cfg.use_database else "memory"},
        "version": _version_payload(cfg),
        "uptime_s": uptime,
        "started_at": (datetime.now(UTC) - timedelta(seconds=uptime)).isoformat(),
        "duration_ms": int((time.monotonic() - started) * 1000),
        "env_summary": mask_settings(cfg),
    }
    logger.info("health_full", ok=ok, modes=payload["modes"], duration_ms=payload["duration_ms"])
    return JSONResponse(status_code=200 if ok else 503, content=payload)


def _version_payload(cfg: Settings) -> dict:
    return {
        "service": cfg.service_name,
        "version": cfg.app_version,
        "python": platform.python_version(),
    }


@router.get("/version")
async def version(cfg: Cfg) -> dict:
    return _version_payload(cfg)
