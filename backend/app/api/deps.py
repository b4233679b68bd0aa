"""FastAPI dependencies resolving the collaborators built by ``create_app``."""

from __future__ import annotations

from fastapi import Request

from app.config import Settings
from app.services.entitlements import QuotaGate
from app.services.preview import PreviewService
from app.stores.base import RecordStore
from app.utils.decor8 import PreviewJobClient


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_job_client(request: Request) -> PreviewJobClient:
    return request.app.state.job_client


def get_preview_service(request: Request) -> PreviewService:
    return request.app.state.preview_service


def get_quota_gate(request: Request) -> QuotaGate:
    return request.app.state.quota_gate
