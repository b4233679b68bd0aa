"""Entitlement endpoints: quota check and consume, plus the read-only paywall view."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_quota_gate
from app.models.contracts import (
    ConsumeResponse,
    EntitlementRequest,
    EntitlementSummary,
    EntitlementView,
    ErrorResponse,
    QuotaExhaustedResponse,
)
from app.services.entitlements import QuotaGate
from app.services.preview import require_user_id

router = APIRouter(prefix="/entitlements", tags=["entitlements"])

Gate = Annotated[QuotaGate, Depends(get_quota_gate)]


@router.post(
    "/check",
    response_model=EntitlementView,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def check_entitlements(body: EntitlementRequest, gate: Gate) -> EntitlementView:
    """Current tier, quota and usage, after any period rollover. Consumes nothing."""
    return await gate.check(require_user_id(body.user_id))


@router.post(
    "/consume",
    response_model=ConsumeResponse,
    responses={
        400: {"model": ErrorResponse},
        402: {"model": QuotaExhaustedResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def consume_entitlement(body: EntitlementRequest, gate: Gate) -> ConsumeResponse:
    result = await gate.check_and_consume(require_user_id(body.user_id))
    return ConsumeResponse(used=result.used, remaining=result.remaining)


# Read-only view used by the iOS paywall, mounted under /api
me_router = APIRouter(prefix="/me", tags=["entitlements"])


@me_router.get("/entitlements/{user_id}", response_model=EntitlementSummary)
async def read_entitlements(user_id: str, gate: Gate) -> EntitlementSummary:
    return await gate.summary(user_id)


@me_router.get("/entitlements", response_model=EntitlementSummary)
async def read_entitlements_by_query(
    gate: Gate, user_id: Annotated[str | None, Query()] = None
) -> EntitlementSummary:
    return await gate.summary(user_id)
