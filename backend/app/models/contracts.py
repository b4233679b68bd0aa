"""DIY Genie contract models.

Request/response bodies of the HTTP API, the row records exchanged with the
stores, and the canonical shapes of preview-provider results. Field names
are snake_case; the few camelCase names the iOS client reads (``jobId``,
``previewAllowed``) are produced by serialization aliases only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

PreviewStatus = Literal["none", "queued", "processing", "done", "error"]
Tier = Literal["free", "casual", "pro"]
JobState = Literal["queued", "running", "done", "failed"]
ProviderMode = Literal["stub", "live"]

# === Store records ===


class ProjectRecord(BaseModel):
    id: str
    owner_id: str
    name: str
    goal: str | None = None
    room_type: str | None = None
    status: str = "draft"
    input_image_url: str | None = None
    preview_status: PreviewStatus = "none"
    preview_job_id: str | None = None
    preview_url: str | None = None
    preview_meta: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime


class ProjectPatch(BaseModel):
    """Owner-editable project fields; applied with ``exclude_unset`` like PreviewPatch."""

    name: str | None = None
    status: str | None = None
    preview_url: str | None = None


class PreviewPatch(BaseModel):
    """Partial update of a project's preview fields.

    Only explicitly set fields are written (``model_dump(exclude_unset=True)``),
    so ``preview_url=None`` clears the column while an omitted field is left
    untouched.
    """

    preview_status: PreviewStatus | None = None
    preview_job_id: str | None = None
    preview_url: str | None = None
    preview_meta: dict[str, Any] | None = None


class ProfileRecord(BaseModel):
    user_id: str
    tier: Tier = "free"
    credits_used_this_period: int = Field(ge=0, default=0)
    period_key: str


# === Preview provider ===


class RegionOfInterest(BaseModel):
    """Normalized (0..1) rectangle the user marked on the photo."""

    x: float = Field(ge=0, le=1)
    y: float = Field(ge=0, le=1)
    w: float = Field(gt=0, le=1)
    h: float = Field(gt=0, le=1)


class SubmitContext(BaseModel):
    room_type: str
    design_style: str
    roi: RegionOfInterest | None = None


class JobStatus(BaseModel):
    state: JobState
    result_url: str | None = None
    thumb_url: str | None = None


# === Projects ===


class CreateProjectRequest(BaseModel):
    user_id: str | None = None
    name: str | None = None
    goal: str | None = None
    room_type: str | None = None


class ProjectResponse(BaseModel):
    id: str
    name: str
    goal: str | None = None
    room_type: str | None = None
    user_id: str
    status: str
    input_image_url: str | None = None
    preview_status: PreviewStatus
    preview_url: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: ProjectRecord) -> ProjectResponse:
        return cls(
            id=record.id,
            name=record.name,
            goal=record.goal,
            room_type=record.room_type,
            user_id=record.owner_id,
            status=record.status,
            input_image_url=record.input_image_url,
            preview_status=record.preview_status,
            preview_url=record.preview_url,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class ProjectListResponse(BaseModel):
    ok: bool = True
    items: list[ProjectResponse] = []


class UpdateProjectRequest(BaseModel):
    user_id: str | None = None
    name: str | None = None
    status: str | None = None
    preview_url: str | None = None


class ProjectItemResponse(BaseModel):
    ok: bool = True
    item: ProjectResponse


class DeleteProjectResponse(BaseModel):
    ok: bool = True


class AttachImageRequest(BaseModel):
    user_id: str | None = None
    url: str | None = None


class AttachImageResponse(BaseModel):
    ok: bool = True
    input_image_url: str


# === Preview ===


class PreviewStartRequest(BaseModel):
    user_id: str | None = None
    image_url: str | None = None
    prompt: str | None = None
    room_type: str | None = None
    design_style: str | None = None
    roi: RegionOfInterest | None = None


class PreviewStartResponse(BaseModel):
    ok: bool = True
    status: PreviewStatus
    job_id: str | None = Field(default=None, serialization_alias="jobId")
    url: str | None = None


class PreviewStatusResponse(BaseModel):
    ok: bool = True
    status: PreviewStatus
    url: str | None = None


class SelftestProject(BaseModel):
    id: str
    preview_status: PreviewStatus
    has_preview_url: bool
    has_image: bool


class PreviewSelftestResponse(BaseModel):
    ok: bool = True
    project: SelftestProject
    job_id: str | None = None
    mode: ProviderMode


# === Entitlements ===


class EntitlementRequest(BaseModel):
    user_id: str | None = None


class EntitlementView(BaseModel):
    ok: bool = True
    tier: Tier
    quota: int
    used: int
    remaining: int
    period_key: str
    preview_allowed: bool = Field(serialization_alias="previewAllowed")


class EntitlementSummary(BaseModel):
    """Read-only entitlements the iOS paywall shows; unknown users get free defaults."""

    ok: bool = True
    tier: Tier
    quota: int
    remaining: int
    preview_allowed: bool = Field(serialization_alias="previewAllowed")


class ConsumeResponse(BaseModel):
    ok: bool = True
    used: int
    remaining: int


# === Errors ===


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
    message: str
    retryable: bool
    detail: str | None = None


class QuotaExhaustedResponse(ErrorResponse):
    quota: int
    used: int
    remaining: int = 0
