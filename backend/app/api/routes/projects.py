"""Project and preview endpoints.

The caller identity is a pre-authenticated ``user_id`` passed in the body
or query string. Projects the caller does not own answer 404, exactly like
projects that do not exist.
"""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_preview_service, get_quota_gate, get_store
from app.errors import InvalidRequest, ProjectNotFound
from app.models.contracts import (
    AttachImageRequest,
    AttachImageResponse,
    CreateProjectRequest,
    DeleteProjectResponse,
    ErrorResponse,
    PreviewSelftestResponse,
    PreviewStartRequest,
    PreviewStartResponse,
    PreviewStatusResponse,
    ProjectItemResponse,
    ProjectListResponse,
    ProjectPatch,
    ProjectResponse,
    UpdateProjectRequest,
)
from app.services.entitlements import QuotaGate
from app.services.preview import PreviewService, load_owned_project, require_user_id
from app.stores.base import RecordStore

logger = structlog.get_logger()

router = APIRouter(tags=["projects"])

MIN_NAME_LENGTH = 10

Store = Annotated[RecordStore, Depends(get_store)]
Previews = Annotated[PreviewService, Depends(get_preview_service)]
Gate = Annotated[QuotaGate, Depends(get_quota_gate)]
UserIdQuery = Annotated[str | None, Query()]

_NOT_FOUND = {404: {"model": ErrorResponse}}

_UPDATABLE_FIELDS = {"name", "status", "preview_url"}


def _validated_name(raw: str | None) -> str:
    name = (raw or "").strip()
    if len(name) < MIN_NAME_LENGTH:
        raise InvalidRequest(
            "invalid_name", f"name must be at least {MIN_NAME_LENGTH} characters"
        )
    return name


# --- Project lifecycle ---


@router.post(
    "/projects",
    status_code=201,
    response_model=ProjectResponse,
    responses={400: {"model": ErrorResponse}},
)
async def create_project(body: CreateProjectRequest, store: Store, gate: Gate) -> ProjectResponse:
    """Create a project and provision a free profile for new users."""
    user_id = require_user_id(body.user_id)
    name = _validated_name(body.name)

    await store.ensure_profile(user_id, gate.current_period())
    project = await store.create_project(
        owner_id=user_id, name=name, goal=body.goal, room_type=body.room_type
    )
    logger.info("project_created", project_id=project.id, user_id=user_id)
    return ProjectResponse.from_record(project)


@router.get("/projects", response_model=ProjectListResponse)
async def list_projects(store: Store, user_id: UserIdQuery = None) -> ProjectListResponse:
    caller = require_user_id(user_id)
    projects = await store.list_projects(caller)
    return ProjectListResponse(items=[ProjectResponse.from_record(p) for p in projects])


@router.get("/projects/{project_id}", response_model=ProjectResponse, responses=_NOT_FOUND)
async def get_project(
    project_id: str, store: Store, user_id: UserIdQuery = None
) -> ProjectResponse:
    caller = require_user_id(user_id)
    project = await load_owned_project(store, project_id, caller)
    return ProjectResponse.from_record(project)


@router.patch(
    "/projects/{project_id}",
    response_model=ProjectItemResponse,
    responses={400: {"model": ErrorResponse}, **_NOT_FOUND},
)
async def update_project(
    project_id: str, body: UpdateProjectRequest, store: Store, user_id: UserIdQuery = None
) -> ProjectItemResponse:
    """Update the owner-editable fields (name, status, preview_url).

    Only fields present in the body are written; a body with none of them is
    rejected rather than treated as a no-op.
    """
    caller = require_user_id(body.user_id or user_id)
    await load_owned_project(store, project_id, caller)

    changes = body.model_dump(include=_UPDATABLE_FIELDS, exclude_unset=True)
    if not changes:
        raise InvalidRequest(
            "no_updatable_fields_provided",
            f"provide at least one of: {', '.join(sorted(_UPDATABLE_FIELDS))}",
        )
    if "name" in changes:
        changes["name"] = _validated_name(changes["name"])
    if "status" in changes and not (changes["status"] or "").strip():
        raise InvalidRequest("invalid_status", "status must be a non-empty string")

    updated = await store.update_project(project_id, ProjectPatch(**changes))
    if updated is None:
        raise ProjectNotFound("Project not found")
    logger.info("project_updated", project_id=project_id, fields=sorted(changes))
    return ProjectItemResponse(item=ProjectResponse.from_record(updated))


@router.delete(
    "/projects/{project_id}",
    response_model=DeleteProjectResponse,
    responses={400: {"model": ErrorResponse}, **_NOT_FOUND},
)
async def delete_project(
    project_id: str, store: Store, user_id: UserIdQuery = None
) -> DeleteProjectResponse:
    """Delete the project row. Uploaded images are not touched."""
    caller = require_user_id(user_id)
    await load_owned_project(store, project_id, caller)
    if not await store.delete_project(project_id):
        raise ProjectNotFound("Project not found")
    logger.info("project_deleted", project_id=project_id, user_id=caller)
    return DeleteProjectResponse()


@router.post(
    "/projects/{project_id}/image",
    response_model=AttachImageResponse,
    responses={400: {"model": ErrorResponse}, **_NOT_FOUND},
)
async def attach_image(
    project_id: str, body: AttachImageRequest, store: Store
) -> AttachImageResponse:
    """Attach an already-hosted image URL as the project's input photo."""
    caller = require_user_id(body.user_id)
    await load_owned_project(store, project_id, caller)
    url = (body.url or "").strip()
    if not url.startswith(("http://", "https://")):
        raise InvalidRequest("invalid_url", "url must be http/https")

    updated = await store.set_input_image(project_id, url)
    if updated is None:
        raise ProjectNotFound("Project not found")
    logger.info("project_image_attached", project_id=project_id)
    return AttachImageResponse(input_image_url=url)


# --- Preview ---


@router.post(
    "/projects/{project_id}/preview/start",
    response_model=PreviewStartResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        **_NOT_FOUND,
    },
)
async def start_preview(
    project_id: str,
    previews: Previews,
    body: PreviewStartRequest | None = None,
    user_id: UserIdQuery = None,
) -> PreviewStartResponse:
    """Submit a preview job, or return the finished preview if one exists."""
    body = body or PreviewStartRequest()
    return await previews.start(project_id, body.user_id or user_id, body)


@router.get(
    "/projects/{project_id}/preview/status",
    response_model=PreviewStatusResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, **_NOT_FOUND},
)
async def preview_status(
    project_id: str, previews: Previews, user_id: UserIdQuery = None
) -> PreviewStatusResponse:
    """Poll the preview job. iOS calls this until status is done or error."""
    return await previews.status(project_id, user_id)


@router.get(
    "/projects/{project_id}/preview/selftest",
    response_model=PreviewSelftestResponse,
    responses=_NOT_FOUND,
)
async def preview_selftest(
    project_id: str, previews: Previews, user_id: UserIdQuery = None
) -> PreviewSelftestResponse:
    return await previews.selftest(project_id, user_id)
