"""Preview job lifecycle: start a Decor8 job for a project and poll it to completion.

preview_status moves none -> queued -> processing -> done, with error
reachable from queued/processing. Polling never leaves a terminal state:
``done`` is returned from the row without contacting the provider, and so is
``error``. Only a new start moves a project out of ``error`` (or re-runs a
``done`` project that has no url).

Every call re-reads the project row; preview fields are last-writer-wins.
"""

from __future__ import annotations

import structlog

from app.config import Settings
from app.errors import ImageRequired, ProjectNotFound, UserIdRequired
from app.models.contracts import (
    JobState,
    PreviewPatch,
    PreviewSelftestResponse,
    PreviewStartRequest,
    PreviewStartResponse,
    PreviewStatus,
    PreviewStatusResponse,
    ProjectRecord,
    SelftestProject,
    SubmitContext,
)
from app.stores.base import ProjectStore
from app.utils.decor8 import PreviewJobClient

logger = structlog.get_logger()

_POLL_STATE_MAP: dict[JobState, PreviewStatus] = {
    "queued": "queued",
    "running": "processing",
    "done": "done",
    "failed": "error",
}


def require_user_id(user_id: str | None) -> str:
    """Return the stripped caller id or raise ``UserIdRequired``."""
    cleaned = (user_id or "").strip()
    if not cleaned:
        raise UserIdRequired("user_id is required")
    return cleaned


async def load_owned_project(store: ProjectStore, project_id: str, user_id: str) -> ProjectRecord:
    """Fetch a project the caller owns.

    A missing project and one owned by someone else both raise
    ``ProjectNotFound`` so non-owners learn nothing about existence.
    """
    project = await store.get_project(project_id)
    if project is None or project.owner_id != user_id:
        raise ProjectNotFound("Project not found")
    return project


class PreviewService:
    def __init__(self, store: ProjectStore, jobs: PreviewJobClient, cfg: Settings) -> None:
        self._store = store
        self._jobs = jobs
        self._cfg = cfg

    async def start(
        self, project_id: str, user_id: str | None, body: PreviewStartRequest
    ) -> PreviewStartResponse:
        caller = require_user_id(user_id)
        project = await load_owned_project(self._store, project_id, caller)

        if project.preview_status == "done" and project.preview_url:
            logger.info("preview_start_cached", project_id=project_id)
            return PreviewStartResponse(
                status="done", job_id=project.preview_job_id, url=project.preview_url
            )

        image_url = project.input_image_url or body.image_url
        if not image_url:
            raise ImageRequired("Project needs an image before a preview can start")

        context = SubmitContext(
            room_type=body.room_type or project.room_type or self._cfg.preview_default_room_type,
            design_style=body.design_style or self._cfg.preview_default_design_style,
            roi=body.roi,
        )
        prompt = body.prompt or project.goal or self._cfg.preview_default_prompt

        # A submit failure propagates before any write, so the row keeps its prior state
        job_id = await self._jobs.submit(image_url, prompt, context)

        meta: dict = {"mode": self._jobs.mode}
        if body.roi is not None:
            meta["roi"] = body.roi.model_dump()
        await self._store.update_preview(
            project_id,
            PreviewPatch(
                preview_status="queued",
                preview_job_id=job_id,
                preview_url=None,
                preview_meta=meta,
            ),
        )
        logger.info(
            "preview_started",
            project_id=project_id,
            job_id=job_id,
            mode=self._jobs.mode,
            has_roi=body.roi is not None,
        )
        return PreviewStartResponse(status="queued", job_id=job_id)

    async def status(self, project_id: str, user_id: str | None) -> PreviewStatusResponse:
        caller = require_user_id(user_id)
        project = await load_owned_project(self._store, project_id, caller)

        if project.preview_status == "done":
            return PreviewStatusResponse(status="done", url=project.preview_url)
        if project.preview_status == "error" or not project.preview_job_id:
            return PreviewStatusResponse(status=project.preview_status)

        # Provider errors propagate without touching the row; the client polls again
        job = await self._jobs.poll_status(project.preview_job_id)
        mapped = _POLL_STATE_MAP[job.state]
        logger.info(
            "preview_polled",
            project_id=project_id,
            job_id=project.preview_job_id,
            job_state=job.state,
            preview_status=mapped,
        )

        if mapped == "done":
            meta = dict(project.preview_meta or {})
            if job.thumb_url:
                meta["thumb_url"] = job.thumb_url
            await self._store.update_preview(
                project_id,
                PreviewPatch(preview_status="done", preview_url=job.result_url, preview_meta=meta),
            )
            return PreviewStatusResponse(status="done", url=job.result_url)

        # Written on every poll so concurrent pollers converge on the same view
        await self._store.update_preview(project_id, PreviewPatch(preview_status=mapped))
        return PreviewStatusResponse(status=mapped)

    async def selftest(self, project_id: str, user_id: str | None) -> PreviewSelftestResponse:
        caller = require_user_id(user_id)
        project = await load_owned_project(self._store, project_id, caller)
        return PreviewSelftestResponse(
            project=SelftestProject(
                id=project.id,
                preview_status=project.preview_status,
                has_preview_url=project.preview_url is not None,
                has_image=project.input_image_url is not None,
            ),
            job_id=project.preview_job_id,
            mode=self._jobs.mode,
        )
