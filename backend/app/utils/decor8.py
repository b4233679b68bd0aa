"""Decor8 preview-job client: submit a redesign job, then poll its status.

Two implementations share the ``PreviewJobClient`` protocol:

- ``StubPreviewJobClient`` answers instantly: a synthetic job id on submit,
  and ``done`` with a placeholder image derived from the job id on poll.
  Used whenever Decor8 credentials are not configured.
- ``Decor8PreviewJobClient`` makes real HTTP calls with httpx.

``build_job_client`` picks one at startup; the choice does not change for
the lifetime of the process.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any, Protocol
from urllib.parse import quote

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from app.config import Settings
from app.errors import InvalidResponse, ProviderUnavailable
from app.models.contracts import JobState, JobStatus, ProviderMode, SubmitContext

logger = structlog.get_logger()

# Provider vocabularies seen in the wild, mapped onto the four canonical states
_STATE_MAP: dict[str, JobState] = {
    "queued": "queued",
    "pending": "queued",
    "running": "running",
    "processing": "running",
    "done": "done",
    "ready": "done",
    "completed": "done",
    "succeeded": "done",
    "failed": "failed",
    "error": "failed",
}

_BODY_SNIPPET = 200


class PreviewJobClient(Protocol):
    mode: ProviderMode

    async def submit(self, image_url: str, prompt: str | None, context: SubmitContext) -> str: ...

    async def poll_status(self, job_id: str) -> JobStatus: ...

    async def aclose(self) -> None: ...


# --- provider payloads, normalized in one place ---


_JOB_ID_KEYS = ("id", "job_id", "jobId")


class _SubmitPayload(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    job_id: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _first_non_empty_id(cls, data: Any) -> dict[str, Any]:
        """Take the first id key holding a value; null or empty keys fall through."""
        if not isinstance(data, dict):
            return {}
        for key in _JOB_ID_KEYS:
            value = data.get(key)
            if value is not None and value != "":
                return {"job_id": value}
        return {}


class _StatusPayload(BaseModel):
    state: str = Field(validation_alias=AliasChoices("status", "state"))
    result_url: str | None = Field(
        default=None, validation_alias=AliasChoices("url", "preview_url", "output_url")
    )
    thumb_url: str | None = Field(default=None, validation_alias=AliasChoices("thumb_url", "thumb"))


def stub_preview_url(job_id: str) -> str:
    return f"https://picsum.photos/seed/{job_id}/1600/1200"


def stub_thumb_url(job_id: str) -> str:
    return f"https://picsum.photos/seed/{job_id}/600/400"


def _new_stub_id() -> str:
    return f"stub_{uuid.uuid4().hex[:12]}"


class StubPreviewJobClient:
    mode: ProviderMode = "stub"

    def __init__(self, id_factory: Callable[[], str] = _new_stub_id) -> None:
        self._id_factory = id_factory

    async def submit(self, image_url: str, prompt: str | None, context: SubmitContext) -> str:
        job_id = self._id_factory()
        logger.info("decor8_stub_submit", job_id=job_id, room_type=context.room_type)
        return job_id

    async def poll_status(self, job_id: str) -> JobStatus:
        return JobStatus(
            state="done",
            result_url=stub_preview_url(job_id),
            thumb_url=stub_thumb_url(job_id),
        )

    async def aclose(self) -> None:
        pass


class Decor8PreviewJobClient:
    """Live Decor8 client.

    Raises ``ProviderUnavailable`` for transport errors and non-2xx replies,
    and ``InvalidResponse`` when a 2xx body is missing a required field.
    Never retries; the mobile client re-issues start or keeps polling.
    """

    mode: ProviderMode = "live"

    def __init__(self, base_url: str, api_key: str, *, http: httpx.AsyncClient) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http = http

    @classmethod
    def from_settings(cls, cfg: Settings) -> Decor8PreviewJobClient:
        http = httpx.AsyncClient(timeout=cfg.decor8_timeout_seconds)
        return cls(cfg.decor8_base_url, cfg.decor8_api_key, http=http)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, op: str, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._http.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("decor8_timeout", op=op)
            raise ProviderUnavailable(f"Decor8 {op} timed out") from exc
        except httpx.RequestError as exc:
            logger.warning("decor8_transport_error", op=op, error_type=type(exc).__name__)
            raise ProviderUnavailable(f"Decor8 {op} failed: {type(exc).__name__}") from exc

        if not response.is_success:
            logger.warning(
                "decor8_http_error",
                op=op,
                status=response.status_code,
                body=response.text[:_BODY_SNIPPET],
            )
            raise ProviderUnavailable(
                f"Decor8 {op} returned HTTP {response.status_code}",
                http_status=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise InvalidResponse(f"Decor8 {op} returned a non-JSON body") from exc

    async def submit(self, image_url: str, prompt: str | None, context: SubmitContext) -> str:
        body = {
            "input_image_url": image_url,
            "room_type": context.room_type,
            "design_style": context.design_style,
            "num_images": 1,
            "prompt": prompt or "",
            "ar_context": {"roi": context.roi.model_dump() if context.roi else None},
        }
        data = await self._request(
            "submit", "POST", f"{self._base_url}/generate_designs_for_room", json=body
        )
        try:
            payload = _SubmitPayload.model_validate(data)
        except ValidationError as exc:
            raise InvalidResponse(
                "Decor8 submit response has a malformed job id", field="job_id"
            ) from exc
        if not payload.job_id:
            raise InvalidResponse("Decor8 submit response has no job id", field="job_id")
        logger.info("decor8_submit", job_id=payload.job_id)
        return payload.job_id

    async def poll_status(self, job_id: str) -> JobStatus:
        data = await self._request(
            "status", "GET", f"{self._base_url}/job_status/{quote(job_id, safe='')}"
        )
        try:
            payload = _StatusPayload.model_validate(data)
        except ValidationError as exc:
            raise InvalidResponse("Decor8 status response is malformed", field="status") from exc

        state = _STATE_MAP.get(payload.state.lower())
        if state is None:
            raise InvalidResponse(f"Unknown Decor8 job state: {payload.state!r}", field="status")
        if state == "done" and not payload.result_url:
            raise InvalidResponse("Decor8 reported done without a result url", field="url")
        return JobStatus(state=state, result_url=payload.result_url, thumb_url=payload.thumb_url)

    async def aclose(self) -> None:
        await self._http.aclose()


def build_job_client(cfg: Settings) -> PreviewJobClient:
    """Select the stub or live client once, from configuration presence."""
    if cfg.decor8_mode == "live":
        logger.info("decor8_mode", mode="live", base_url=cfg.decor8_base_url)
        return Decor8PreviewJobClient.from_settings(cfg)
    logger.info("decor8_mode", mode="stub")
    return StubPreviewJobClient()
