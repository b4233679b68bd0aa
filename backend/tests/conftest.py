"""Shared fixtures: an app wired to an in-memory store and the stub provider."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.main import create_app
from app.models.contracts import JobStatus, PreviewPatch, ProfileRecord, SubmitContext
from app.services.entitlements import period_key
from app.services.preview import PreviewService
from app.stores.memory import InMemoryStore

OWNER = "user-owner-1"
STRANGER = "user-stranger-2"


@pytest.fixture
def test_settings() -> Settings:
    """Stub Decor8, in-memory store, default quotas regardless of the local environment."""
    return Settings(
        _env_file=None,
        use_database=False,
        decor8_api_key="",
        decor8_base_url="stub|decor8",
        dev_no_quota=False,
        quota_free=2,
        quota_casual=5,
        quota_pro=25,
        quota_consume_retries=1,
        environment="development",
    )


@pytest.fixture
def app(test_settings: Settings):
    return create_app(test_settings)


@pytest.fixture
def store(app) -> InMemoryStore:
    return app.state.store


@pytest.fixture
async def client(app):
    """httpx client over ASGI; unhandled errors come back as 500 JSON like in production."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def current_period() -> str:
    return period_key(datetime.now(UTC))


@pytest.fixture
def seed_profile(store: InMemoryStore, current_period: str):
    """Insert a profile row directly, defaulting to the current period."""

    def _seed(
        user_id: str = OWNER,
        *,
        tier: str = "free",
        used: int = 0,
        period: str | None = None,
    ) -> ProfileRecord:
        record = ProfileRecord(
            user_id=user_id,
            tier=tier,
            credits_used_this_period=used,
            period_key=period or current_period,
        )
        store.profiles[user_id] = record
        return record

    return _seed


class ScriptedJobClient:
    """Preview job client whose poll results are queued up by the test.

    ``statuses`` holds JobStatus values or exceptions, consumed one per poll;
    an empty queue reports ``queued``.
    """

    mode = "live"

    def __init__(self) -> None:
        self.job_ids = iter(f"J{n}" for n in range(1, 1000))
        self.submitted: list[dict] = []
        self.polled: list[str] = []
        self.statuses: list[JobStatus | Exception] = []
        self.submit_error: Exception | None = None

    async def submit(self, image_url: str, prompt: str | None, context: SubmitContext) -> str:
        self.submitted.append({"image_url": image_url, "prompt": prompt, "context": context})
        if self.submit_error is not None:
            raise self.submit_error
        return next(self.job_ids)

    async def poll_status(self, job_id: str) -> JobStatus:
        self.polled.append(job_id)
        if not self.statuses:
            return JobStatus(state="queued")
        item = self.statuses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        pass


@pytest.fixture
def jobs(app, store: InMemoryStore, test_settings: Settings) -> ScriptedJobClient:
    """Swap the app's provider client for a scripted one."""
    scripted = ScriptedJobClient()
    app.state.job_client = scripted
    app.state.preview_service = PreviewService(store, scripted, test_settings)
    return scripted


@pytest.fixture
def make_project(store: InMemoryStore):
    """Create a project row owned by OWNER (or ``owner``) with optional preview fields."""

    async def _make(
        *,
        owner: str = OWNER,
        image_url: str | None = "https://x/img.jpg",
        **preview_fields,
    ) -> str:
        project = await store.create_project(owner_id=owner, name="Repaint the guest bedroom")
        if image_url is not None:
            await store.set_input_image(project.id, image_url)
        if preview_fields:
            await store.update_preview(project.id, PreviewPatch(**preview_fields))
        return project.id

    return _make
