"""In-memory record store, used when USE_DATABASE=false.

Lets the iOS app and the test suite run without Postgres. Each method runs
without awaiting anything in between its read and write, so on a single
event loop every call is atomic, which is what the conditional updates
rely on. Records are copied in and out so callers never share state with
the store.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from app.models.contracts import PreviewPatch, ProfileRecord, ProjectPatch, ProjectRecord


def _now() -> datetime:
    return datetime.now(UTC)


class InMemoryStore:
    def __init__(self) -> None:
        self.projects: dict[str, ProjectRecord] = {}
        self.profiles: dict[str, ProfileRecord] = {}

    # --- projects ---

    async def create_project(
        self,
        *,
        owner_id: str,
        name: str,
        goal: str | None = None,
        room_type: str | None = None,
    ) -> ProjectRecord:
        now = _now()
        record = ProjectRecord(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            goal=goal,
            room_type=room_type,
            created_at=now,
            updated_at=now,
        )
        self.projects[record.id] = record
        return record.model_copy()

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        record = self.projects.get(project_id)
        return record.model_copy() if record is not None else None

    async def list_projects(self, owner_id: str) -> list[ProjectRecord]:
        owned = [p for p in self.projects.values() if p.owner_id == owner_id]
        owned.sort(key=lambda p: p.created_at, reverse=True)
        return [p.model_copy() for p in owned]

    async def set_input_image(self, project_id: str, url: str) -> ProjectRecord | None:
        record = self.projects.get(project_id)
        if record is None:
            return None
        updated = record.model_copy(update={"input_image_url": url, "updated_at": _now()})
        self.projects[project_id] = updated
        return updated.model_copy()

    async def update_preview(self, project_id: str, patch: PreviewPatch) -> None:
        record = self.projects.get(project_id)
        if record is None:
            return
        changes = patch.model_dump(exclude_unset=True)
        changes["updated_at"] = _now()
        self.projects[project_id] = record.model_copy(update=changes)

    async def update_project(self, project_id: str, patch: ProjectPatch) -> ProjectRecord | None:
        record = self.projects.get(project_id)
        if record is None:
            return None
        changes = patch.model_dump(exclude_unset=True)
        changes["updated_at"] = _now()
        updated = record.model_copy(update=changes)
        self.projects[project_id] = updated
        return updated.model_copy()

    async def delete_project(self, project_id: str) -> bool:
        return self.projects.pop(project_id, None) is not None

    # --- profiles ---

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        record = self.profiles.get(user_id)
        return record.model_copy() if record is not None else None

    async def ensure_profile(self, user_id: str, period_key: str) -> ProfileRecord:
        record = self.profiles.get(user_id)
        if record is None:
            record = ProfileRecord(user_id=user_id, period_key=period_key)
            self.profiles[user_id] = record
        return record.model_copy()

    async def rollover_period(
        self, user_id: str, *, stale_key: str, current_key: str
    ) -> ProfileRecord | None:
        record = self.profiles.get(user_id)
        if record is None or record.period_key != stale_key:
            return None
        updated = record.model_copy(
            update={"credits_used_this_period": 0, "period_key": current_key}
        )
        self.profiles[user_id] = updated
        return updated.model_copy()

    async def increment_credits(
        self, user_id: str, *, expected_used: int, period_key: str
    ) -> ProfileRecord | None:
        record = self.profiles.get(user_id)
        if (
            record is None
            or record.credits_used_this_period != expected_used
            or record.period_key != period_key
        ):
            return None
        updated = record.model_copy(update={"credits_used_this_period": expected_used + 1})
        self.profiles[user_id] = updated
        return updated.model_copy()

    # --- lifecycle ---

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass
