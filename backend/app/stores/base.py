"""Store protocols shared by the in-memory and PostgreSQL implementations.

The core never caches rows: every request re-reads through these methods,
and the only writes to the profile counter are predicate-guarded.
"""

from __future__ import annotations

from typing import Protocol

from app.models.contracts import PreviewPatch, ProfileRecord, ProjectPatch, ProjectRecord


class ProjectStore(Protocol):
    async def create_project(
        self,
        *,
        owner_id: str,
        name: str,
        goal: str | None = None,
        room_type: str | None = None,
    ) -> ProjectRecord: ...

    async def get_project(self, project_id: str) -> ProjectRecord | None: ...

    async def list_projects(self, owner_id: str) -> list[ProjectRecord]: ...

    async def set_input_image(self, project_id: str, url: str) -> ProjectRecord | None: ...

    async def update_preview(self, project_id: str, patch: PreviewPatch) -> None: ...

    async def update_project(self, project_id: str, patch: ProjectPatch) -> ProjectRecord | None:
        """Write the set fields of ``patch``; None when the project does not exist."""
        ...

    async def delete_project(self, project_id: str) -> bool: ...


class ProfileStore(Protocol):
    async def get_profile(self, user_id: str) -> ProfileRecord | None: ...

    async def ensure_profile(self, user_id: str, period_key: str) -> ProfileRecord:
        """Insert a free-tier profile unless one already exists; return the stored row."""
        ...

    async def rollover_period(
        self, user_id: str, *, stale_key: str, current_key: str
    ) -> ProfileRecord | None:
        """Reset the counter for a new period, only if ``period_key`` is still ``stale_key``.

        Returns the updated row, or None when no row matched.
        """
        ...

    async def increment_credits(
        self, user_id: str, *, expected_used: int, period_key: str
    ) -> ProfileRecord | None:
        """Add one credit, only if the counter and period still equal what was read.

        Returns the updated row, or None when no row matched.
        """
        ...


class RecordStore(ProjectStore, ProfileStore, Protocol):
    async def ping(self) -> bool: ...

    async def close(self) -> None: ...
