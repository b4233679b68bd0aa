"""PostgreSQL record store (SQLAlchemy async + asyncpg).

Conditional updates are single ``UPDATE ... WHERE ... RETURNING`` statements,
so the compare-and-swap happens inside Postgres: a statement whose predicate
no longer matches returns no row and changes nothing.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.models.contracts import PreviewPatch, ProfileRecord, ProjectPatch, ProjectRecord
from app.models.db import Profile, Project

logger = structlog.get_logger()

_PROFILE_COLUMNS = (
    Profile.user_id,
    Profile.tier,
    Profile.credits_used_this_period,
    Profile.period_key,
)


def _parse_id(project_id: str) -> uuid.UUID | None:
    """Project ids are UUIDs; anything else cannot match a row."""
    try:
        return uuid.UUID(project_id)
    except ValueError:
        return None


def _project_record(row: Project) -> ProjectRecord:
    return ProjectRecord(
        id=str(row.id),
        owner_id=row.owner_id,
        name=row.name,
        goal=row.goal,
        room_type=row.room_type,
        status=row.status,
        input_image_url=row.input_image_url,
        preview_status=row.preview_status,  # type: ignore[arg-type]
        preview_job_id=row.preview_job_id,
        preview_url=row.preview_url,
        preview_meta=row.preview_meta,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _profile_record(row: Any) -> ProfileRecord:
    return ProfileRecord(
        user_id=row.user_id,
        tier=row.tier,
        credits_used_this_period=row.credits_used_this_period,
        period_key=row.period_key,
    )


class PostgresStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    @classmethod
    def from_url(cls, database_url: str) -> PostgresStore:
        return cls(create_async_engine(database_url, pool_pre_ping=True))

    # --- projects ---

    async def create_project(
        self,
        *,
        owner_id: str,
        name: str,
        goal: str | None = None,
        room_type: str | None = None,
    ) -> ProjectRecord:
        async with self._sessions() as session:
            row = Project(owner_id=owner_id, name=name, goal=goal, room_type=room_type)
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _project_record(row)

    async def get_project(self, project_id: str) -> ProjectRecord | None:
        pk = _parse_id(project_id)
        if pk is None:
            return None
        async with self._sessions() as session:
            row = await session.get(Project, pk)
            return _project_record(row) if row is not None else None

    async def list_projects(self, owner_id: str) -> list[ProjectRecord]:
        async with self._sessions() as session:
            result = await session.execute(
                select(Project)
                .where(Project.owner_id == owner_id)
                .order_by(Project.created_at.desc())
            )
            return [_project_record(row) for row in result.scalars()]

    async def set_input_image(self, project_id: str, url: str) -> ProjectRecord | None:
        pk = _parse_id(project_id)
        if pk is None:
            return None
        async with self._sessions() as session:
            row = await session.get(Project, pk)
            if row is None:
                return None
            row.input_image_url = url
            await session.commit()
            await session.refresh(row)
            return _project_record(row)

    async def update_preview(self, project_id: str, patch: PreviewPatch) -> None:
        pk = _parse_id(project_id)
        changes = patch.model_dump(exclude_unset=True)
        if pk is None or not changes:
            return
        async with self._sessions() as session:
            await session.execute(
                update(Project)
                .where(Project.id == pk)
                .values(**changes)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def update_project(self, project_id: str, patch: ProjectPatch) -> ProjectRecord | None:
        pk = _parse_id(project_id)
        if pk is None:
            return None
        async with self._sessions() as session:
            row = await session.get(Project, pk)
            if row is None:
                return None
            for field, value in patch.model_dump(exclude_unset=True).items():
                setattr(row, field, value)
            await session.commit()
            await session.refresh(row)
            return _project_record(row)

    async def delete_project(self, project_id: str) -> bool:
        pk = _parse_id(project_id)
        if pk is None:
            return False
        async with self._sessions() as session:
            result = await session.execute(
                delete(Project).where(Project.id == pk).returning(Project.id)
            )
            deleted = result.first() is not None
            await session.commit()
            return deleted

    # --- profiles ---

    async def get_profile(self, user_id: str) -> ProfileRecord | None:
        async with self._sessions() as session:
            result = await session.execute(
                select(*_PROFILE_COLUMNS).where(Profile.user_id == user_id)
            )
            row = result.first()
            return _profile_record(row) if row is not None else None

    async def ensure_profile(self, user_id: str, period_key: str) -> ProfileRecord:
        async with self._sessions() as session:
            await session.execute(
                pg_insert(Profile)
                .values(user_id=user_id, tier="free", period_key=period_key)
                .on_conflict_do_nothing(index_elements=[Profile.user_id])
            )
            await session.commit()
            result = await session.execute(
                select(*_PROFILE_COLUMNS).where(Profile.user_id == user_id)
            )
            return _profile_record(result.one())

    async def rollover_period(
        self, user_id: str, *, stale_key: str, current_key: str
    ) -> ProfileRecord | None:
        return await self._conditional_update(
            update(Profile)
            .where(Profile.user_id == user_id, Profile.period_key == stale_key)
            .values(credits_used_this_period=0, period_key=current_key)
        )

    async def increment_credits(
        self, user_id: str, *, expected_used: int, period_key: str
    ) -> ProfileRecord | None:
        return await self._conditional_update(
            update(Profile)
            .where(
                Profile.user_id == user_id,
                Profile.credits_used_this_period == expected_used,
                Profile.period_key == period_key,
            )
            .values(credits_used_this_period=expected_used + 1)
        )

    async def _conditional_update(self, stmt: Any) -> ProfileRecord | None:
        async with self._sessions() as session:
            result = await session.execute(
                stmt.returning(*_PROFILE_COLUMNS).execution_options(synchronize_session=False)
            )
            row = result.first()
            await session.commit()
            return _profile_record(row) if row is not None else None

    # --- lifecycle ---

    async def ping(self) -> bool:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        await self._engine.dispose()
