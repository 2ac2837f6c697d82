"""PostgreSQL implementation of UserDirectory."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cert_service.db.engine import session_scope
from cert_service.db.tables import UserRow
from cert_service.models.person import Person


class PgUserDirectory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get_by_id(self, user_id: UUID) -> Person | None:
        stmt = select(UserRow).where(UserRow.id == user_id)
        async with session_scope(self._sessions) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return Person(
            id=row.id,
            name=row.name or "",
            email=row.email,
            national_id=row.national_id,
        )
