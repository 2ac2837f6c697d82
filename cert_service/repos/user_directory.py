from __future__ import annotations

from typing import Protocol
from uuid import UUID

from cert_service.models.person import Person


class UserDirectory(Protocol):
    """Lookup into user records owned by the rest of the platform."""

    async def get_by_id(self, user_id: UUID) -> Person | None: ...


class InMemoryUserDirectory:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Person] = {}

    async def get_by_id(self, user_id: UUID) -> Person | None:
        return self._by_id.get(user_id)

    def add(self, person: Person) -> None:
        # Seeding hook for dev and tests; production records come from Postgres.
        self._by_id[person.id] = person
