from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Person:
    """Read-only view of a user record owned by the external directory."""

    id: UUID
    name: str
    email: str = ""
    national_id: str | None = None

    @staticmethod
    def new(*, name: str, email: str = "", national_id: str | None = None) -> Person:
        return Person(id=uuid4(), name=name, email=email, national_id=national_id)
