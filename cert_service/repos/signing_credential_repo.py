from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from cert_service.models.signing_credential import CredentialState, SigningCredential


class SigningCredentialRepo(Protocol):
    async def get(self, owner_id: UUID) -> SigningCredential | None: ...
    async def upsert(self, credential: SigningCredential) -> SigningCredential: ...
    async def set_status(self, owner_id: UUID, status: CredentialState) -> None: ...
    async def delete(self, owner_id: UUID) -> bool: ...


class InMemorySigningCredentialRepo:
    def __init__(self) -> None:
        self._by_owner: dict[UUID, SigningCredential] = {}

    async def get(self, owner_id: UUID) -> SigningCredential | None:
        return self._by_owner.get(owner_id)

    async def upsert(self, credential: SigningCredential) -> SigningCredential:
        # No versioning: a re-upload replaces the previous record wholesale.
        self._by_owner[credential.owner_id] = credential
        return credential

    async def set_status(self, owner_id: UUID, status: CredentialState) -> None:
        cred = self._by_owner.get(owner_id)
        if cred is None:
            raise KeyError("signing credential not found")
        self._by_owner[owner_id] = replace(cred, status=status)

    async def delete(self, owner_id: UUID) -> bool:
        return self._by_owner.pop(owner_id, None) is not None
