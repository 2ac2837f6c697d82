"""PostgreSQL implementation of SigningCredentialRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cert_service.db.engine import session_scope
from cert_service.db.tables import SigningCredentialRow
from cert_service.models.signing_credential import CredentialState, SigningCredential

_MUTABLE_COLUMNS = (
    "display_name",
    "issuer_name",
    "serial_number",
    "not_before",
    "not_after",
    "uploaded_at",
    "status",
    "encrypted_pkcs12",
    "pkcs12_iv",
    "encrypted_secret",
    "secret_iv",
)


class PgSigningCredentialRepo:
    """Satisfies the SigningCredentialRepo Protocol using PostgreSQL."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get(self, owner_id: UUID) -> SigningCredential | None:
        stmt = select(SigningCredentialRow).where(SigningCredentialRow.owner_id == owner_id)
        async with session_scope(self._sessions) as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        return _row_to_credential(row) if row is not None else None

    async def upsert(self, credential: SigningCredential) -> SigningCredential:
        values = {
            "owner_id": credential.owner_id,
            "display_name": credential.display_name,
            "issuer_name": credential.issuer_name,
            "serial_number": credential.serial_number,
            "not_before": credential.not_before,
            "not_after": credential.not_after,
            "uploaded_at": credential.uploaded_at,
            "status": credential.status.value,
            "encrypted_pkcs12": credential.encrypted_pkcs12,
            "pkcs12_iv": credential.pkcs12_iv,
            "encrypted_secret": credential.encrypted_secret,
            "secret_iv": credential.secret_iv,
        }
        stmt = insert(SigningCredentialRow).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SigningCredentialRow.owner_id],
            set_={col: stmt.excluded[col] for col in _MUTABLE_COLUMNS},
        )
        async with session_scope(self._sessions) as session:
            await session.execute(stmt)
        return credential

    async def set_status(self, owner_id: UUID, status: CredentialState) -> None:
        stmt = (
            update(SigningCredentialRow)
            .where(SigningCredentialRow.owner_id == owner_id)
            .values(status=status.value)
        )
        async with session_scope(self._sessions) as session:
            await session.execute(stmt)

    async def delete(self, owner_id: UUID) -> bool:
        stmt = delete(SigningCredentialRow).where(SigningCredentialRow.owner_id == owner_id)
        async with session_scope(self._sessions) as session:
            result = await session.execute(stmt)
        return result.rowcount > 0


def _row_to_credential(row: SigningCredentialRow) -> SigningCredential:
    return SigningCredential(
        owner_id=row.owner_id,
        display_name=row.display_name,
        issuer_name=row.issuer_name,
        serial_number=row.serial_number,
        not_before=row.not_before,
        not_after=row.not_after,
        uploaded_at=row.uploaded_at,
        status=CredentialState(row.status),
        encrypted_pkcs12=row.encrypted_pkcs12,
        pkcs12_iv=row.pkcs12_iv,
        encrypted_secret=row.encrypted_secret,
        secret_iv=row.secret_iv,
    )
