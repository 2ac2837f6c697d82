"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cert_service.db.engine import session_scope
from cert_service.db.tables import CertificateAssignmentRow, CertificateRow
from cert_service.models.certificate import Assignment, Certificate, CertificateStatus
from cert_service.services.errors import DuplicateIdentifier, UnknownUser

FOREIGN_KEY_VIOLATION = "23503"


def _is_foreign_key_violation(e: IntegrityError) -> bool:
    code = getattr(e.orig, "sqlstate", None) or getattr(e.orig, "pgcode", None)
    return code == FOREIGN_KEY_VIOLATION


class PgCertificateRepo:
    """Satisfies the CertificateRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def _one(self, *criteria) -> Certificate | None:
        async with session_scope(self._sessions) as session:
            stmt = select(CertificateRow).where(*criteria)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_certificate(row) if row is not None else None

    async def get_by_id(self, certificate_id: UUID) -> Certificate | None:
        return await self._one(CertificateRow.id == certificate_id)

    async def get_by_number(self, certificate_number: str) -> Certificate | None:
        return await self._one(CertificateRow.certificate_number == certificate_number)

    async def get_by_verification_code(self, code: str) -> Certificate | None:
        return await self._one(CertificateRow.verification_code == code)

    async def add(self, certificate: Certificate) -> None:
        row = CertificateRow(
            id=certificate.id,
            certificate_number=certificate.certificate_number,
            verification_code=certificate.verification_code,
            course_name=certificate.course_name,
            institution=certificate.institution,
            description=certificate.description,
            issue_date=certificate.issue_date,
            expiration_date=certificate.expiration_date,
            status=certificate.status.value,
            issuer_id=certificate.issuer_id,
            artifact_id=certificate.artifact_id,
        )
        if certificate.created_at is not None:
            row.created_at = certificate.created_at
        try:
            async with session_scope(self._sessions) as session:
                session.add(row)
                await session.flush()
        except IntegrityError as e:
            if _is_foreign_key_violation(e):
                raise UnknownUser(f"issuer {certificate.issuer_id} does not exist") from e
            raise DuplicateIdentifier(
                f"certificate number or verification code already exists: {e.orig}"
            ) from e

    async def update(self, certificate: Certificate) -> Certificate | None:
        # Identifiers are deliberately absent from the SET list.
        stmt = (
            update(CertificateRow)
            .where(CertificateRow.id == certificate.id)
            .values(
                course_name=certificate.course_name,
                institution=certificate.institution,
                description=certificate.description,
                issue_date=certificate.issue_date,
                expiration_date=certificate.expiration_date,
                status=certificate.status.value,
                artifact_id=certificate.artifact_id,
            )
        )
        async with session_scope(self._sessions) as session:
            result = await session.execute(stmt)
        if result.rowcount == 0:
            return None
        return await self.get_by_id(certificate.id)

    async def delete(self, certificate_id: UUID) -> bool:
        async with session_scope(self._sessions) as session:
            await session.execute(
                delete(CertificateAssignmentRow).where(
                    CertificateAssignmentRow.certificate_id == certificate_id
                )
            )
            result = await session.execute(
                delete(CertificateRow).where(CertificateRow.id == certificate_id)
            )
        return result.rowcount > 0

    async def list_all(self, issuer_id: UUID | None = None) -> list[Certificate]:
        stmt = select(CertificateRow).order_by(CertificateRow.created_at)
        if issuer_id is not None:
            stmt = stmt.where(CertificateRow.issuer_id == issuer_id)
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_certificate(r) for r in rows]

    async def list_for_user(self, user_id: UUID) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .join(
                CertificateAssignmentRow,
                CertificateAssignmentRow.certificate_id == CertificateRow.id,
            )
            .where(CertificateAssignmentRow.user_id == user_id)
            .order_by(CertificateAssignmentRow.assigned_at)
        )
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_certificate(r) for r in rows]

    async def add_assignment(self, assignment: Assignment) -> bool:
        stmt = (
            insert(CertificateAssignmentRow)
            .values(
                certificate_id=assignment.certificate_id,
                user_id=assignment.user_id,
                assigned_at=assignment.assigned_at,
                assigned_by=assignment.assigned_by,
            )
            .on_conflict_do_nothing(index_elements=["certificate_id", "user_id"])
        )
        try:
            async with session_scope(self._sessions) as session:
                result = await session.execute(stmt)
        except IntegrityError as e:
            if _is_foreign_key_violation(e):
                raise UnknownUser(
                    f"user {assignment.user_id} or certificate {assignment.certificate_id}"
                    " does not exist"
                ) from e
            raise
        return result.rowcount > 0

    async def remove_assignment(self, certificate_id: UUID, user_id: UUID) -> bool:
        stmt = delete(CertificateAssignmentRow).where(
            CertificateAssignmentRow.certificate_id == certificate_id,
            CertificateAssignmentRow.user_id == user_id,
        )
        async with session_scope(self._sessions) as session:
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def list_assignments(self, certificate_id: UUID) -> list[Assignment]:
        stmt = (
            select(CertificateAssignmentRow)
            .where(CertificateAssignmentRow.certificate_id == certificate_id)
            .order_by(CertificateAssignmentRow.assigned_at, CertificateAssignmentRow.id)
        )
        async with session_scope(self._sessions) as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            Assignment(
                certificate_id=r.certificate_id,
                user_id=r.user_id,
                assigned_at=r.assigned_at,
                assigned_by=r.assigned_by,
            )
            for r in rows
        ]


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        id=row.id,
        certificate_number=row.certificate_number,
        verification_code=row.verification_code,
        course_name=row.course_name,
        institution=row.institution or "",
        description=row.description or "",
        issue_date=row.issue_date,
        issuer_id=row.issuer_id,
        expiration_date=row.expiration_date,
        status=CertificateStatus(row.status),
        artifact_id=row.artifact_id,
        created_at=row.created_at,
    )
