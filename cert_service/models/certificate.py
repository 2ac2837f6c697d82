from __future__ import annotations

import datetime
import secrets
import uuid
from dataclasses import dataclass
from enum import Enum
from uuid import UUID, uuid4


class CertificateStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    REVOKED = "revoked"
    EXPIRED = "expired"


def new_certificate_number() -> str:
    return f"CERT-{secrets.token_hex(4).upper()}"


def new_verification_code() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True, slots=True)
class Certificate:
    id: UUID
    certificate_number: str
    verification_code: str
    course_name: str
    institution: str
    description: str
    issue_date: datetime.date
    issuer_id: UUID
    expiration_date: datetime.date | None = None
    status: CertificateStatus = CertificateStatus.DRAFT
    artifact_id: str | None = None
    created_at: datetime.datetime | None = None

    @staticmethod
    def new(
        *,
        course_name: str,
        institution: str,
        issuer_id: UUID,
        issue_date: datetime.date,
        description: str = "",
        expiration_date: datetime.date | None = None,
    ) -> Certificate:
        return Certificate(
            id=uuid4(),
            certificate_number=new_certificate_number(),
            verification_code=new_verification_code(),
            course_name=course_name,
            institution=institution,
            description=description,
            issue_date=issue_date,
            issuer_id=issuer_id,
            expiration_date=expiration_date,
            created_at=_utcnow(),
        )

    def is_expired(self, today: datetime.date) -> bool:
        return self.expiration_date is not None and self.expiration_date < today

    def effective_status(self, today: datetime.date) -> CertificateStatus:
        """Status as seen by readers; never persisted.

        Revocation wins over expiry, and expiry is derived from the
        expiration date rather than a stored transition.
        """
        if self.status is CertificateStatus.REVOKED:
            return CertificateStatus.REVOKED
        if self.is_expired(today):
            return CertificateStatus.EXPIRED
        return self.status


@dataclass(frozen=True, slots=True)
class CertificateDraft:
    """Caller-supplied content for a new certificate."""

    course_name: str
    issuer_id: UUID
    issue_date: datetime.date
    institution: str = ""
    description: str = ""
    expiration_date: datetime.date | None = None


@dataclass(frozen=True, slots=True)
class CertificateChanges:
    """Partial update for a draft certificate; None means "leave as is".

    clear_expiration removes the expiration date and wins over
    expiration_date.
    """

    course_name: str | None = None
    institution: str | None = None
    description: str | None = None
    issue_date: datetime.date | None = None
    expiration_date: datetime.date | None = None
    clear_expiration: bool = False


@dataclass(frozen=True, slots=True)
class Assignment:
    certificate_id: UUID
    user_id: UUID
    assigned_at: datetime.datetime
    assigned_by: UUID | None = None

    @staticmethod
    def new(
        *, certificate_id: UUID, user_id: UUID, assigned_by: UUID | None = None
    ) -> Assignment:
        return Assignment(
            certificate_id=certificate_id,
            user_id=user_id,
            assigned_at=_utcnow(),
            assigned_by=assigned_by,
        )
