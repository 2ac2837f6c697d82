"""Certificate management, issuance, and document download.

- POST   /v1/certificates                        create a draft (issuer/admin)
- GET    /v1/certificates/mine                   certificates assigned to the caller
- GET    /v1/certificates/stats                  counts per status
- GET    /v1/certificates/{id}
- PATCH  /v1/certificates/{id}                   edit a draft
- DELETE /v1/certificates/{id}
- POST   /v1/certificates/{id}/issue
- POST   /v1/certificates/{id}/revoke            admin only
- POST   /v1/certificates/{id}/recipients
- GET    /v1/certificates/{id}/recipients
- DELETE /v1/certificates/{id}/recipients/{user_id}
- GET    /v1/certificates/{id}/pdf?viewer_id=

Issuers manage their own certificates; admins manage all of them.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from typing import Annotated, NoReturn
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from cert_service.api.dependencies import require_principal, require_role
from cert_service.core.config import SETTINGS
from cert_service.models.certificate import (
    Certificate,
    CertificateChanges,
    CertificateDraft,
)
from cert_service.models.principal import Principal
from cert_service.services.errors import (
    ArtifactUnavailable,
    CertificateNotFound,
    DuplicateIdentifier,
    ImmutableCertificateError,
    StoreUnavailable,
)
from cert_service.services.registry import certificate_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])

ISSUER_ROLES = frozenset({"issuer", "admin"})


class CertificateOut(BaseModel):
    id: UUID
    certificate_number: str
    verification_code: str
    course_name: str
    institution: str
    description: str
    issue_date: datetime.date
    expiration_date: datetime.date | None
    status: str
    issuer_id: UUID
    has_artifact: bool

    @staticmethod
    def of(cert: Certificate) -> CertificateOut:
        return CertificateOut(
            id=cert.id,
            certificate_number=cert.certificate_number,
            verification_code=cert.verification_code,
            course_name=cert.course_name,
            institution=cert.institution,
            description=cert.description,
            issue_date=cert.issue_date,
            expiration_date=cert.expiration_date,
            status=cert.status.value,
            issuer_id=cert.issuer_id,
            has_artifact=cert.artifact_id is not None,
        )


class CertificateCreateIn(BaseModel):
    course_name: str = Field(min_length=1, max_length=255)
    issue_date: datetime.date
    institution: str = ""
    description: str = ""
    expiration_date: datetime.date | None = None
    recipient_ids: list[UUID] = []


class CertificateUpdateIn(BaseModel):
    course_name: str | None = Field(default=None, min_length=1, max_length=255)
    institution: str | None = None
    description: str | None = None
    issue_date: datetime.date | None = None
    expiration_date: datetime.date | None = None

    def to_changes(self) -> CertificateChanges:
        """Only fields sent by the client change; an explicit null
        expiration_date removes the expiry."""
        fields = self.model_dump(exclude_unset=True)
        if "expiration_date" in fields and fields["expiration_date"] is None:
            fields["clear_expiration"] = True
        return CertificateChanges(**fields)


class IssueIn(BaseModel):
    issuer_name: str | None = None


class RecipientsIn(BaseModel):
    user_ids: list[UUID] = Field(min_length=1)


class RecipientOut(BaseModel):
    user_id: UUID
    assigned_at: datetime.datetime
    assigned_by: UUID | None


class RecipientsAddedOut(BaseModel):
    added: int


def _raise_http(e: Exception) -> NoReturn:
    if isinstance(e, CertificateNotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    if isinstance(e, (ImmutableCertificateError, ValueError)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None
    if isinstance(e, DuplicateIdentifier):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    if isinstance(e, (StoreUnavailable, ArtifactUnavailable)):
        logger.warning("Artifact store error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Certificate document temporarily unavailable, retry later",
        ) from None
    raise e


async def _managed(certificate_id: UUID, principal: Principal) -> Certificate:
    """Certificate the caller may manage: its issuer, or an admin."""
    cert = await certificate_service.get_certificate(certificate_id)
    if cert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="certificate not found")
    if not principal.is_admin() and cert.issuer_id != principal.user_id:
        logger.warning(
            "Access denied: user=%s is not the issuer of %s",
            principal.user_id,
            certificate_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not the issuer of this certificate",
        )
    return cert


@router.post("", response_model=CertificateOut, status_code=status.HTTP_201_CREATED)
async def create_certificate(
    body: CertificateCreateIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> CertificateOut:
    if not principal.roles & ISSUER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions"
        )
    draft = CertificateDraft(
        course_name=body.course_name,
        issuer_id=principal.user_id,
        issue_date=body.issue_date,
        institution=body.institution,
        description=body.description,
        expiration_date=body.expiration_date,
    )
    try:
        cert = await certificate_service.create_certificate(
            draft, body.recipient_ids, assigned_by=principal.user_id
        )
    except (ValueError, DuplicateIdentifier) as e:
        _raise_http(e)
    return CertificateOut.of(cert)


@router.get("/mine", response_model=list[CertificateOut])
async def my_certificates(
    principal: Annotated[Principal, Depends(require_principal)],
) -> list[CertificateOut]:
    try:
        certs = await asyncio.wait_for(
            certificate_service.list_for_recipient(principal.user_id),
            timeout=SETTINGS.read_timeout_seconds,
        )
    except TimeoutError:
        logger.warning(
            "Listing certificates for %s timed out, returning empty list",
            principal.user_id,
            extra={"user_id": str(principal.user_id)},
        )
        return []
    return [CertificateOut.of(c) for c in certs]


@router.get("/stats")
async def certificate_statistics(
    principal: Annotated[Principal, Depends(require_principal)],
) -> dict[str, int]:
    if principal.is_admin():
        return await certificate_service.statistics()
    return await certificate_service.statistics(issuer_id=principal.user_id)


@router.get("/{certificate_id}", response_model=CertificateOut)
async def get_certificate(
    certificate_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> CertificateOut:
    return CertificateOut.of(await _managed(certificate_id, principal))


@router.patch("/{certificate_id}", response_model=CertificateOut)
async def update_certificate(
    certificate_id: UUID,
    body: CertificateUpdateIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> CertificateOut:
    await _managed(certificate_id, principal)
    try:
        cert = await certificate_service.update_certificate(
            certificate_id, body.to_changes()
        )
    except (CertificateNotFound, ValueError) as e:
        _raise_http(e)
    return CertificateOut.of(cert)


@router.delete("/{certificate_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_certificate(
    certificate_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> Response:
    await _managed(certificate_id, principal)
    await certificate_service.delete_certificate(certificate_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{certificate_id}/issue", response_model=CertificateOut)
async def issue_certificate(
    certificate_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
    body: IssueIn | None = None,
) -> CertificateOut:
    await _managed(certificate_id, principal)
    try:
        cert = await certificate_service.issue_certificate(
            certificate_id, issuer_name=body.issuer_name if body else None
        )
    except (CertificateNotFound, ImmutableCertificateError) as e:
        _raise_http(e)
    return CertificateOut.of(cert)


@router.post("/{certificate_id}/revoke", response_model=CertificateOut)
async def revoke_certificate(
    certificate_id: UUID,
    principal: Annotated[Principal, Depends(require_role("admin"))],
) -> CertificateOut:
    try:
        cert = await certificate_service.revoke_certificate(certificate_id)
    except CertificateNotFound as e:
        _raise_http(e)
    logger.info(
        "Certificate %s revoked by %s",
        cert.certificate_number,
        principal.user_id,
        extra={"certificate_id": str(certificate_id), "user_id": str(principal.user_id)},
    )
    return CertificateOut.of(cert)


@router.post("/{certificate_id}/recipients", response_model=RecipientsAddedOut)
async def add_recipients(
    certificate_id: UUID,
    body: RecipientsIn,
    principal: Annotated[Principal, Depends(require_principal)],
) -> RecipientsAddedOut:
    await _managed(certificate_id, principal)
    try:
        added = await certificate_service.assign_recipients(
            certificate_id, body.user_ids, assigned_by=principal.user_id
        )
    except (CertificateNotFound, ValueError) as e:
        _raise_http(e)
    return RecipientsAddedOut(added=added)


@router.get("/{certificate_id}/recipients", response_model=list[RecipientOut])
async def list_recipients(
    certificate_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> list[RecipientOut]:
    await _managed(certificate_id, principal)
    assignments = await certificate_service.list_recipients(certificate_id)
    return [
        RecipientOut(user_id=a.user_id, assigned_at=a.assigned_at, assigned_by=a.assigned_by)
        for a in assignments
    ]


@router.delete(
    "/{certificate_id}/recipients/{user_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def remove_recipient(
    certificate_id: UUID,
    user_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
) -> Response:
    await _managed(certificate_id, principal)
    if not await certificate_service.unassign_recipient(certificate_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not assigned")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{certificate_id}/pdf")
async def download_certificate(
    certificate_id: UUID,
    principal: Annotated[Principal, Depends(require_principal)],
    viewer_id: Annotated[UUID | None, Query()] = None,
) -> Response:
    cert = await certificate_service.get_certificate(certificate_id)
    if cert is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="certificate not found")

    is_manager = principal.is_admin() or cert.issuer_id == principal.user_id
    recipients = {a.user_id for a in await certificate_service.list_recipients(certificate_id)}
    if not is_manager and principal.user_id not in recipients:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your certificate")
    if viewer_id is not None and viewer_id != principal.user_id and not is_manager:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Cannot view as another user"
        )

    try:
        pdf = await certificate_service.get_artifact(
            certificate_id, viewer_id=viewer_id or principal.user_id
        )
    except (CertificateNotFound, StoreUnavailable, ArtifactUnavailable) as e:
        _raise_http(e)

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{cert.certificate_number}.pdf"'},
    )
