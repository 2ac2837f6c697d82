"""Public certificate verification.

GET /v1/verify/{code} needs no identity; the verification code printed
on (or encoded into) a certificate is the only input.
"""

from __future__ import annotations

import asyncio
import datetime
import logging

from fastapi import APIRouter
from pydantic import BaseModel

from cert_service.core.config import SETTINGS
from cert_service.models.certificate import Certificate
from cert_service.services.registry import certificate_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/verify", tags=["verification"])


class VerifiedCertificateOut(BaseModel):
    certificate_number: str
    course_name: str
    institution: str
    issue_date: datetime.date
    expiration_date: datetime.date | None
    status: str

    @staticmethod
    def of(cert: Certificate) -> VerifiedCertificateOut:
        return VerifiedCertificateOut(
            certificate_number=cert.certificate_number,
            course_name=cert.course_name,
            institution=cert.institution,
            issue_date=cert.issue_date,
            expiration_date=cert.expiration_date,
            status=cert.status.value,
        )


class VerificationOut(BaseModel):
    valid: bool
    reason: str | None = None
    certificate: VerifiedCertificateOut | None = None


@router.get("/{code}", response_model=VerificationOut)
async def verify_certificate(code: str) -> VerificationOut:
    try:
        result = await asyncio.wait_for(
            certificate_service.verify(code), timeout=SETTINGS.read_timeout_seconds
        )
    except TimeoutError:
        logger.warning("Verification lookup timed out, reporting unavailable")
        return VerificationOut(valid=False, reason="unavailable")

    return VerificationOut(
        valid=result.valid,
        reason=result.reason,
        certificate=(
            VerifiedCertificateOut.of(result.certificate)
            if result.certificate is not None
            else None
        ),
    )
