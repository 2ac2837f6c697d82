"""The caller's personal signing credential (PKCS#12).

- PUT    /v1/signing-credential   upload or replace (multipart: file, password)
- GET    /v1/signing-credential   status, never secret material
- DELETE /v1/signing-credential
"""

from __future__ import annotations

import datetime
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status
from pydantic import BaseModel

from cert_service.api.dependencies import require_principal
from cert_service.models.principal import Principal
from cert_service.models.signing_credential import CredentialStatus
from cert_service.services.credential_vault import MAX_CREDENTIAL_BYTES, check_upload
from cert_service.services.errors import InvalidCredential
from cert_service.services.registry import credential_vault

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/signing-credential", tags=["signing-credential"])


class CredentialOut(BaseModel):
    display_name: str
    issuer_name: str
    serial_number: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    uploaded_at: datetime.datetime
    status: str
    is_expired: bool
    is_current: bool

    @staticmethod
    def of(meta: CredentialStatus) -> CredentialOut:
        return CredentialOut(
            display_name=meta.display_name,
            issuer_name=meta.issuer_name,
            serial_number=meta.serial_number,
            not_before=meta.not_before,
            not_after=meta.not_after,
            uploaded_at=meta.uploaded_at,
            status=meta.status.value,
            is_expired=meta.is_expired,
            is_current=meta.is_current,
        )


class CredentialStatusOut(BaseModel):
    has_credential: bool
    credential: CredentialOut | None = None


@router.put("", response_model=CredentialOut)
async def upload_credential(
    principal: Annotated[Principal, Depends(require_principal)],
    file: Annotated[UploadFile, File()],
    password: Annotated[str, Form()],
) -> CredentialOut:
    # Read one byte past the ceiling so oversize uploads are caught without
    # buffering the whole body.
    raw = await file.read(MAX_CREDENTIAL_BYTES + 1)
    try:
        check_upload(file.filename or "", len(raw))
        meta = await credential_vault.store_credential(principal.user_id, raw, password)
    except InvalidCredential as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None
    return CredentialOut.of(meta)


@router.get("", response_model=CredentialStatusOut)
async def credential_status(
    principal: Annotated[Principal, Depends(require_principal)],
) -> CredentialStatusOut:
    meta = await credential_vault.get_status(principal.user_id)
    if meta is None:
        return CredentialStatusOut(has_credential=False)
    return CredentialStatusOut(has_credential=True, credential=CredentialOut.of(meta))


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_credential(
    principal: Annotated[Principal, Depends(require_principal)],
) -> Response:
    if not await credential_vault.delete_credential(principal.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="no signing credential")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
