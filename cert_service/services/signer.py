"""PAdES signing of rendered certificates with the issuer's own credential.

Signing never fails the caller.  No credential, an undecryptable
credential, or a pyHanko error all return the input document unchanged;
SignOutcome says which of those happened.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from uuid import UUID

from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from pyhanko.sign import signers
from pyhanko.sign.fields import SigSeedSubFilter

from cert_service.core.metrics import SIGNING_OUTCOMES
from cert_service.models.signing_credential import UnlockedCredential
from cert_service.repos.user_directory import UserDirectory
from cert_service.services.credential_vault import CredentialVault
from cert_service.services.errors import SignFailure

logger = logging.getLogger(__name__)

SIGNATURE_FIELD = "CertificateSignature"


@dataclass(frozen=True, slots=True)
class SignOutcome:
    document: bytes
    signed: bool
    reason: str | None = None  # "no_credential" or "error" when unsigned


class DocumentSigner:
    def __init__(
        self,
        vault: CredentialVault,
        directory: UserDirectory | None = None,
        *,
        reason: str = "Digitally signed certificate",
        location: str = "",
    ) -> None:
        self._vault = vault
        self._directory = directory
        self._reason = reason
        self._location = location

    async def _signer_name(self, signer_id: UUID) -> str | None:
        if self._directory is None:
            return None
        person = await self._directory.get_by_id(signer_id)
        if person is None or not person.name:
            return None
        return f"{person.name} <{person.email}>" if person.email else person.name

    async def _apply_signature(
        self, document: bytes, credential: UnlockedCredential, name: str | None
    ) -> bytes:
        signer = signers.SimpleSigner.load_pkcs12_data(
            credential.pkcs12,
            other_certs=None,
            passphrase=credential.secret.encode("utf-8") if credential.secret else None,
        )
        if signer is None:
            raise SignFailure("stored credential could not be loaded for signing")

        writer = IncrementalPdfFileWriter(io.BytesIO(document))
        out = io.BytesIO()
        await signers.async_sign_pdf(
            writer,
            signature_meta=signers.PdfSignatureMetadata(
                field_name=SIGNATURE_FIELD,
                reason=self._reason,
                location=self._location or None,
                name=name,
                subfilter=SigSeedSubFilter.PADES,
            ),
            signer=signer,
            output=out,
        )
        return out.getvalue()

    async def sign_with_outcome(self, document: bytes, signer_id: UUID | None) -> SignOutcome:
        if signer_id is None:
            SIGNING_OUTCOMES.labels(result="no_credential").inc()
            return SignOutcome(document=document, signed=False, reason="no_credential")

        try:
            credential = await self._vault.get_credential(signer_id)
            if credential is None:
                logger.info(
                    "No signing credential for %s, returning unsigned document",
                    signer_id,
                    extra={"owner_id": str(signer_id)},
                )
                SIGNING_OUTCOMES.labels(result="no_credential").inc()
                return SignOutcome(document=document, signed=False, reason="no_credential")

            signed = await self._apply_signature(
                document, credential, await self._signer_name(signer_id)
            )
        except Exception as e:
            logger.error(
                "Signing failed for %s, returning unsigned document: %s",
                signer_id,
                e,
                extra={"owner_id": str(signer_id)},
            )
            SIGNING_OUTCOMES.labels(result="error").inc()
            return SignOutcome(document=document, signed=False, reason="error")

        SIGNING_OUTCOMES.labels(result="signed").inc()
        logger.info(
            "Signed document for %s (%d bytes)",
            signer_id,
            len(signed),
            extra={"owner_id": str(signer_id)},
        )
        return SignOutcome(document=signed, signed=True)

    async def sign(self, document: bytes, signer_id: UUID | None) -> bytes:
        return (await self.sign_with_outcome(document, signer_id)).document
