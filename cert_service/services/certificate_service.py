"""Certificate lifecycle: creation, issuance, retrieval, verification.

STATE MACHINE
-------------
  draft --issue--> issued
  any   --revoke-> revoked

"expired" is never written.  It is derived from expiration_date every
time a record is read (Certificate.effective_status), and revocation
takes priority over it.

ISSUANCE PIPELINE
-----------------
  render (never fails) -> sign (never fails) -> upload (may fail)
  -> record status and artifact reference

An upload failure leaves the artifact reference empty; the document is
regenerated on the next download.  Two concurrent issuances of the same
certificate can both upload; the last repo.update wins.

RETRIEVAL
---------
get_artifact tries, in order:
  1. the stored artifact, when the store is up and still has it
  2. a fresh issuance pass, then a download of the new artifact
  3. with no store at all, an inline render + sign that is never kept
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from uuid import UUID

from cert_service.core.metrics import CERTIFICATES_ISSUED, VERIFICATIONS
from cert_service.models.certificate import (
    Assignment,
    Certificate,
    CertificateChanges,
    CertificateDraft,
    CertificateStatus,
)
from cert_service.models.person import Person
from cert_service.repos.certificate_repo import CertificateRepo
from cert_service.repos.user_directory import UserDirectory
from cert_service.services.artifact_store import ArtifactStore
from cert_service.services.errors import (
    ArtifactUnavailable,
    CertificateNotFound,
    DuplicateIdentifier,
    ImmutableCertificateError,
    StoreUnavailable,
    UnknownUser,
)
from cert_service.services.renderer import CertificateFields, CertificateRenderer
from cert_service.services.signer import DocumentSigner

logger = logging.getLogger(__name__)

DEFAULT_RECIPIENT_NAME = "Certificate Holder"


def _today() -> datetime.date:
    return datetime.datetime.now(datetime.UTC).date()


@dataclass(frozen=True, slots=True)
class VerificationResult:
    valid: bool
    reason: str | None = None
    certificate: Certificate | None = None


class CertificateService:
    def __init__(
        self,
        repo: CertificateRepo,
        directory: UserDirectory,
        renderer: CertificateRenderer,
        signer: DocumentSigner,
        store: ArtifactStore,
        *,
        default_institution: str = "Certificate Authority",
        today: Callable[[], datetime.date] = _today,
    ) -> None:
        self._repo = repo
        self._directory = directory
        self._renderer = renderer
        self._signer = signer
        self._store = store
        self._default_institution = default_institution
        self._today = today

    # ---- helpers ----

    def _view(self, cert: Certificate) -> Certificate:
        """Record as readers see it, with expiry applied for today."""
        status = cert.effective_status(self._today())
        return cert if status is cert.status else replace(cert, status=status)

    async def _require(self, certificate_id: UUID) -> Certificate:
        cert = await self._repo.get_by_id(certificate_id)
        if cert is None:
            raise CertificateNotFound(f"certificate {certificate_id} not found")
        return cert

    async def _primary_recipient(self, cert: Certificate) -> Person | None:
        assignments = await self._repo.list_assignments(cert.id)
        if not assignments:
            return None
        return await self._directory.get_by_id(assignments[0].user_id)

    def _issuer_name(self, cert: Certificate, issuer: Person | None, fallback: str | None) -> str:
        if issuer is not None and issuer.name:
            return issuer.name
        if fallback:
            return fallback
        return cert.institution or self._default_institution

    async def _fields(
        self,
        cert: Certificate,
        *,
        issuer_name: str | None = None,
        recipient: Person | None = None,
    ) -> CertificateFields:
        if recipient is None:
            recipient = await self._primary_recipient(cert)
        # The issuer is also the signer.
        issuer = await self._directory.get_by_id(cert.issuer_id)
        return CertificateFields(
            certificate_number=cert.certificate_number,
            recipient_name=recipient.name if recipient and recipient.name else DEFAULT_RECIPIENT_NAME,
            course_name=cert.course_name,
            description=cert.description,
            issue_date=cert.issue_date,
            expiration_date=cert.expiration_date,
            issuer_name=self._issuer_name(cert, issuer, issuer_name),
            signer_name=issuer.name if issuer is not None and issuer.name else None,
        )

    async def _render_and_sign(self, fields: CertificateFields, signer_id: UUID) -> bytes:
        document = self._renderer.render(fields)
        return await self._signer.sign(document, signer_id)

    async def _run_issuance(
        self, cert: Certificate, issuer_name: str | None = None
    ) -> tuple[Certificate, bytes]:
        document = await self._render_and_sign(
            await self._fields(cert, issuer_name=issuer_name), cert.issuer_id
        )

        artifact_id: str | None = None
        if self._store.is_available():
            try:
                artifact_id = await self._store.upload(
                    document, f"{cert.certificate_number}.pdf", cert.certificate_number
                )
            except StoreUnavailable as e:
                logger.warning(
                    "Artifact upload failed for %s, continuing without a stored copy: %s",
                    cert.certificate_number,
                    e,
                    extra={"certificate_id": str(cert.id)},
                )

        # Revocation is sticky; regenerating a revoked certificate's document
        # must not bring it back to issued.
        status = (
            CertificateStatus.REVOKED
            if cert.status is CertificateStatus.REVOKED
            else CertificateStatus.ISSUED
        )
        stored = await self._repo.update(replace(cert, status=status, artifact_id=artifact_id))
        if stored is None:
            raise CertificateNotFound(f"certificate {cert.id} was deleted during issuance")

        CERTIFICATES_ISSUED.labels(persisted="yes" if artifact_id else "no").inc()
        logger.info(
            "Issued certificate %s status=%s artifact=%s",
            cert.certificate_number,
            status.value,
            artifact_id or "-",
            extra={"certificate_id": str(cert.id), "artifact_id": artifact_id},
        )
        return stored, document

    async def _check_recipients(self, user_ids: list[UUID]) -> None:
        unknown = [
            str(user_id)
            for user_id in dict.fromkeys(user_ids)
            if await self._directory.get_by_id(user_id) is None
        ]
        if unknown:
            raise UnknownUser(f"unknown recipient(s): {', '.join(unknown)}")

    async def _mark_rendered_inline(self, cert: Certificate) -> None:
        """Bookkeeping for a document built without a store: a draft becomes
        issued, and a stale artifact reference is dropped."""
        if cert.status is not CertificateStatus.DRAFT and cert.artifact_id is None:
            return
        status = (
            CertificateStatus.ISSUED if cert.status is CertificateStatus.DRAFT else cert.status
        )
        await self._repo.update(replace(cert, status=status, artifact_id=None))

    async def _artifact_present(self, cert: Certificate) -> bool:
        if not cert.artifact_id or not self._store.is_available():
            return False
        try:
            return await self._store.exists(cert.artifact_id)
        except StoreUnavailable as e:
            logger.warning(
                "Could not check artifact %s for %s: %s",
                cert.artifact_id,
                cert.certificate_number,
                e,
                extra={"certificate_id": str(cert.id), "artifact_id": cert.artifact_id},
            )
            return False

    # ---- CRUD ----

    async def create_certificate(
        self,
        draft: CertificateDraft,
        recipient_ids: Iterable[UUID] = (),
        assigned_by: UUID | None = None,
    ) -> Certificate:
        if not draft.course_name.strip():
            raise ValueError("course name must not be empty")
        if draft.expiration_date is not None and draft.expiration_date < draft.issue_date:
            raise ValueError("expiration date precedes issue date")
        recipient_ids = list(recipient_ids)
        await self._check_recipients(recipient_ids)

        for attempt in range(2):
            cert = Certificate.new(
                course_name=draft.course_name.strip(),
                institution=draft.institution or self._default_institution,
                issuer_id=draft.issuer_id,
                issue_date=draft.issue_date,
                description=draft.description,
                expiration_date=draft.expiration_date,
            )
            try:
                await self._repo.add(cert)
                break
            except DuplicateIdentifier:
                if attempt:
                    raise
                logger.warning("Identifier collision on create, regenerating")

        try:
            await self.assign_recipients(cert.id, recipient_ids, assigned_by)
        except UnknownUser:
            # A recipient vanished between the check and the insert.
            await self._repo.delete(cert.id)
            raise
        logger.info(
            "Created certificate %s course=%r",
            cert.certificate_number,
            cert.course_name,
            extra={"certificate_id": str(cert.id)},
        )
        return cert

    async def get_certificate(self, certificate_id: UUID) -> Certificate | None:
        cert = await self._repo.get_by_id(certificate_id)
        return self._view(cert) if cert is not None else None

    async def get_by_number(self, certificate_number: str) -> Certificate | None:
        cert = await self._repo.get_by_number(certificate_number)
        return self._view(cert) if cert is not None else None

    async def get_by_verification_code(self, code: str) -> Certificate | None:
        cert = await self._repo.get_by_verification_code(code)
        return self._view(cert) if cert is not None else None

    async def update_certificate(
        self, certificate_id: UUID, changes: CertificateChanges
    ) -> Certificate:
        cert = await self._require(certificate_id)
        if cert.status is not CertificateStatus.DRAFT:
            raise ImmutableCertificateError(
                f"certificate {cert.certificate_number} is {cert.status.value} and cannot be edited"
            )

        updated = replace(
            cert,
            course_name=changes.course_name if changes.course_name is not None else cert.course_name,
            institution=changes.institution if changes.institution is not None else cert.institution,
            description=changes.description if changes.description is not None else cert.description,
            issue_date=changes.issue_date if changes.issue_date is not None else cert.issue_date,
            expiration_date=(
                None
                if changes.clear_expiration
                else changes.expiration_date
                if changes.expiration_date is not None
                else cert.expiration_date
            ),
        )
        if not updated.course_name.strip():
            raise ValueError("course name must not be empty")
        if updated.expiration_date is not None and updated.expiration_date < updated.issue_date:
            raise ValueError("expiration date precedes issue date")

        stored = await self._repo.update(updated)
        if stored is None:
            raise CertificateNotFound(f"certificate {certificate_id} not found")
        return self._view(stored)

    async def delete_certificate(self, certificate_id: UUID) -> bool:
        cert = await self._repo.get_by_id(certificate_id)
        if cert is None:
            return False
        if cert.artifact_id and self._store.is_available():
            try:
                await self._store.delete(cert.artifact_id)
            except StoreUnavailable as e:
                logger.warning(
                    "Could not delete artifact %s of %s: %s",
                    cert.artifact_id,
                    cert.certificate_number,
                    e,
                    extra={"certificate_id": str(cert.id), "artifact_id": cert.artifact_id},
                )
        return await self._repo.delete(certificate_id)

    # ---- lifecycle ----

    async def issue_certificate(
        self, certificate_id: UUID, issuer_name: str | None = None
    ) -> Certificate:
        cert = await self._require(certificate_id)
        if cert.status is CertificateStatus.REVOKED:
            raise ImmutableCertificateError(
                f"certificate {cert.certificate_number} is revoked and cannot be issued"
            )
        if cert.status is CertificateStatus.ISSUED and await self._artifact_present(cert):
            logger.debug("Certificate %s already issued", cert.certificate_number)
            return self._view(cert)

        stored, _document = await self._run_issuance(cert, issuer_name)
        return self._view(stored)

    async def revoke_certificate(self, certificate_id: UUID) -> Certificate:
        cert = await self._require(certificate_id)
        if cert.status is CertificateStatus.REVOKED:
            return cert
        stored = await self._repo.update(replace(cert, status=CertificateStatus.REVOKED))
        if stored is None:
            raise CertificateNotFound(f"certificate {certificate_id} not found")
        logger.info(
            "Revoked certificate %s",
            cert.certificate_number,
            extra={"certificate_id": str(cert.id)},
        )
        return stored

    # ---- documents ----

    async def _personalized(self, cert: Certificate, viewer_id: UUID) -> bytes | None:
        """Document rendered for a secondary recipient; None when not applicable."""
        assignments = await self._repo.list_assignments(cert.id)
        assigned = [a.user_id for a in assignments]
        if viewer_id not in assigned or viewer_id == assigned[0]:
            return None
        viewer = await self._directory.get_by_id(viewer_id)
        if viewer is None:
            return None
        logger.info(
            "Rendering %s for assigned viewer %s",
            cert.certificate_number,
            viewer_id,
            extra={"certificate_id": str(cert.id), "user_id": str(viewer_id)},
        )
        return await self._render_and_sign(
            await self._fields(cert, recipient=viewer), cert.issuer_id
        )

    async def get_artifact(self, certificate_id: UUID, viewer_id: UUID | None = None) -> bytes:
        cert = await self._require(certificate_id)

        if viewer_id is not None:
            personalized = await self._personalized(cert, viewer_id)
            if personalized is not None:
                if not self._store.is_available():
                    await self._mark_rendered_inline(cert)
                return personalized

        if self._store.is_available():
            if await self._artifact_present(cert):
                try:
                    return await self._store.download(cert.artifact_id)  # type: ignore[arg-type]
                except StoreUnavailable as e:
                    logger.warning(
                        "Download of %s failed, regenerating: %s",
                        cert.artifact_id,
                        e,
                        extra={"certificate_id": str(cert.id)},
                    )

            stored, _document = await self._run_issuance(cert)
            if stored.artifact_id is None:
                raise ArtifactUnavailable(
                    f"certificate {cert.certificate_number} could not be stored"
                )
            try:
                return await self._store.download(stored.artifact_id)
            except StoreUnavailable as e:
                raise ArtifactUnavailable(
                    f"certificate {cert.certificate_number} is not retrievable"
                ) from e

        # No store: build it for this request only.
        document = await self._render_and_sign(await self._fields(cert), cert.issuer_id)
        await self._mark_rendered_inline(cert)
        return document

    # ---- verification ----

    async def verify(self, code: str) -> VerificationResult:
        cert = await self._repo.get_by_verification_code(code)
        if cert is None:
            VERIFICATIONS.labels(result="not_found").inc()
            return VerificationResult(valid=False, reason="not_found")

        view = self._view(cert)
        if view.status is CertificateStatus.REVOKED:
            VERIFICATIONS.labels(result="revoked").inc()
            return VerificationResult(valid=False, reason="revoked", certificate=view)
        if view.status is CertificateStatus.EXPIRED:
            VERIFICATIONS.labels(result="expired").inc()
            return VerificationResult(valid=False, reason="expired", certificate=view)

        VERIFICATIONS.labels(result="valid").inc()
        return VerificationResult(valid=True, certificate=view)

    # ---- recipients ----

    async def assign_recipients(
        self,
        certificate_id: UUID,
        user_ids: Iterable[UUID],
        assigned_by: UUID | None = None,
    ) -> int:
        """Assign users to a certificate; returns how many were new.

        Every user must exist in the directory, otherwise nothing is
        assigned and UnknownUser is raised.
        """
        await self._require(certificate_id)
        user_ids = list(user_ids)
        await self._check_recipients(user_ids)
        added = 0
        for user_id in user_ids:
            if await self._repo.add_assignment(
                Assignment.new(
                    certificate_id=certificate_id, user_id=user_id, assigned_by=assigned_by
                )
            ):
                added += 1
        if added:
            logger.info(
                "Assigned %d recipient(s) to %s",
                added,
                certificate_id,
                extra={"certificate_id": str(certificate_id)},
            )
        return added

    async def unassign_recipient(self, certificate_id: UUID, user_id: UUID) -> bool:
        return await self._repo.remove_assignment(certificate_id, user_id)

    async def list_recipients(self, certificate_id: UUID) -> list[Assignment]:
        await self._require(certificate_id)
        return await self._repo.list_assignments(certificate_id)

    async def list_for_recipient(self, user_id: UUID) -> list[Certificate]:
        return [self._view(c) for c in await self._repo.list_for_user(user_id)]

    async def statistics(self, issuer_id: UUID | None = None) -> dict[str, int]:
        counts = {s.value: 0 for s in CertificateStatus}
        certs = await self._repo.list_all(issuer_id)
        for cert in certs:
            counts[self._view(cert).status.value] += 1
        counts["total"] = len(certs)
        return counts
