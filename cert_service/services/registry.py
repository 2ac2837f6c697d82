"""Process-wide service instances, chosen once from SETTINGS.

PostgreSQL repositories when DATABASE_URL is set, in-memory otherwise.
The artifact backend follows ARTIFACT_STORE.
"""

from __future__ import annotations

import logging

from cert_service.core.config import SETTINGS
from cert_service.db.engine import async_session_factory
from cert_service.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from cert_service.repos.signing_credential_repo import (
    InMemorySigningCredentialRepo,
    SigningCredentialRepo,
)
from cert_service.repos.user_directory import InMemoryUserDirectory, UserDirectory
from cert_service.services.artifact_store import (
    ArtifactStore,
    DriveArtifactStore,
    InMemoryArtifactStore,
    NullArtifactStore,
    ServiceAccount,
)
from cert_service.services.certificate_service import CertificateService
from cert_service.services.credential_vault import CredentialVault
from cert_service.services.renderer import CertificateRenderer
from cert_service.services.signer import DocumentSigner

logger = logging.getLogger(__name__)

if async_session_factory is not None:
    from cert_service.repos.pg_certificate_repo import PgCertificateRepo
    from cert_service.repos.pg_signing_credential_repo import PgSigningCredentialRepo
    from cert_service.repos.pg_user_directory import PgUserDirectory

    certificate_repo: CertificateRepo = PgCertificateRepo(async_session_factory)
    credential_repo: SigningCredentialRepo = PgSigningCredentialRepo(async_session_factory)
    user_directory: UserDirectory = PgUserDirectory(async_session_factory)
else:
    certificate_repo = InMemoryCertificateRepo()
    credential_repo = InMemorySigningCredentialRepo()
    user_directory = InMemoryUserDirectory()


def _build_store() -> ArtifactStore:
    if SETTINGS.artifact_store == "drive":
        assert SETTINGS.service_account_file is not None  # enforced by load_settings
        logger.info("Artifact store: Google Drive folder=%s", SETTINGS.drive_folder_id or "-")
        return DriveArtifactStore(
            ServiceAccount.from_file(SETTINGS.service_account_file),
            SETTINGS.drive_folder_id,
        )
    if SETTINGS.artifact_store == "memory":
        logger.info("Artifact store: in-memory")
        return InMemoryArtifactStore()
    logger.warning("No artifact store configured; documents are rendered on every download")
    return NullArtifactStore()


artifact_store: ArtifactStore = _build_store()

credential_vault = CredentialVault(credential_repo, SETTINGS.signing_master_key)

renderer = CertificateRenderer(
    SETTINGS.template_path, SETTINGS.fonts_dir, SETTINGS.signature_reason
)

signer = DocumentSigner(
    credential_vault,
    user_directory,
    reason=SETTINGS.signature_reason,
    location=SETTINGS.signature_location,
)

certificate_service = CertificateService(
    certificate_repo,
    user_directory,
    renderer,
    signer,
    artifact_store,
    default_institution=SETTINGS.default_institution,
)
