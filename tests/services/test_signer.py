from __future__ import annotations

import asyncio
import datetime
import io
import uuid

import pytest
from pyhanko.pdf_utils.reader import PdfFileReader

from cert_service.models.person import Person
from cert_service.repos.signing_credential_repo import InMemorySigningCredentialRepo
from cert_service.repos.user_directory import InMemoryUserDirectory
from cert_service.services.credential_vault import CredentialVault
from cert_service.services.renderer import CertificateFields, FallbackStrategy
from cert_service.services.signer import SIGNATURE_FIELD, DocumentSigner
from tests.conftest import PKCS12_PASSWORD, make_pkcs12


@pytest.fixture(scope="module")
def document() -> bytes:
    return FallbackStrategy("Signed").render(
        CertificateFields(
            certificate_number="CERT-00000001",
            recipient_name="Marie Curie",
            course_name="Intro to Security",
            issue_date=datetime.date(2025, 3, 5),
            issuer_name="Example Academy",
            include_stamp=False,
        )
    )


@pytest.fixture
def repo() -> InMemorySigningCredentialRepo:
    return InMemorySigningCredentialRepo()


@pytest.fixture
def vault(repo: InMemorySigningCredentialRepo) -> CredentialVault:
    return CredentialVault(repo, "test-master-key")


def _signatures(pdf: bytes):
    return PdfFileReader(io.BytesIO(pdf)).embedded_signatures


def test_no_credential_returns_input_unchanged(vault: CredentialVault, document: bytes) -> None:
    signer = DocumentSigner(vault)
    outcome = asyncio.run(signer.sign_with_outcome(document, uuid.uuid4()))
    assert outcome.signed is False
    assert outcome.reason == "no_credential"
    assert outcome.document is document


def test_missing_signer_id_is_no_credential(vault: CredentialVault, document: bytes) -> None:
    outcome = asyncio.run(DocumentSigner(vault).sign_with_outcome(document, None))
    assert outcome.signed is False
    assert outcome.reason == "no_credential"


def test_signs_with_stored_credential(vault: CredentialVault, document: bytes) -> None:
    owner = uuid.uuid4()
    asyncio.run(vault.store_credential(owner, make_pkcs12(), PKCS12_PASSWORD))
    signer = DocumentSigner(vault, reason="Course completion", location="Lisbon")

    outcome = asyncio.run(signer.sign_with_outcome(document, owner))
    assert outcome.signed is True
    assert outcome.reason is None
    # Incremental update: the original revision is preserved byte for byte.
    assert outcome.document.startswith(document)

    sigs = _signatures(outcome.document)
    assert len(sigs) == 1
    assert sigs[0].field_name == SIGNATURE_FIELD
    assert str(sigs[0].sig_object["/Reason"]) == "Course completion"
    assert str(sigs[0].sig_object["/Location"]) == "Lisbon"


def test_signature_carries_signer_name_and_email(
    vault: CredentialVault, document: bytes
) -> None:
    directory = InMemoryUserDirectory()
    person = Person.new(name="Ada Issuer", email="ada@example.com")
    directory.add(person)
    asyncio.run(vault.store_credential(person.id, make_pkcs12(), PKCS12_PASSWORD))

    signed = asyncio.run(DocumentSigner(vault, directory).sign(document, person.id))
    sigs = _signatures(signed)
    assert str(sigs[0].sig_object["/Name"]) == "Ada Issuer <ada@example.com>"


def test_undecryptable_credential_yields_unsigned_document(
    repo: InMemorySigningCredentialRepo, document: bytes
) -> None:
    owner = uuid.uuid4()
    writer = CredentialVault(repo, "old-master-key")
    asyncio.run(writer.store_credential(owner, make_pkcs12(), PKCS12_PASSWORD))

    rotated = CredentialVault(repo, "new-master-key")
    outcome = asyncio.run(DocumentSigner(rotated).sign_with_outcome(document, owner))
    assert outcome.signed is False
    assert outcome.reason == "error"
    assert outcome.document == document


def test_signing_error_is_absorbed(
    monkeypatch: pytest.MonkeyPatch, vault: CredentialVault, document: bytes
) -> None:
    owner = uuid.uuid4()
    asyncio.run(vault.store_credential(owner, make_pkcs12(), PKCS12_PASSWORD))
    signer = DocumentSigner(vault)

    async def boom(*_args, **_kwargs) -> bytes:
        raise RuntimeError("pdf writer exploded")

    monkeypatch.setattr(signer, "_apply_signature", boom)
    assert asyncio.run(signer.sign(document, owner)) == document


def test_non_pdf_input_is_returned_unsigned(vault: CredentialVault) -> None:
    owner = uuid.uuid4()
    asyncio.run(vault.store_credential(owner, make_pkcs12(), PKCS12_PASSWORD))
    outcome = asyncio.run(DocumentSigner(vault).sign_with_outcome(b"not a pdf", owner))
    assert outcome.signed is False
    assert outcome.document == b"not a pdf"
