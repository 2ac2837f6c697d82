from __future__ import annotations

import datetime
import sys
from functools import lru_cache
from pathlib import Path
from uuid import UUID

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient

from cert_service.main import app
from cert_service.models.person import Person
from cert_service.services import registry

# Ensure repo root is on sys.path so `import cert_service` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

PKCS12_PASSWORD = "correct horse battery staple"


@pytest.fixture(autouse=True)
def reset_certificate_state() -> None:
    repo = registry.certificate_repo
    repo._by_id.clear()  # type: ignore[union-attr]
    repo._by_number.clear()  # type: ignore[union-attr]
    repo._by_code.clear()  # type: ignore[union-attr]
    repo._assignments.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_credential_state() -> None:
    registry.credential_repo._by_owner.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_directory() -> None:
    registry.user_directory._by_id.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_artifact_store() -> None:
    store = registry.artifact_store
    if hasattr(store, "_store"):
        store._store.clear()  # type: ignore[union-attr]
        store._names.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def identity_headers(user_id: UUID, roles: str = "") -> dict[str, str]:
    """Headers the upstream gateway would forward for this caller."""
    headers = {"X-User-Id": str(user_id)}
    if roles:
        headers["X-User-Roles"] = roles
    return headers


def seed_person(name: str, email: str = "") -> Person:
    """Add a person to the in-memory directory the app is wired to."""
    person = Person.new(name=name, email=email)
    registry.user_directory.add(person)  # type: ignore[union-attr]
    return person


# ---------------------------------------------------------------------------
# PKCS#12 helpers
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def make_pkcs12(
    password: str = PKCS12_PASSWORD,
    *,
    subject: list[x509.NameAttribute] | None = None,
    issuer: list[x509.NameAttribute] | None = None,
    not_before: datetime.datetime | None = None,
    not_after: datetime.datetime | None = None,
) -> bytes:
    """Self-signed signing certificate and key in a password-protected container."""
    now = datetime.datetime.now(datetime.UTC)
    key = _signing_key()
    subject_name = x509.Name(
        subject
        if subject is not None
        else [
            x509.NameAttribute(NameOID.COMMON_NAME, "Ada Issuer"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Example Academy"),
        ]
    )
    issuer_name = x509.Name(issuer) if issuer is not None else subject_name
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject_name)
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - datetime.timedelta(days=1))
        .not_valid_after(not_after or now + datetime.timedelta(days=365))
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=True,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        b"signing",
        key,
        cert,
        None,
        BestAvailableEncryption(password.encode("utf-8")),
    )


@pytest.fixture
def pkcs12_bytes() -> bytes:
    return make_pkcs12()
