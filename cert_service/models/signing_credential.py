from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class CredentialState(str, Enum):
    CONFIGURED = "configured"
    EXPIRED = "expired"


@dataclass(frozen=True, slots=True)
class SigningCredential:
    """Stored personal signing credential, secret material encrypted (hex)."""

    owner_id: UUID
    display_name: str
    issuer_name: str
    serial_number: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    uploaded_at: datetime.datetime
    status: CredentialState
    encrypted_pkcs12: str
    pkcs12_iv: str
    encrypted_secret: str
    secret_iv: str


@dataclass(frozen=True, slots=True)
class CredentialStatus:
    """Secret-free view of a SigningCredential."""

    owner_id: UUID
    display_name: str
    issuer_name: str
    serial_number: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    uploaded_at: datetime.datetime
    status: CredentialState
    is_expired: bool
    is_current: bool

    @staticmethod
    def of(credential: SigningCredential, now: datetime.datetime) -> CredentialStatus:
        return CredentialStatus(
            owner_id=credential.owner_id,
            display_name=credential.display_name,
            issuer_name=credential.issuer_name,
            serial_number=credential.serial_number,
            not_before=credential.not_before,
            not_after=credential.not_after,
            uploaded_at=credential.uploaded_at,
            status=credential.status,
            is_expired=now > credential.not_after,
            is_current=credential.not_before <= now <= credential.not_after,
        )


# Returned by store_credential; same shape, named for the write path.
CredentialMetadata = CredentialStatus


@dataclass(frozen=True, slots=True)
class UnlockedCredential:
    """Decrypted PKCS#12 container and its unlock secret.

    Lives only for the duration of a signing call; never persisted or logged.
    """

    pkcs12: bytes
    secret: str

    def __repr__(self) -> str:
        return f"UnlockedCredential(pkcs12=<{len(self.pkcs12)} bytes>, secret=<redacted>)"
