"""Encrypted-at-rest storage for issuers' personal PKCS#12 signing credentials.

KEY HANDLING
------------
The AES-256-CBC key is derived once, at construction, from the master key
the caller injects (Settings.signing_master_key), using scrypt over a
fixed salt.  The key must be reproducible across restarts to read old
records.

Each encryption call draws a fresh random IV; the container and its
unlock secret are encrypted independently.

PARSING
-------
Uploads are validated cheaply first (extension, size), then parsed in two
stages so the caller can tell "not a PKCS#12 file" from "wrong password":

  1. DER structure check with asn1crypto.  Failure -> InvalidCredential.
  2. Open with the secret via cryptography.  A structurally valid
     container that will not open fails MAC verification or decryption,
     which we report as WrongSecret.
"""

from __future__ import annotations

import datetime
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import PurePath
from uuid import UUID

from asn1crypto import pkcs12 as asn1_pkcs12
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from cert_service.models.signing_credential import (
    CredentialMetadata,
    CredentialState,
    CredentialStatus,
    SigningCredential,
    UnlockedCredential,
)
from cert_service.repos.signing_credential_repo import SigningCredentialRepo
from cert_service.services.errors import (
    CredentialDecryptError,
    InvalidCredential,
    WrongSecret,
)

logger = logging.getLogger(__name__)

MAX_CREDENTIAL_BYTES = 5 * 1024 * 1024
ALLOWED_EXTENSIONS = frozenset({".p12", ".pfx"})

_KDF_SALT = b"cert-service/credential-vault/v1"
_IV_BYTES = 16


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True, slots=True)
class ParsedCredential:
    display_name: str
    issuer_name: str
    serial_number: str
    not_before: datetime.datetime
    not_after: datetime.datetime


def check_upload(filename: str, size: int) -> None:
    """Reject obviously unusable uploads before spending any crypto on them."""
    ext = PurePath(filename or "").suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise InvalidCredential("file must be a .p12 or .pfx certificate")
    if size <= 0:
        raise InvalidCredential("certificate file is empty")
    if size > MAX_CREDENTIAL_BYTES:
        raise InvalidCredential("certificate file exceeds the 5 MiB limit")


def _first_attribute(name: x509.Name, oids: tuple[x509.ObjectIdentifier, ...]) -> str | None:
    for oid in oids:
        attrs = name.get_attributes_for_oid(oid)
        if attrs and attrs[0].value:
            return str(attrs[0].value)
    return None


def parse_pkcs12(raw: bytes, secret: str) -> ParsedCredential:
    try:
        # .native walks the whole outer structure; the encrypted bags stay opaque.
        asn1_pkcs12.Pfx.load(raw, strict=True).native
    except (ValueError, TypeError) as e:
        raise InvalidCredential("file must be a valid .p12 or .pfx certificate") from e

    try:
        _key, cert, _chain = pkcs12.load_key_and_certificates(
            raw, secret.encode("utf-8") if secret else None
        )
    except UnsupportedAlgorithm as e:
        raise InvalidCredential(f"unsupported PKCS#12 encryption: {e}") from e
    except ValueError as e:
        # MAC verification or bag decryption failed on a well-formed container.
        raise WrongSecret("the certificate password is incorrect") from e

    if cert is None:
        raise InvalidCredential("no certificate found in the container")

    return ParsedCredential(
        display_name=_first_attribute(
            cert.subject,
            (
                NameOID.COMMON_NAME,
                NameOID.ORGANIZATION_NAME,
                NameOID.ORGANIZATIONAL_UNIT_NAME,
            ),
        )
        or "Unnamed certificate",
        issuer_name=_first_attribute(
            cert.issuer, (NameOID.COMMON_NAME, NameOID.ORGANIZATION_NAME)
        )
        or "Unknown issuer",
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
    )


class CredentialVault:
    def __init__(
        self,
        repo: SigningCredentialRepo,
        master_key: str,
        *,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        if not master_key:
            raise ValueError("master key must be non-empty")
        self._repo = repo
        self._clock = clock
        kdf = Scrypt(salt=_KDF_SALT, length=32, n=2**14, r=8, p=1)
        self._key = kdf.derive(master_key.encode("utf-8"))

    # ---- symmetric encryption ----

    def _encrypt(self, data: bytes) -> tuple[str, str]:
        iv = os.urandom(_IV_BYTES)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(data) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return ciphertext.hex(), iv.hex()

    def _decrypt(self, ciphertext_hex: str, iv_hex: str) -> bytes:
        try:
            iv = bytes.fromhex(iv_hex)
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(bytes.fromhex(ciphertext_hex)) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise CredentialDecryptError("stored credential could not be decrypted") from e

    # ---- public operations ----

    async def store_credential(
        self, owner_id: UUID, raw: bytes, secret: str
    ) -> CredentialMetadata:
        if len(raw) > MAX_CREDENTIAL_BYTES:
            raise InvalidCredential("certificate file exceeds the 5 MiB limit")

        # Parse fully before touching the repo so a bad upload never replaces a good one.
        try:
            parsed = parse_pkcs12(raw, secret)
        except WrongSecret:
            logger.warning(
                "Rejected credential upload: wrong password owner=%s",
                owner_id,
                extra={"owner_id": str(owner_id)},
            )
            raise
        except InvalidCredential as e:
            logger.warning(
                "Rejected credential upload: %s owner=%s",
                e,
                owner_id,
                extra={"owner_id": str(owner_id)},
            )
            raise

        now = self._clock()
        encrypted_pkcs12, pkcs12_iv = self._encrypt(raw)
        encrypted_secret, secret_iv = self._encrypt(secret.encode("utf-8"))
        credential = SigningCredential(
            owner_id=owner_id,
            display_name=parsed.display_name,
            issuer_name=parsed.issuer_name,
            serial_number=parsed.serial_number,
            not_before=parsed.not_before,
            not_after=parsed.not_after,
            uploaded_at=now,
            status=(
                CredentialState.EXPIRED if now > parsed.not_after else CredentialState.CONFIGURED
            ),
            encrypted_pkcs12=encrypted_pkcs12,
            pkcs12_iv=pkcs12_iv,
            encrypted_secret=encrypted_secret,
            secret_iv=secret_iv,
        )
        await self._repo.upsert(credential)
        logger.info(
            "Stored signing credential owner=%s subject=%r expires=%s",
            owner_id,
            parsed.display_name,
            parsed.not_after.isoformat(),
            extra={"owner_id": str(owner_id)},
        )
        return CredentialStatus.of(credential, now)

    async def get_credential(self, owner_id: UUID) -> UnlockedCredential | None:
        credential = await self._repo.get(owner_id)
        if credential is None:
            return None
        return UnlockedCredential(
            pkcs12=self._decrypt(credential.encrypted_pkcs12, credential.pkcs12_iv),
            secret=self._decrypt(credential.encrypted_secret, credential.secret_iv).decode(
                "utf-8"
            ),
        )

    async def get_status(self, owner_id: UUID) -> CredentialStatus | None:
        credential = await self._repo.get(owner_id)
        if credential is None:
            return None

        now = self._clock()
        if now > credential.not_after and credential.status is not CredentialState.EXPIRED:
            await self._repo.set_status(owner_id, CredentialState.EXPIRED)
            credential = replace(credential, status=CredentialState.EXPIRED)
            logger.info(
                "Signing credential expired owner=%s",
                owner_id,
                extra={"owner_id": str(owner_id)},
            )
        return CredentialStatus.of(credential, now)

    async def delete_credential(self, owner_id: UUID) -> bool:
        deleted = await self._repo.delete(owner_id)
        if deleted:
            logger.info(
                "Deleted signing credential owner=%s",
                owner_id,
                extra={"owner_id": str(owner_id)},
            )
        return deleted
