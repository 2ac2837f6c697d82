from __future__ import annotations

from typing import Protocol
from uuid import UUID

from cert_service.models.certificate import Assignment, Certificate
from cert_service.services.errors import DuplicateIdentifier


class CertificateRepo(Protocol):
    async def get_by_id(self, certificate_id: UUID) -> Certificate | None: ...
    async def get_by_number(self, certificate_number: str) -> Certificate | None: ...
    async def get_by_verification_code(self, code: str) -> Certificate | None: ...
    async def add(self, certificate: Certificate) -> None: ...
    async def update(self, certificate: Certificate) -> Certificate | None: ...
    async def delete(self, certificate_id: UUID) -> bool: ...
    async def list_all(self, issuer_id: UUID | None = None) -> list[Certificate]: ...
    async def list_for_user(self, user_id: UUID) -> list[Certificate]: ...
    async def add_assignment(self, assignment: Assignment) -> bool: ...
    async def remove_assignment(self, certificate_id: UUID, user_id: UUID) -> bool: ...
    async def list_assignments(self, certificate_id: UUID) -> list[Assignment]: ...


class InMemoryCertificateRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Certificate] = {}
        self._by_number: dict[str, UUID] = {}
        self._by_code: dict[str, UUID] = {}
        # Insertion order is assignment order; the first entry is the primary recipient.
        self._assignments: dict[UUID, dict[UUID, Assignment]] = {}

    async def get_by_id(self, certificate_id: UUID) -> Certificate | None:
        return self._by_id.get(certificate_id)

    async def get_by_number(self, certificate_number: str) -> Certificate | None:
        cid = self._by_number.get(certificate_number)
        return self._by_id.get(cid) if cid is not None else None

    async def get_by_verification_code(self, code: str) -> Certificate | None:
        cid = self._by_code.get(code)
        return self._by_id.get(cid) if cid is not None else None

    async def add(self, certificate: Certificate) -> None:
        if certificate.certificate_number in self._by_number:
            raise DuplicateIdentifier(
                f"certificate number {certificate.certificate_number} already exists"
            )
        if certificate.verification_code in self._by_code:
            raise DuplicateIdentifier("verification code already exists")
        self._by_id[certificate.id] = certificate
        self._by_number[certificate.certificate_number] = certificate.id
        self._by_code[certificate.verification_code] = certificate.id
        self._assignments[certificate.id] = {}

    async def update(self, certificate: Certificate) -> Certificate | None:
        current = self._by_id.get(certificate.id)
        if current is None:
            return None
        # Identifiers are immutable once assigned; the indexes never move.
        if (
            current.certificate_number != certificate.certificate_number
            or current.verification_code != certificate.verification_code
        ):
            raise ValueError("certificate identifiers are immutable")
        self._by_id[certificate.id] = certificate
        return certificate

    async def delete(self, certificate_id: UUID) -> bool:
        cert = self._by_id.pop(certificate_id, None)
        if cert is None:
            return False
        self._by_number.pop(cert.certificate_number, None)
        self._by_code.pop(cert.verification_code, None)
        self._assignments.pop(certificate_id, None)
        return True

    async def list_all(self, issuer_id: UUID | None = None) -> list[Certificate]:
        return [
            c for c in self._by_id.values() if issuer_id is None or c.issuer_id == issuer_id
        ]

    async def list_for_user(self, user_id: UUID) -> list[Certificate]:
        return [
            self._by_id[cid]
            for cid, assigned in self._assignments.items()
            if user_id in assigned
        ]

    async def add_assignment(self, assignment: Assignment) -> bool:
        assigned = self._assignments.get(assignment.certificate_id)
        if assigned is None:
            raise KeyError("certificate not found")
        if assignment.user_id in assigned:
            return False
        assigned[assignment.user_id] = assignment
        return True

    async def remove_assignment(self, certificate_id: UUID, user_id: UUID) -> bool:
        assigned = self._assignments.get(certificate_id, {})
        return assigned.pop(user_id, None) is not None

    async def list_assignments(self, certificate_id: UUID) -> list[Assignment]:
        return list(self._assignments.get(certificate_id, {}).values())
