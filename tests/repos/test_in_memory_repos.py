from __future__ import annotations

import asyncio
import datetime
import uuid
from dataclasses import replace

import pytest

from cert_service.models.certificate import Assignment, Certificate, CertificateStatus
from cert_service.repos.certificate_repo import InMemoryCertificateRepo
from cert_service.services.errors import DuplicateIdentifier


def _cert(**overrides) -> Certificate:
    cert = Certificate.new(
        course_name="Intro to Security",
        institution="Example Academy",
        issuer_id=uuid.uuid4(),
        issue_date=datetime.date(2026, 1, 15),
    )
    return replace(cert, **overrides) if overrides else cert


def test_lookup_by_every_identifier() -> None:
    repo = InMemoryCertificateRepo()
    cert = _cert()
    asyncio.run(repo.add(cert))
    assert asyncio.run(repo.get_by_id(cert.id)) == cert
    assert asyncio.run(repo.get_by_number(cert.certificate_number)) == cert
    assert asyncio.run(repo.get_by_verification_code(cert.verification_code)) == cert


def test_duplicate_number_or_code_is_rejected() -> None:
    repo = InMemoryCertificateRepo()
    first = _cert()
    asyncio.run(repo.add(first))

    with pytest.raises(DuplicateIdentifier):
        asyncio.run(repo.add(_cert(certificate_number=first.certificate_number)))
    with pytest.raises(DuplicateIdentifier):
        asyncio.run(repo.add(_cert(verification_code=first.verification_code)))


def test_update_cannot_change_identifiers() -> None:
    repo = InMemoryCertificateRepo()
    cert = _cert()
    asyncio.run(repo.add(cert))

    with pytest.raises(ValueError, match="immutable"):
        asyncio.run(repo.update(replace(cert, certificate_number="CERT-FFFFFFFF")))

    updated = asyncio.run(repo.update(replace(cert, status=CertificateStatus.ISSUED)))
    assert updated.status is CertificateStatus.ISSUED


def test_update_missing_returns_none() -> None:
    assert asyncio.run(InMemoryCertificateRepo().update(_cert())) is None


def test_assignments_keep_insertion_order() -> None:
    repo = InMemoryCertificateRepo()
    cert = _cert()
    asyncio.run(repo.add(cert))
    users = [uuid.uuid4() for _ in range(3)]
    for user in users:
        asyncio.run(repo.add_assignment(Assignment.new(certificate_id=cert.id, user_id=user)))

    assigned = asyncio.run(repo.list_assignments(cert.id))
    assert [a.user_id for a in assigned] == users
    assert asyncio.run(repo.list_for_user(users[1])) == [cert]


def test_delete_clears_indexes_and_assignments() -> None:
    repo = InMemoryCertificateRepo()
    cert = _cert()
    user = uuid.uuid4()
    asyncio.run(repo.add(cert))
    asyncio.run(repo.add_assignment(Assignment.new(certificate_id=cert.id, user_id=user)))

    assert asyncio.run(repo.delete(cert.id)) is True
    assert asyncio.run(repo.get_by_number(cert.certificate_number)) is None
    assert asyncio.run(repo.list_for_user(user)) == []
    assert asyncio.run(repo.delete(cert.id)) is False


def test_list_all_filters_by_issuer() -> None:
    repo = InMemoryCertificateRepo()
    a, b = _cert(), _cert()
    asyncio.run(repo.add(a))
    asyncio.run(repo.add(b))
    assert asyncio.run(repo.list_all(a.issuer_id)) == [a]
    assert len(asyncio.run(repo.list_all())) == 2
