from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from tests.conftest import PKCS12_PASSWORD, identity_headers

URL = "/v1/signing-credential"


def _upload(client: TestClient, user_id: uuid.UUID, content: bytes, *, name="me.p12", password=PKCS12_PASSWORD):
    return client.put(
        URL,
        files={"file": (name, content, "application/x-pkcs12")},
        data={"password": password},
        headers=identity_headers(user_id),
    )


def test_requires_identity(client: TestClient) -> None:
    assert client.get(URL).status_code == 401


def test_status_without_credential(client: TestClient) -> None:
    resp = client.get(URL, headers=identity_headers(uuid.uuid4()))
    assert resp.status_code == 200
    assert resp.json() == {"has_credential": False, "credential": None}


def test_upload_then_status(client: TestClient, pkcs12_bytes: bytes) -> None:
    user = uuid.uuid4()
    resp = _upload(client, user, pkcs12_bytes)
    assert resp.status_code == 200
    data = resp.json()
    assert data["display_name"] == "Ada Issuer"
    assert data["status"] == "configured"
    assert data["is_current"] is True

    status = client.get(URL, headers=identity_headers(user)).json()
    assert status["has_credential"] is True
    assert status["credential"]["serial_number"] == data["serial_number"]
    assert "password" not in str(status)


def test_credentials_are_per_user(client: TestClient, pkcs12_bytes: bytes) -> None:
    _upload(client, uuid.uuid4(), pkcs12_bytes)
    other = client.get(URL, headers=identity_headers(uuid.uuid4())).json()
    assert other["has_credential"] is False


def test_wrong_password_is_400(client: TestClient, pkcs12_bytes: bytes) -> None:
    resp = _upload(client, uuid.uuid4(), pkcs12_bytes, password="guess")
    assert resp.status_code == 400
    assert "password is incorrect" in resp.json()["detail"]


def test_wrong_extension_is_400(client: TestClient, pkcs12_bytes: bytes) -> None:
    resp = _upload(client, uuid.uuid4(), pkcs12_bytes, name="me.pem")
    assert resp.status_code == 400
    assert ".p12 or .pfx" in resp.json()["detail"]


def test_garbage_container_is_400(client: TestClient) -> None:
    resp = _upload(client, uuid.uuid4(), b"definitely not pkcs12")
    assert resp.status_code == 400


def test_missing_password_is_422(client: TestClient, pkcs12_bytes: bytes) -> None:
    resp = client.put(
        URL,
        files={"file": ("me.p12", pkcs12_bytes, "application/x-pkcs12")},
        headers=identity_headers(uuid.uuid4()),
    )
    assert resp.status_code == 422


def test_delete_credential(client: TestClient, pkcs12_bytes: bytes) -> None:
    user = uuid.uuid4()
    _upload(client, user, pkcs12_bytes)
    assert client.delete(URL, headers=identity_headers(user)).status_code == 204
    assert client.delete(URL, headers=identity_headers(user)).status_code == 404
    assert client.get(URL, headers=identity_headers(user)).json()["has_credential"] is False
