"""Persistence of signed certificate documents.

Three interchangeable backends behind the ArtifactStore protocol:

  NullArtifactStore     - nothing configured; the service runs degraded
                          and regenerates documents on every download.
  InMemoryArtifactStore - process-local dict, for dev and tests.
  DriveArtifactStore    - Google Drive REST v3 with a service account.

Stores keep bytes and hand back an opaque artifact id; nothing here
checks what the bytes are.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import httpx
import jwt

from cert_service.core.metrics import ARTIFACT_OPERATIONS
from cert_service.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    def is_available(self) -> bool: ...
    async def upload(self, content: bytes, file_name: str, certificate_number: str) -> str: ...
    async def exists(self, artifact_id: str) -> bool: ...
    async def download(self, artifact_id: str) -> bytes: ...
    async def delete(self, artifact_id: str) -> None: ...


class NullArtifactStore:
    def is_available(self) -> bool:
        return False

    async def upload(self, content: bytes, file_name: str, certificate_number: str) -> str:
        raise StoreUnavailable("no artifact store configured")

    async def exists(self, artifact_id: str) -> bool:
        raise StoreUnavailable("no artifact store configured")

    async def download(self, artifact_id: str) -> bytes:
        raise StoreUnavailable("no artifact store configured")

    async def delete(self, artifact_id: str) -> None:
        raise StoreUnavailable("no artifact store configured")


class InMemoryArtifactStore:
    def __init__(self) -> None:
        self._store: dict[str, bytes] = {}
        self._names: dict[str, str] = {}

    def is_available(self) -> bool:
        return True

    async def upload(self, content: bytes, file_name: str, certificate_number: str) -> str:
        artifact_id = uuid.uuid4().hex
        self._store[artifact_id] = content
        self._names[artifact_id] = file_name
        ARTIFACT_OPERATIONS.labels(operation="upload", result="ok").inc()
        logger.debug("Stored %s as %s (%d bytes)", file_name, artifact_id, len(content))
        return artifact_id

    async def exists(self, artifact_id: str) -> bool:
        found = artifact_id in self._store
        ARTIFACT_OPERATIONS.labels(operation="exists", result="ok" if found else "miss").inc()
        return found

    async def download(self, artifact_id: str) -> bytes:
        try:
            content = self._store[artifact_id]
        except KeyError:
            ARTIFACT_OPERATIONS.labels(operation="download", result="miss").inc()
            raise StoreUnavailable(f"artifact {artifact_id} not found") from None
        ARTIFACT_OPERATIONS.labels(operation="download", result="ok").inc()
        return content

    async def delete(self, artifact_id: str) -> None:
        self._store.pop(artifact_id, None)
        self._names.pop(artifact_id, None)
        ARTIFACT_OPERATIONS.labels(operation="delete", result="ok").inc()


# ---------------------------------------------------------------------------
# Google Drive
# ---------------------------------------------------------------------------

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3/files"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive.file"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

ASSERTION_LIFETIME_SECONDS = 3600
TOKEN_REFRESH_MARGIN_SECONDS = 60


@dataclass(frozen=True, slots=True)
class ServiceAccount:
    client_email: str
    private_key: str
    token_uri: str = DEFAULT_TOKEN_URI

    @staticmethod
    def from_file(path: Path) -> ServiceAccount:
        info = json.loads(path.read_text(encoding="utf-8"))
        try:
            return ServiceAccount(
                client_email=info["client_email"],
                private_key=info["private_key"],
                token_uri=info.get("token_uri") or DEFAULT_TOKEN_URI,
            )
        except KeyError as e:
            raise ValueError(f"service account file {path} is missing {e.args[0]!r}") from None


class DriveArtifactStore:
    """Google Drive backend.

    Authenticates as a service account: a short-lived RS256 assertion
    is exchanged at the token endpoint for an access token, which is
    cached until shortly before it expires.  All calls share one
    httpx.AsyncClient.
    """

    def __init__(
        self,
        account: ServiceAccount,
        folder_id: str | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._account = account
        self._folder_id = folder_id
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    def is_available(self) -> bool:
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---- auth ----

    def _assertion(self, now: float) -> str:
        claims = {
            "iss": self._account.client_email,
            "scope": DRIVE_SCOPE,
            "aud": self._account.token_uri,
            "iat": int(now),
            "exp": int(now) + ASSERTION_LIFETIME_SECONDS,
        }
        return jwt.encode(claims, self._account.private_key, algorithm="RS256")

    async def _access_token(self) -> str:
        async with self._token_lock:
            now = self._clock()
            if self._token is not None and now < self._token_expires_at:
                return self._token

            resp = await self._client.post(
                self._account.token_uri,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": self._assertion(now)},
            )
            if resp.status_code != 200:
                raise StoreUnavailable(f"token exchange failed with HTTP {resp.status_code}")
            try:
                payload = resp.json()
                token = str(payload["access_token"])
                expires_in = int(payload.get("expires_in", ASSERTION_LIFETIME_SECONDS))
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise StoreUnavailable(f"token endpoint returned an unusable body: {e}") from e
            self._token = token
            self._token_expires_at = now + expires_in - TOKEN_REFRESH_MARGIN_SECONDS
            logger.debug("Obtained Drive access token for %s", self._account.client_email)
            return self._token

    async def _request(self, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            token = await self._access_token()
            headers = {"Authorization": f"Bearer {token}", **kwargs.pop("headers", {})}
            return await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            ARTIFACT_OPERATIONS.labels(operation=operation, result="error").inc()
            raise StoreUnavailable(f"Drive {operation} failed: {e}") from e
        except StoreUnavailable:
            ARTIFACT_OPERATIONS.labels(operation=operation, result="error").inc()
            raise

    def _fail(self, operation: str, resp: httpx.Response) -> StoreUnavailable:
        ARTIFACT_OPERATIONS.labels(operation=operation, result="error").inc()
        return StoreUnavailable(f"Drive {operation} returned HTTP {resp.status_code}")

    # ---- operations ----

    async def upload(self, content: bytes, file_name: str, certificate_number: str) -> str:
        metadata: dict = {
            "name": file_name,
            "mimeType": "application/pdf",
            "description": f"Certificate {certificate_number}",
        }
        if self._folder_id:
            metadata["parents"] = [self._folder_id]

        boundary = f"cert-service-{uuid.uuid4().hex}"
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            "Content-Type: application/pdf\r\n\r\n"
        ).encode("utf-8") + content + f"\r\n--{boundary}--\r\n".encode("utf-8")

        resp = await self._request(
            "upload",
            "POST",
            DRIVE_UPLOAD_URL,
            params={"uploadType": "multipart", "fields": "id"},
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
            content=body,
        )
        if resp.status_code not in (200, 201):
            raise self._fail("upload", resp)

        try:
            artifact_id = str(resp.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            ARTIFACT_OPERATIONS.labels(operation="upload", result="error").inc()
            raise StoreUnavailable(f"Drive upload returned no file id: {e}") from e
        ARTIFACT_OPERATIONS.labels(operation="upload", result="ok").inc()
        logger.info("Uploaded %s to Drive as %s", file_name, artifact_id)
        return artifact_id

    async def exists(self, artifact_id: str) -> bool:
        resp = await self._request(
            "exists", "GET", f"{DRIVE_FILES_URL}/{artifact_id}", params={"fields": "id"}
        )
        if resp.status_code == 404:
            ARTIFACT_OPERATIONS.labels(operation="exists", result="miss").inc()
            return False
        if resp.status_code != 200:
            raise self._fail("exists", resp)
        ARTIFACT_OPERATIONS.labels(operation="exists", result="ok").inc()
        return True

    async def download(self, artifact_id: str) -> bytes:
        resp = await self._request(
            "download", "GET", f"{DRIVE_FILES_URL}/{artifact_id}", params={"alt": "media"}
        )
        if resp.status_code != 200:
            raise self._fail("download", resp)
        ARTIFACT_OPERATIONS.labels(operation="download", result="ok").inc()
        return resp.content

    async def delete(self, artifact_id: str) -> None:
        resp = await self._request("delete", "DELETE", f"{DRIVE_FILES_URL}/{artifact_id}")
        if resp.status_code not in (200, 204, 404):
            raise self._fail("delete", resp)
        ARTIFACT_OPERATIONS.labels(operation="delete", result="ok").inc()
        logger.info("Deleted Drive file %s", artifact_id)
