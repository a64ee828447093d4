from __future__ import annotations

import asyncio
from dataclasses import dataclass
import hashlib
import logging
import re
import time
from typing import Any, Awaitable, Callable, TypeVar
from urllib.parse import quote

import httpx

from securedocs.core.config import Settings
from securedocs.core.errors import NotFoundError, StorageUnavailableError
from securedocs.services.storage.base import BlobRef
from securedocs.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)

T = TypeVar("T")

_INTEGRATION = "storage.b2"
_API_PREFIX = "/b2api/v2"
# Characters that would break the bucket key hierarchy or B2 name rules.
_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\?%*:|"<>]')


def sanitize_filename(filename: str) -> str:
    # Keep spaces; they are percent-encoded when the name goes on the wire.
    sanitized = _UNSAFE_FILENAME_CHARS.sub("_", filename).strip()
    return sanitized or "file"


def build_storage_key(owner_id: str, document_id: str, filename: str) -> str:
    return f"users/{owner_id}/documents/{document_id}/{sanitize_filename(filename)}"


@dataclass(frozen=True)
class B2Session:
    # Account authorization plus the region-specific URLs and the upload pair it unlocked.
    auth_token: str
    api_url: str
    download_url: str
    upload_url: str
    upload_auth_token: str


class _SessionRejected(Exception):
    """The store refused the current session or upload URL; re-authorize and retry."""


class B2StorageGateway:
    """Blob Storage Gateway over the Backblaze B2 native API.

    The authorization session is shared process state. It is created lazily,
    and replaced under a lock when an operation finds it rejected: a caller
    that arrives holding an already-replaced session reuses the new one instead
    of authorizing again. Each operation re-authorizes at most once before
    surfacing ``StorageUnavailableError``.
    """

    def __init__(
        self,
        *,
        key_id: str,
        application_key: str,
        bucket_id: str,
        bucket_name: str,
        api_url: str = "https://api.backblazeb2.com",
        download_ttl_seconds: int = 3600,
        timeout_s: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._key_id = key_id
        self._application_key = application_key
        self._bucket_id = bucket_id
        self._bucket_name = bucket_name
        self._api_url = api_url.rstrip("/")
        self._download_ttl_seconds = download_ttl_seconds
        self._timeout_s = timeout_s
        self._client = client
        self._session: B2Session | None = None
        self._lock = asyncio.Lock()
        self.authorizations = 0

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.AsyncClient | None = None) -> "B2StorageGateway":
        # Missing credentials surface on first use, not at construction.
        return cls(
            key_id=settings.b2_key_id or "",
            application_key=settings.b2_application_key or "",
            bucket_id=settings.b2_bucket_id or "",
            bucket_name=settings.b2_bucket_name or "",
            api_url=settings.b2_api_url,
            download_ttl_seconds=settings.b2_download_ttl_seconds,
            timeout_s=settings.ext_call_timeout_ms / 1000.0,
            client=client,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per gateway for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _authorize(self) -> B2Session:
        if not (self._key_id and self._application_key and self._bucket_id and self._bucket_name):
            raise StorageUnavailableError("Blob storage is not configured", code="STORAGE_NOT_CONFIGURED")
        client = self._get_client()
        start = time.monotonic()
        try:
            account = await client.get(
                f"{self._api_url}{_API_PREFIX}/b2_authorize_account",
                auth=(self._key_id, self._application_key),
            )
            if account.status_code != 200:
                raise StorageUnavailableError(
                    f"Blob storage authorization failed: {account.status_code}",
                    code="STORAGE_AUTH_FAILED",
                )
            account_data = account.json()
            upload = await client.post(
                f"{account_data['apiUrl']}{_API_PREFIX}/b2_get_upload_url",
                json={"bucketId": self._bucket_id},
                headers={"Authorization": account_data["authorizationToken"]},
            )
            if upload.status_code != 200:
                raise StorageUnavailableError(
                    f"Blob storage upload URL request failed: {upload.status_code}",
                    code="STORAGE_AUTH_FAILED",
                )
            upload_data = upload.json()
        except httpx.HTTPError as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise StorageUnavailableError("Blob storage authorization failed") from exc
        except StorageUnavailableError:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise

        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        self.authorizations += 1
        increment_counter("storage_authorizations_total")
        logger.info("b2_session_authorized api_url=%s", account_data["apiUrl"])
        return B2Session(
            auth_token=account_data["authorizationToken"],
            api_url=account_data["apiUrl"],
            download_url=account_data["downloadUrl"],
            upload_url=upload_data["uploadUrl"],
            upload_auth_token=upload_data["authorizationToken"],
        )

    async def _refresh(self, stale: B2Session | None) -> B2Session:
        async with self._lock:
            current = self._session
            if current is not None and current is not stale:
                # Another caller already replaced the session we saw rejected.
                return current
            self._session = await self._authorize()
            return self._session

    async def _current_session(self) -> B2Session:
        if self._session is not None:
            return self._session
        return await self._refresh(None)

    async def _run(self, operation: str, func: Callable[[B2Session], Awaitable[T]]) -> T:
        session = await self._current_session()
        start = time.monotonic()
        try:
            result = await func(session)
        except (_SessionRejected, httpx.TransportError) as exc:
            logger.info("b2_retry_after_refresh op=%s reason=%s", operation, type(exc).__name__)
            increment_counter("storage_retries_total")
            session = await self._refresh(session)
            try:
                result = await func(session)
            except (_SessionRejected, httpx.TransportError) as retry_exc:
                record_external_call(
                    integration=_INTEGRATION,
                    latency_ms=(time.monotonic() - start) * 1000.0,
                    success=False,
                )
                logger.warning("b2_operation_failed op=%s", operation)
                raise StorageUnavailableError(f"Blob storage {operation} failed") from retry_exc
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        return result

    @staticmethod
    def _check(response: httpx.Response, operation: str) -> dict[str, Any]:
        if response.status_code == 200:
            return response.json()
        if response.status_code == 401 or response.status_code >= 500:
            # Expired tokens, and B2's "get a new upload URL" signals, both need a fresh session.
            raise _SessionRejected(f"{operation} rejected with {response.status_code}")
        if response.status_code == 404:
            raise NotFoundError("Stored file not found", code="BLOB_NOT_FOUND")
        raise StorageUnavailableError(
            f"Blob storage {operation} failed: {response.status_code}",
            code="STORAGE_REQUEST_FAILED",
        )

    async def put(
        self,
        *,
        owner_id: str,
        document_id: str,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> BlobRef:
        key = build_storage_key(owner_id, document_id, filename)
        content_sha1 = hashlib.sha1(data).hexdigest()
        client = self._get_client()

        async def _upload(session: B2Session) -> dict[str, Any]:
            response = await client.post(
                session.upload_url,
                content=data,
                headers={
                    "Authorization": session.upload_auth_token,
                    "Content-Type": content_type or "b2/x-auto",
                    "X-Bz-File-Name": quote(key, safe="/"),
                    "X-Bz-Content-Sha1": content_sha1,
                },
            )
            return self._check(response, "upload")

        payload = await self._run("upload", _upload)
        logger.info("b2_uploaded owner_id=%s document_id=%s size=%s", owner_id, document_id, len(data))
        return BlobRef(
            file_id=payload["fileId"],
            file_name=payload.get("fileName", key),
            content_sha1=content_sha1,
            size=len(data),
        )

    async def _file_name(self, session: B2Session, file_id: str) -> str:
        response = await self._get_client().post(
            f"{session.api_url}{_API_PREFIX}/b2_get_file_info",
            json={"fileId": file_id},
            headers={"Authorization": session.auth_token},
        )
        return self._check(response, "file_info")["fileName"]

    async def signed_download_url(self, file_id: str) -> str:
        # The returned URL embeds its own authorization; never log or persist it.
        client = self._get_client()

        async def _sign(session: B2Session) -> str:
            file_name = await self._file_name(session, file_id)
            response = await client.post(
                f"{session.api_url}{_API_PREFIX}/b2_get_download_authorization",
                json={
                    "bucketId": self._bucket_id,
                    "fileNamePrefix": file_name,
                    "validDurationInSeconds": self._download_ttl_seconds,
                },
                headers={"Authorization": session.auth_token},
            )
            token = self._check(response, "download_authorization")["authorizationToken"]
            return (
                f"{session.download_url}/file/{self._bucket_name}/{quote(file_name, safe='/')}"
                f"?Authorization={quote(token, safe='')}"
            )

        return await self._run("sign_download", _sign)

    async def open_download(self, file_id: str) -> httpx.Response:
        # Caller streams the body and must close the response.
        url = await self.signed_download_url(file_id)
        client = self._get_client()
        start = time.monotonic()
        try:
            response = await client.send(client.build_request("GET", url), stream=True)
        except httpx.HTTPError as exc:
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise StorageUnavailableError("Blob storage download failed") from exc
        if response.status_code != 200:
            await response.aclose()
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise StorageUnavailableError(
                f"Blob storage download failed: {response.status_code}",
                code="STORAGE_DOWNLOAD_FAILED",
            )
        return response

    async def delete(self, file_id: str, *, file_name: str | None = None) -> bool:
        """Best-effort removal; returns False instead of raising when the store refuses."""
        client = self._get_client()

        async def _delete(session: B2Session) -> None:
            name = file_name or await self._file_name(session, file_id)
            response = await client.post(
                f"{session.api_url}{_API_PREFIX}/b2_delete_file_version",
                json={"fileName": name, "fileId": file_id},
                headers={"Authorization": session.auth_token},
            )
            self._check(response, "delete")

        try:
            await self._run("delete", _delete)
        except (StorageUnavailableError, NotFoundError) as exc:
            increment_counter("storage_delete_failures_total")
            logger.warning("b2_delete_failed file_id=%s code=%s", file_id, exc.code)
            return False
        return True
