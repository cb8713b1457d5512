"""HTTP client for the trusted backend: write credentials, proxied uploads, analysis jobs."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from models.analysis import JobKind
from models.upload import WriteCredential
from services.gcs import DEFAULT_CONTENT_TYPE, ObjectInfo

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Thin async wrapper over the backend routes under /api.

    One instance is shared by the upload strategies and the remote job
    providers; close it with aclose() when the recorder service shuts down.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self._base_url, timeout=timeout, transport=transport)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def aclose(self) -> None:
        await self._client.aclose()

    async def issue_write_credential(
        self,
        storage_key: str,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> WriteCredential:
        response = await self._client.post(
            "/api/upload/presigned-url",
            json={"storage_key": storage_key, "file_type": content_type},
        )
        response.raise_for_status()
        body = response.json()
        expires_in = body.get("expires_in")
        expires_at = (
            datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None
        )
        return WriteCredential(
            url=body["presigned_url"],
            storage_key=body["storage_key"],
            bucket=body["bucket"],
            content_type=content_type,
            expires_at=expires_at,
        )

    async def put_object(self, credential: WriteCredential, data: bytes) -> None:
        """PUT the blob straight to storage with a signed URL."""
        response = await self._client.put(
            credential.url,
            content=data,
            headers={"Content-Type": credential.content_type},
        )
        if response.status_code >= 300:
            raise httpx.HTTPStatusError(
                f"Signed URL upload returned {response.status_code}: {response.text[:200]}",
                request=response.request,
                response=response,
            )

    async def proxy_upload(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        """Send the blob through the backend, which writes it with its own credentials."""
        response = await self._client.post(
            "/api/upload/direct",
            content=data,
            headers={"Content-Type": content_type},
        )
        response.raise_for_status()
        return response.json()["storage_key"]

    async def head_object(self, storage_key: str) -> ObjectInfo:
        response = await self._client.get(f"/api/upload/status/{storage_key}")
        response.raise_for_status()
        body = response.json()
        last_modified = body.get("last_modified")
        return ObjectInfo(
            exists=bool(body.get("exists")),
            size=body.get("file_size"),
            last_modified=datetime.fromisoformat(last_modified) if last_modified else None,
            content_type=body.get("content_type"),
        )

    async def start_job(
        self,
        kind: JobKind,
        media_location: str,
        *,
        language_hint: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {"media_location": media_location}
        if language_hint:
            payload["language_hint"] = language_hint
        response = await self._client.post(f"/api/analysis/jobs/{kind.value}", json=payload)
        response.raise_for_status()
        return response.json()["job_handle"]

    async def get_job_status(self, kind: JobKind, job_handle: str) -> dict[str, Any]:
        response = await self._client.get(f"/api/analysis/status/{kind.value}/{job_handle}")
        response.raise_for_status()
        return response.json()
