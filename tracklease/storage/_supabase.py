"""
Supabase storage adapter (REST API over httpx).
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import quote

import httpx
from combinators import RetryPolicy, retry
from kungfu import Error, LazyCoroResult, Ok, Result

from tracklease import errors
from tracklease._retry import backoff, transient_status
from tracklease.domain import utcnow
from tracklease.errors import LeaseError
from tracklease.storage._types import SignedUrl


class SupabaseStorage:
    """
    Blob storage on Supabase.

    Transient failures (transport errors, 429, 5xx) are retried with backoff;
    anything else surfaces as a STORAGE error.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy[LeaseError] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._base = base_url.rstrip("/") + "/storage/v1"
        self._key = service_key
        self._client = client or httpx.AsyncClient(timeout=30.0)
        self._policy = policy or backoff()
        self._clock = clock

    async def aclose(self) -> None:
        await self._client.aclose()

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> Result[str, LeaseError]:
        response = await self._request(
            "POST",
            f"/object/{bucket}/{quote(path)}",
            content=data,
            headers={"content-type": content_type, "x-upsert": "true" if upsert else "false"},
        )
        return response.map(lambda _: path)

    async def download(self, bucket: str, path: str) -> Result[bytes, LeaseError]:
        response = await self._request("GET", f"/object/{bucket}/{quote(path)}")
        return response.map(lambda r: r.content)

    async def create_signed_url(
        self, bucket: str, path: str, ttl_seconds: int,
    ) -> Result[SignedUrl, LeaseError]:
        issued_at = self._clock()
        response = await self._request(
            "POST",
            f"/object/sign/{bucket}/{quote(path)}",
            json={"expiresIn": ttl_seconds},
        )
        match response:
            case Error(e):
                return Error(e)
            case Ok(r):
                signed = r.json().get("signedURL")
                if not signed:
                    return Error(errors.storage(f"No signed URL returned for {bucket}/{path}"))
                return Ok(SignedUrl(
                    url=f"{self._base}{signed}",
                    expires_at=issued_at + timedelta(seconds=ttl_seconds),
                ))

    async def list(self, bucket: str, prefix: str) -> Result[list[str], LeaseError]:
        folder = prefix.rstrip("/")
        response = await self._request(
            "POST",
            f"/object/list/{bucket}",
            json={"prefix": folder, "limit": 1000, "offset": 0},
        )
        return response.map(
            lambda r: [f"{folder}/{entry['name']}" for entry in r.json() if entry.get("name")]
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Result[httpx.Response, LeaseError]:
        headers = {
            "authorization": f"Bearer {self._key}",
            "apikey": self._key,
            **kwargs.pop("headers", {}),
        }

        async def attempt() -> Result[httpx.Response, LeaseError]:
            try:
                response = await self._client.request(
                    method, f"{self._base}{path}", headers=headers, **kwargs,
                )
            except httpx.HTTPError as exc:
                return Error(errors.storage(f"{method} {path}: {exc}", transient=True))
            if response.is_success:
                return Ok(response)
            return Error(errors.storage(
                f"{method} {path} -> {response.status_code}: {response.text[:200]}",
                transient=transient_status(response.status_code),
            ))

        return await retry(LazyCoroResult(attempt), policy=self._policy)


__all__ = ("SupabaseStorage",)
