"""
In-memory blob storage with HMAC-signed, expiring URLs.
"""

import asyncio
import hashlib
import hmac
from collections.abc import Callable
from datetime import datetime, timedelta
from urllib.parse import parse_qs, quote, unquote, urlsplit

from kungfu import Error, Ok, Result

from tracklease import errors
from tracklease.domain import utcnow
from tracklease.errors import LeaseError
from tracklease.storage._types import SignedUrl


class MemoryStorage:
    """
    In-memory storage for testing and local runs.

    Signed URLs look like memory://bucket/path?expires=<unix>&signature=<hmac>
    and can be checked with verify_signed_url().
    """

    def __init__(
        self,
        signing_secret: str = "local-signing-secret",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self._lock = asyncio.Lock()
        self._secret = signing_secret.encode()
        self._clock = clock
        self.uploads = 0

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> Result[str, LeaseError]:
        async with self._lock:
            if not upsert and (bucket, path) in self._objects:
                return Error(errors.storage(f"{bucket}/{path} already exists"))
            self._objects[(bucket, path)] = (data, content_type)
            self.uploads += 1
            return Ok(path)

    async def download(self, bucket: str, path: str) -> Result[bytes, LeaseError]:
        async with self._lock:
            stored = self._objects.get((bucket, path))
        if stored is None:
            return Error(errors.storage(f"{bucket}/{path} not found"))
        return Ok(stored[0])

    async def create_signed_url(
        self, bucket: str, path: str, ttl_seconds: int,
    ) -> Result[SignedUrl, LeaseError]:
        async with self._lock:
            exists = (bucket, path) in self._objects
        if not exists:
            return Error(errors.storage(f"{bucket}/{path} not found"))

        expires_at = (self._clock() + timedelta(seconds=ttl_seconds)).replace(microsecond=0)
        expires = int((expires_at - datetime(1970, 1, 1)).total_seconds())
        signature = self._sign(bucket, path, expires)
        url = f"memory://{bucket}/{quote(path)}?expires={expires}&signature={signature}"
        return Ok(SignedUrl(url=url, expires_at=expires_at))

    async def list(self, bucket: str, prefix: str) -> Result[list[str], LeaseError]:
        async with self._lock:
            return Ok(sorted(
                path for (b, path) in self._objects
                if b == bucket and path.startswith(prefix)
            ))

    def verify_signed_url(self, url: str, now: datetime | None = None) -> bool:
        """True if the URL was minted here, untampered and unexpired."""
        parts = urlsplit(url)
        query = parse_qs(parts.query)
        try:
            expires = int(query["expires"][0])
            signature = query["signature"][0]
        except (KeyError, IndexError, ValueError):
            return False

        path = unquote(parts.path.lstrip("/"))
        expected = self._sign(parts.netloc, path, expires)
        if not hmac.compare_digest(expected, signature):
            return False

        moment = now if now is not None else self._clock()
        return moment < datetime(1970, 1, 1) + timedelta(seconds=expires)

    def contents(self, bucket: str, path: str) -> bytes | None:
        stored = self._objects.get((bucket, path))
        return stored[0] if stored is not None else None

    def _sign(self, bucket: str, path: str, expires: int) -> str:
        message = f"{bucket}/{path}:{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()


__all__ = ("MemoryStorage",)
