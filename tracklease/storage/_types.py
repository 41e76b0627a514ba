"""
Blob storage protocol.

Every call returns a Result; transient failures are marked so adapters
can retry them with backoff.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from kungfu import Result

from tracklease.errors import LeaseError

BEATS_BUCKET = "beats"
SOUNDKITS_BUCKET = "soundkits"
LICENSES_BUCKET = "licenses"


@dataclass(frozen=True, slots=True)
class SignedUrl:
    url: str
    expires_at: datetime


class BlobStorage(Protocol):
    """
    Storage backend for audio assets and license documents.

    Implementations:
    - MemoryStorage: in-process, for tests and local runs
    - SupabaseStorage: Supabase storage REST API over httpx
    """

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> Result[str, LeaseError]: ...

    async def download(self, bucket: str, path: str) -> Result[bytes, LeaseError]: ...

    async def create_signed_url(
        self, bucket: str, path: str, ttl_seconds: int,
    ) -> Result[SignedUrl, LeaseError]: ...

    async def list(self, bucket: str, prefix: str) -> Result[list[str], LeaseError]: ...


__all__ = (
    "BEATS_BUCKET",
    "SOUNDKITS_BUCKET",
    "LICENSES_BUCKET",
    "SignedUrl",
    "BlobStorage",
)
