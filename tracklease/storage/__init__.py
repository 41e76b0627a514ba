"""
Storage — blob storage for audio assets and license documents.

    from tracklease.storage import MemoryStorage, LICENSES_BUCKET

    storage = MemoryStorage()
    await storage.upload(LICENSES_BUCKET, "generated/o1/i1_License.pdf", pdf)
    signed = await storage.create_signed_url(LICENSES_BUCKET, path, ttl_seconds=900)
"""

from tracklease.storage._memory import MemoryStorage
from tracklease.storage._supabase import SupabaseStorage
from tracklease.storage._types import (
    BEATS_BUCKET,
    LICENSES_BUCKET,
    SOUNDKITS_BUCKET,
    BlobStorage,
    SignedUrl,
)

__all__ = (
    "BEATS_BUCKET",
    "SOUNDKITS_BUCKET",
    "LICENSES_BUCKET",
    "SignedUrl",
    "BlobStorage",
    "MemoryStorage",
    "SupabaseStorage",
)
