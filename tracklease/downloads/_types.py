"""
Download bundle — what a buyer receives for a completed order.
"""

from dataclasses import dataclass
from datetime import datetime

from tracklease.domain import ItemType


@dataclass(frozen=True, slots=True)
class DownloadFile:
    """file_type: mp3 | wav | stems | soundkit | license."""

    name: str
    url: str
    file_type: str
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class DownloadItem:
    order_item_id: str
    item_type: ItemType
    title: str
    license_name: str
    files: tuple[DownloadFile, ...]


@dataclass(frozen=True, slots=True)
class DownloadBundle:
    order_id: str
    customer_email: str
    total_cents: int
    currency: str
    created_at: datetime
    download_expires_at: datetime
    items: tuple[DownloadItem, ...]


def file_label(path: str) -> str:
    if path.endswith(".zip"):
        return "stems"
    if path.endswith(".wav"):
        return "wav"
    return "mp3"


def file_name(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1] or path


__all__ = ("DownloadFile", "DownloadItem", "DownloadBundle", "file_label", "file_name")
