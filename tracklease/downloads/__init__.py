"""
Downloads — signed, expiring access to purchased files.

    from tracklease.downloads import DownloadBroker

    broker = DownloadBroker(session_factory, storage, catalog, generator, ttl_seconds=900)
    bundle = (await broker.issue(order_id, "fan@example.com")).unwrap()
"""

from tracklease.downloads._broker import DownloadBroker
from tracklease.downloads._nodes import (
    DELIVERABLES,
    AssetPathsNode,
    BrokerContext,
    DownloadBundleNode,
    DownloadRequest,
    LicenseIndexNode,
    OrderAccessNode,
    check_access,
)
from tracklease.downloads._types import DownloadBundle, DownloadFile, DownloadItem

__all__ = (
    "DownloadBroker",
    "DownloadBundle",
    "DownloadItem",
    "DownloadFile",
    "DownloadRequest",
    "BrokerContext",
    "DELIVERABLES",
    "check_access",
    "OrderAccessNode",
    "AssetPathsNode",
    "LicenseIndexNode",
    "DownloadBundleNode",
)
