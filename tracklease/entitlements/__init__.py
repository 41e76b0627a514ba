"""
Entitlements — license documents for purchased items.

    from tracklease.entitlements import EntitlementGenerator

    generator = EntitlementGenerator(session_factory, storage, catalog, concurrency=4)
    report = (await generator.generate_for_order(order_id)).unwrap()
    report.failed  # per-item failures, order status untouched
"""

from tracklease.entitlements._generator import (
    EntitlementGenerator,
    EntitlementReport,
    ItemFailure,
    build_context,
)
from tracklease.entitlements._render import (
    BUILTIN_TEMPLATE,
    clean_text,
    render_html,
    render_pdf,
)
from tracklease.entitlements._rights import RIGHTS, STANDARD_LEASE, RightsTerms, rights_for

__all__ = (
    "EntitlementGenerator",
    "EntitlementReport",
    "ItemFailure",
    "build_context",
    "BUILTIN_TEMPLATE",
    "clean_text",
    "render_html",
    "render_pdf",
    "RightsTerms",
    "RIGHTS",
    "STANDARD_LEASE",
    "rights_for",
)
