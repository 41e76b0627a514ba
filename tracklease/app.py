"""
Wiring — one Services container per process.

    settings = Settings.from_env()
    services = await build_services(settings)
    try:
        ...
    finally:
        await services.close()
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tracklease.catalog import SqlCatalog
from tracklease.config import ConfigurationError, GatewaySettings, Settings, resolve_gateway_settings
from tracklease.db import create_database
from tracklease.discounts import DiscountCodeLedger
from tracklease.downloads import DownloadBroker
from tracklease.entitlements import EntitlementGenerator
from tracklease.gateway import MemoryGateway, PaymentGatewayAdapter, PayPalGateway
from tracklease.log import get_logger
from tracklease.notifications import HttpNotifier, MemoryNotifier, OrderNotifier
from tracklease.orders import EntitlementDispatcher, OrderLedger
from tracklease.storage import BlobStorage, MemoryStorage, SupabaseStorage
from tracklease.webhooks import WebhookReconciler, WebhookReplayer

log = get_logger("app")


@dataclass(slots=True)
class Services:
    settings: Settings
    sessions: async_sessionmaker[AsyncSession]
    engine: AsyncEngine
    storage: BlobStorage
    gateway: PaymentGatewayAdapter
    catalog: SqlCatalog
    discounts: DiscountCodeLedger
    generator: EntitlementGenerator
    dispatcher: EntitlementDispatcher
    ledger: OrderLedger
    reconciler: WebhookReconciler
    downloads: DownloadBroker
    notifier: OrderNotifier | None = None
    replayer: WebhookReplayer | None = None
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def close(self) -> None:
        """Stop replay, drain background generation, then release clients and the engine."""
        if self.replayer is not None:
            await self.replayer.stop()
        await self.dispatcher.join()
        for close in reversed(self.closers):
            await close()
        await self.engine.dispose()


def build_storage(settings: Settings) -> BlobStorage:
    match settings.storage.backend:
        case "supabase":
            return SupabaseStorage(
                settings.storage.url,
                settings.storage.service_key.get_secret_value(),
            )
        case "memory":
            return MemoryStorage(settings.storage.signing_secret.get_secret_value())


def build_gateway(gateway_settings: GatewaySettings) -> PaymentGatewayAdapter:
    """
    PayPal unless backend="memory" is set explicitly.

    Missing PayPal credentials are a configuration error: falling back to a
    gateway that captures everything would complete unpaid orders.
    """
    match gateway_settings.backend:
        case "memory":
            log.warning("app.memory_gateway", detail="payments are simulated")
            gateway = MemoryGateway(webhook_id=gateway_settings.webhook_id or "WH-LOCAL")
            if secret := gateway_settings.webhook_secret.get_secret_value():
                gateway.webhook_secret = secret
            return gateway
        case "paypal":
            if not gateway_settings.configured:
                raise ConfigurationError(
                    "PayPal credentials are missing: set TRACKLEASE_GATEWAY__CLIENT_ID and "
                    "TRACKLEASE_GATEWAY__CLIENT_SECRET, or TRACKLEASE_GATEWAY__BACKEND=memory "
                    "for local runs"
                )
            return PayPalGateway(gateway_settings)


def build_notifier(settings: Settings) -> OrderNotifier | None:
    notifications = settings.notifications
    match notifications.backend:
        case "http":
            if not notifications.url:
                raise ConfigurationError("TRACKLEASE_NOTIFICATIONS__URL is required for the http backend")
            return HttpNotifier(
                notifications.url,
                notifications.api_key.get_secret_value(),
                timeout_seconds=notifications.timeout_seconds,
            )
        case "memory":
            return MemoryNotifier()
        case "none":
            return None


async def build_services(
    settings: Settings,
    *,
    storage: BlobStorage | None = None,
    gateway: PaymentGatewayAdapter | None = None,
    notifier: OrderNotifier | None = None,
    background: bool = True,
) -> Services:
    """
    Create the schema if needed and wire every component.

    `storage`, `gateway` and `notifier` override the configured backends.
    Raises ConfigurationError when the settings cannot produce a safe
    gateway. `background=False` skips the webhook replay loop (one-shot
    commands).
    """
    closers: list[Callable[[], Awaitable[None]]] = []

    if notifier is None:
        notifier = build_notifier(settings)
        if isinstance(notifier, HttpNotifier):
            closers.append(notifier.aclose)

    sessions, engine = await create_database(settings.database_url)

    if gateway is None:
        try:
            gateway = build_gateway(await resolve_gateway_settings(sessions, settings))
        except ConfigurationError:
            for close in reversed(closers):
                await close()
            await engine.dispose()
            raise
        if isinstance(gateway, PayPalGateway):
            closers.append(gateway.aclose)

    if storage is None:
        storage = build_storage(settings)
        if isinstance(storage, SupabaseStorage):
            closers.append(storage.aclose)

    catalog = SqlCatalog(sessions)
    discounts = DiscountCodeLedger(sessions)
    generator = EntitlementGenerator(
        sessions,
        storage,
        catalog,
        licensor_name=settings.licensor_name,
        concurrency=settings.entitlement_concurrency,
    )
    dispatcher = EntitlementDispatcher(
        generator,
        notifier=notifier,
        site_url=settings.notifications.site_url,
    )
    ledger = OrderLedger(
        sessions,
        prices=catalog,
        discounts=discounts,
        gateway=gateway,
        entitlements=dispatcher,
        currency=settings.currency,
        download_window=timedelta(days=settings.download_window_days),
    )
    reconciler = WebhookReconciler(sessions, gateway, ledger)

    replayer: WebhookReplayer | None = None
    if background and settings.webhook_replay_interval_seconds > 0:
        replayer = WebhookReplayer(
            reconciler,
            interval_seconds=settings.webhook_replay_interval_seconds,
            max_interval_seconds=settings.webhook_replay_max_interval_seconds,
        )
        replayer.start()

    log.info(
        "app.services_built",
        storage=type(storage).__name__,
        gateway=type(gateway).__name__,
        notifier=type(notifier).__name__ if notifier is not None else None,
        webhook_replay=replayer is not None,
        currency=settings.currency,
    )
    return Services(
        settings=settings,
        sessions=sessions,
        engine=engine,
        storage=storage,
        gateway=gateway,
        catalog=catalog,
        discounts=discounts,
        generator=generator,
        dispatcher=dispatcher,
        ledger=ledger,
        reconciler=reconciler,
        downloads=DownloadBroker(
            sessions,
            storage,
            catalog,
            generator,
            ttl_seconds=settings.signed_url_ttl_seconds,
        ),
        notifier=notifier,
        replayer=replayer,
        closers=closers,
    )


__all__ = ("Services", "build_storage", "build_gateway", "build_notifier", "build_services")
