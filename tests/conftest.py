from collections.abc import AsyncIterator
from datetime import timedelta
from pathlib import Path

import pytest
from kungfu import Ok
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tracklease.catalog import SqlCatalog
from tracklease.db import create_database
from tracklease.discounts import DiscountCodeLedger
from tracklease.domain import BeatLicense, CheckoutRequest, CreatedOrder, ItemRef
from tracklease.downloads import DownloadBroker
from tracklease.entitlements import EntitlementGenerator
from tracklease.gateway import MemoryGateway
from tracklease.orders import EntitlementDispatcher, OrderLedger
from tracklease.storage import MemoryStorage
from tracklease.webhooks import WebhookReconciler
from tests.fixtures import (
    BEAT,
    EMAIL,
    TIER_WAV,
    Checkout,
    Clock,
    fake_render,
    seed_assets,
    seed_catalog,
)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
async def sessions(tmp_path: Path, clock: Clock) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    factory, engine = await create_database(f"sqlite+aiosqlite:///{tmp_path / 'tracklease.db'}")
    await seed_catalog(factory, clock)
    yield factory
    await engine.dispose()


@pytest.fixture
async def storage(clock: Clock) -> MemoryStorage:
    store = MemoryStorage(signing_secret="test-signing-secret", clock=clock)
    await seed_assets(store)
    return store


@pytest.fixture
def gateway() -> MemoryGateway:
    return MemoryGateway()


@pytest.fixture
def catalog(sessions: async_sessionmaker[AsyncSession]) -> SqlCatalog:
    return SqlCatalog(sessions)


@pytest.fixture
def discounts(sessions: async_sessionmaker[AsyncSession], clock: Clock) -> DiscountCodeLedger:
    return DiscountCodeLedger(sessions, clock=clock)


@pytest.fixture
def generator(
    sessions: async_sessionmaker[AsyncSession],
    storage: MemoryStorage,
    catalog: SqlCatalog,
    clock: Clock,
) -> EntitlementGenerator:
    return EntitlementGenerator(
        sessions,
        storage,
        catalog,
        licensor_name="Night Owl Beats",
        concurrency=2,
        renderer=fake_render,
        clock=clock,
    )


@pytest.fixture
def dispatcher(generator: EntitlementGenerator) -> EntitlementDispatcher:
    return EntitlementDispatcher(generator)


@pytest.fixture
async def ledger(
    sessions: async_sessionmaker[AsyncSession],
    catalog: SqlCatalog,
    discounts: DiscountCodeLedger,
    gateway: MemoryGateway,
    dispatcher: EntitlementDispatcher,
    clock: Clock,
) -> AsyncIterator[OrderLedger]:
    ledger = OrderLedger(
        sessions,
        prices=catalog,
        discounts=discounts,
        gateway=gateway,
        entitlements=dispatcher,
        download_window=timedelta(days=7),
        clock=clock,
    )
    yield ledger
    await ledger.join()


@pytest.fixture
def reconciler(
    sessions: async_sessionmaker[AsyncSession],
    gateway: MemoryGateway,
    ledger: OrderLedger,
    clock: Clock,
) -> WebhookReconciler:
    return WebhookReconciler(sessions, gateway, ledger, clock=clock)


@pytest.fixture
def broker(
    sessions: async_sessionmaker[AsyncSession],
    storage: MemoryStorage,
    catalog: SqlCatalog,
    generator: EntitlementGenerator,
    clock: Clock,
) -> DownloadBroker:
    return DownloadBroker(sessions, storage, catalog, generator, ttl_seconds=900, clock=clock)


@pytest.fixture
def checkout(ledger: OrderLedger) -> Checkout:
    """Create a pending order; defaults to one WAV lease for EMAIL."""

    async def create(
        *items: ItemRef,
        email: str = EMAIL,
        name: str | None = "Test Fan",
        code: str | None = None,
    ) -> CreatedOrder:
        request = CheckoutRequest(
            items=items or (BeatLicense(BEAT, TIER_WAV),),
            customer_email=email,
            customer_name=name,
            discount_code=code,
        )
        match await ledger.create(request):
            case Ok(created):
                return created
            case other:
                raise AssertionError(f"checkout failed: {other}")

    return create
