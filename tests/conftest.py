"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database engine and sessions (async, SQLite file per test)
- A fully wired webhook pipeline with recorded (instant) backoff sleeps
- FakeRedis for the shared coordination backend
- Test data factories (products, orders, carts)
"""
# Configure the environment before importing app: settings are read at import time
import os
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

from decimal import Decimal
from typing import Any, AsyncGenerator, Callable
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from app.api.webhooks.stripe import get_webhook_pipeline
from app.core.config import Settings
from app.db.database import Base
from app.db.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from app.db.models.product import CartItem, Product
from app.domain.services.stripe_webhook.pipeline import WebhookPipeline, build_webhook_pipeline
from app.domain.services.stripe_webhook.registry import HandlerRegistry
from app.main import app

from webhook_helpers import TEST_WEBHOOK_SECRET

# Note: no custom event_loop fixture; pytest-asyncio handles it with
# asyncio_mode=auto and asyncio_default_fixture_loop_scope=function


# ============================================================================
# Database
# ============================================================================

@pytest.fixture(scope="function")
async def async_engine(tmp_path):
    """File-backed SQLite so that every session gets its own connection"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'webhooks.db'}",
        poolclass=NullPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for arranging and asserting; the pipeline opens its own"""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Redis
# ============================================================================

class FakeRedis:
    """In-memory Redis stand-in for tests, with TTL tracking and sorted sets."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}
        self._zsets: dict[str, dict[str, float]] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET with NX (only if missing) and EX (expiry in seconds)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self._store or key in self._zsets)

    async def expire(self, key: str, ttl: int) -> None:
        """Set a TTL on an existing key"""
        if key in self._store or key in self._zsets:
            self._ttls[key] = ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._zsets.pop(key, None)
            self._ttls.pop(key, None)

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        zset = self._zsets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in zset)
        zset.update(mapping)
        return added

    async def zcard(self, key: str) -> int:
        return len(self._zsets.get(key, {}))

    async def zremrangebyscore(self, key: str, min_score: float, max_score: float) -> int:
        zset = self._zsets.get(key, {})
        doomed = [member for member, score in zset.items() if min_score <= score <= max_score]
        for member in doomed:
            del zset[member]
        return len(doomed)

    async def aclose(self) -> None:
        self._store.clear()
        self._zsets.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for every test."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Webhook pipeline
# ============================================================================

@pytest.fixture
def recorded_sleeps() -> list[float]:
    """Backoff delays (seconds) requested by the retry loop"""
    return []


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "STRIPE_WEBHOOK_SECRET": TEST_WEBHOOK_SECRET,
            "WEBHOOK_COORDINATION_BACKEND": "memory",
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def make_pipeline(
    session_factory,
    recorded_sleeps,
    fake_redis,
    make_settings,
) -> Callable[..., WebhookPipeline]:
    """Build a pipeline against the test database; sleeps are recorded, not awaited"""

    async def _sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)

    async def _get_fake_redis():
        return fake_redis

    def _make(registry: HandlerRegistry | None = None, **overrides: Any) -> WebhookPipeline:
        return build_webhook_pipeline(
            make_settings(**overrides),
            session_factory,
            registry=registry,
            sleep=_sleep,
            redis_factory=_get_fake_redis,
        )
    return _make


@pytest.fixture
def webhook_pipeline(make_pipeline) -> WebhookPipeline:
    """Default pipeline with the store's order payment handlers"""
    return make_pipeline()


@pytest.fixture(scope="function")
async def test_client(webhook_pipeline: WebhookPipeline):
    """Create test client with the pipeline dependency overridden"""
    from httpx import AsyncClient, ASGITransport

    app.dependency_overrides[get_webhook_pipeline] = lambda: webhook_pipeline

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def client_for():
    """Test client bound to a specific pipeline (for non-default settings)"""
    from httpx import AsyncClient, ASGITransport

    clients = []

    async def _make(pipeline: WebhookPipeline) -> AsyncClient:
        app.dependency_overrides[get_webhook_pipeline] = lambda: pipeline
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def product_factory(db_session: AsyncSession):
    async def _create(
        name: str = "LAOS Tour Shirt",
        price: str = "89.90",
        stock_quantity: int = 10,
        **kwargs: Any,
    ) -> Product:
        product = Product(
            name=name,
            price=Decimal(price),
            stock_quantity=stock_quantity,
            **kwargs,
        )
        db_session.add(product)
        await db_session.commit()
        await db_session.refresh(product)
        return product
    return _create


@pytest.fixture
def order_factory(db_session: AsyncSession):
    """Pending order with one line per (product, quantity) pair"""
    counter = {"value": 0}

    async def _create(
        items: list[tuple[Product, int]],
        user_id: str = "user-1",
        stripe_session_id: str | None = "cs_test_1",
        **kwargs: Any,
    ) -> Order:
        counter["value"] += 1
        subtotal = sum((Decimal(p.price) * qty for p, qty in items), Decimal("0"))
        order = Order(
            user_id=user_id,
            order_number=f"LAOS-{counter['value']:05d}",
            status=OrderStatus.PENDING,
            payment_status=PaymentStatus.PENDING,
            subtotal=subtotal,
            total=subtotal,
            stripe_session_id=stripe_session_id,
            **kwargs,
        )
        db_session.add(order)
        await db_session.flush()
        for product, quantity in items:
            db_session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                quantity=quantity,
                price=product.price,
                total=Decimal(product.price) * quantity,
            ))
        await db_session.commit()
        # Code under test must load the order (and its items) itself
        db_session.expunge_all()
        return order
    return _create


@pytest.fixture
def fetch_all(session_factory):
    """Query through a fresh session so rows written by the pipeline are visible"""
    from sqlalchemy import select

    async def _fetch(model, *criteria) -> list:
        async with session_factory() as session:
            query = select(model)
            if criteria:
                query = query.where(*criteria)
            result = await session.execute(query)
            return list(result.scalars().all())
    return _fetch


@pytest.fixture
def cart_factory(db_session: AsyncSession):
    async def _create(user_id: str, product: Product, quantity: int = 1) -> CartItem:
        item = CartItem(user_id=user_id, product_id=product.id, quantity=quantity)
        db_session.add(item)
        await db_session.commit()
        return item
    return _create
