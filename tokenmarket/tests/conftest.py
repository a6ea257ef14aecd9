"""Shared test fixtures for the token marketplace test suite.

Uses an in-memory SQLite database with StaticPool so all sessions share the
same connection (committed data is visible across sessions). Time is driven
by a ``FakeClock`` that services receive as ``now`` and routes receive
through the ``get_clock`` dependency.
"""

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tokenmarket.core.clock import get_clock
from tokenmarket.database import Base, get_db
from tokenmarket.main import app
from tokenmarket.models import *  # noqa: ensure all models are loaded for create_all

ASSET = "0xASSET"
TOKEN_ID = "0"
CURRENCY = "0xCOIN"
T0 = 1_700_000_000


# ---------------------------------------------------------------------------
# In-memory SQLite test engine (shared via StaticPool)
# ---------------------------------------------------------------------------

test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@event.listens_for(test_engine.sync_engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class FakeClock:
    """Callable clock returning a settable unix time."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


# ---------------------------------------------------------------------------
# Auto-use: create/drop tables for every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after. Also clear event listeners."""
    from tokenmarket.services import event_service
    event_service._listeners.clear()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    event_service._listeners.clear()


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def db():
    """Yield a fresh AsyncSession for direct service-layer tests."""
    async with TestSession() as session:
        yield session


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def client(clock):
    """httpx AsyncClient wired to the FastAPI app with test DB and clock overrides."""
    import httpx

    async def _override_get_db():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_clock] = lambda: clock

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def auth_header():
    """Return a callable that builds an Authorization header for an account id."""
    from tokenmarket.core.auth import create_access_token

    def _build(account_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(account_id)}"}
    return _build


@pytest.fixture
def custody():
    from tokenmarket.services.escrow_service import custody_id
    return custody_id()


# ---------------------------------------------------------------------------
# Seeding helpers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_seller(db: AsyncSession, custody):
    """Factory fixture: mint asset units to an account and (optionally) approve the marketplace."""
    from tokenmarket.services import asset_ledger_service

    async def _make(account: str = "seller", quantity: int = 100, token_id: str = TOKEN_ID,
                    asset_contract: str = ASSET, approve: bool = True):
        await asset_ledger_service.mint(db, asset_contract, token_id, account, quantity)
        if approve:
            await asset_ledger_service.set_approval_for_all(db, asset_contract, account, custody, True)
        return account

    return _make


@pytest.fixture
def make_buyer(db: AsyncSession, custody):
    """Factory fixture: mint currency to an account and grant the marketplace an allowance."""
    from tokenmarket.services import currency_ledger_service

    async def _make(account: str = "bidder", balance: float = 1000, allowance: float | None = None,
                    currency: str = CURRENCY):
        await currency_ledger_service.mint(db, currency, account, balance)
        allowance = balance if allowance is None else allowance
        if allowance:
            await currency_ledger_service.approve(db, currency, account, custody, allowance)
        return account

    return _make


@pytest.fixture
def make_auction(db: AsyncSession):
    """Factory fixture: create an auction listing through the listing service."""
    from tokenmarket.schemas.listing import ListingCreateRequest
    from tokenmarket.services import listing_service

    async def _make(creator: str = "seller", quantity: int = 100, reserve: float = 1,
                    buyout: float = 0, start_in: int = 0, duration: int = 200,
                    now: int = T0, token_id: str = TOKEN_ID):
        params = ListingCreateRequest(
            asset_contract=ASSET,
            token_id=token_id,
            seconds_until_start_time=start_in,
            seconds_until_end_time=duration,
            quantity_to_list=quantity,
            currency_to_accept=CURRENCY,
            reserve_price_per_token=reserve,
            buyout_price_per_token=buyout,
            listing_type="auction",
        )
        return await listing_service.create_listing(db, creator, params, now=now)

    return _make


@pytest.fixture
def make_direct_listing(db: AsyncSession):
    """Factory fixture: create a direct (fixed-price) listing."""
    from tokenmarket.schemas.listing import ListingCreateRequest
    from tokenmarket.services import listing_service

    async def _make(creator: str = "seller", quantity: int = 10, price: float = 5,
                    start_in: int = 0, duration: int = 3600, now: int = T0,
                    token_id: str = TOKEN_ID):
        params = ListingCreateRequest(
            asset_contract=ASSET,
            token_id=token_id,
            seconds_until_start_time=start_in,
            seconds_until_end_time=duration,
            quantity_to_list=quantity,
            currency_to_accept=CURRENCY,
            buyout_price_per_token=price,
            listing_type="direct",
        )
        return await listing_service.create_listing(db, creator, params, now=now)

    return _make
