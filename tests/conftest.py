# tests/conftest.py
import os
import tempfile
from datetime import datetime, timedelta
from decimal import Decimal

# Settings are read at import time
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.gettempdir(), f"promo_api_health_{os.getpid()}.db"
)
os.environ["MAINTENANCE_SECRET"] = "test-maintenance-secret"
os.environ["PAYHERE_MERCHANT_ID"] = "1211149"
os.environ["PAYHERE_MERCHANT_SECRET"] = "test-merchant-secret"
os.environ["CARD_WEBHOOK_SECRET"] = "whsec_test"
os.environ["ALLOWED_HOSTS"] = "*"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from promo_api.db.base import Base
from promo_api.models import Listing, Promotion, PromotionType
from promo_api.services.pricing import PricingTable

NOW = datetime(2026, 3, 10, 14, 30, 0)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def pricing() -> PricingTable:
    return PricingTable(
        prices={
            PromotionType.FEATURED: Decimal("3500"),
            PromotionType.TOP_SPOT: Decimal("1200"),
            PromotionType.BOOST: Decimal("800"),
            PromotionType.URGENT: Decimal("600"),
        },
        durations_days={
            PromotionType.FEATURED: 7,
            PromotionType.TOP_SPOT: 7,
            PromotionType.BOOST: 7,
            PromotionType.URGENT: 5,
        },
        bundle_discounts={2: Decimal("200"), 3: Decimal("400"), 4: Decimal("600")},
        currency="LKR",
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'promotions.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


async def make_listing(session, title="Toyota Aqua 2015", category="cars", price="4500000") -> Listing:
    listing = Listing(title=title, category=category, price=Decimal(price))
    session.add(listing)
    await session.commit()
    return listing


async def make_promotion(
    session,
    listing_id: int,
    promotion_type: PromotionType,
    created_at: datetime = NOW - timedelta(days=1),
    expires_at: datetime = NOW + timedelta(days=6),
    is_active: bool = True,
    impressions: int = 0,
    rotation_score: int = 0,
    last_shown_at=None,
    amount_paid: str = "3500",
) -> Promotion:
    promotion = Promotion(
        listing_id=listing_id,
        promotion_type=promotion_type,
        amount_paid=Decimal(amount_paid),
        created_at=created_at,
        updated_at=created_at,
        expires_at=expires_at,
        is_active=is_active,
        impressions=impressions,
        rotation_score=rotation_score,
        last_shown_at=last_shown_at,
    )
    session.add(promotion)
    await session.commit()
    return promotion
