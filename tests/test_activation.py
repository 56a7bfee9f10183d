from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import make_listing, make_promotion
from promo_api.core.exceptions import NotFoundError, PaymentVerificationError, ValidationError
from promo_api.models import BundlePayment, Listing, Promotion, PromotionType
from promo_api.services.activation import activate_bundle


async def _rows(session, listing_id):
    result = await session.execute(
        select(Promotion)
        .where(Promotion.listing_id == listing_id)
        .order_by(Promotion.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars())


async def _listing(session, listing_id):
    result = await session.execute(
        select(Listing).where(Listing.id == listing_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_new_bundle_creates_rows_and_projection(db_session, pricing, now):
    listing = await make_listing(db_session)

    result = await activate_bundle(db_session, listing.id, ["featured", "urgent"], "P1", now=now, pricing=pricing)

    assert result.replayed is False
    assert [p.action for p in result.promotions] == ["created", "created"]

    rows = await _rows(db_session, listing.id)
    assert len(rows) == 2
    by_type = {PromotionType(r.promotion_type): r for r in rows}
    assert by_type[PromotionType.FEATURED].expires_at == now + timedelta(days=7)
    assert by_type[PromotionType.URGENT].expires_at == now + timedelta(days=5)
    assert all(r.is_active and r.payment_reference == "P1" for r in rows)
    assert sum(Decimal(str(r.amount_paid)) for r in rows) == Decimal("3900")

    projected = await _listing(db_session, listing.id)
    assert projected.is_featured is True
    assert projected.featured_until == now + timedelta(days=7)
    assert projected.is_urgent is True
    assert projected.urgent_until == now + timedelta(days=5)
    assert projected.is_top_spot is False


@pytest.mark.asyncio
async def test_new_payment_extends_instead_of_duplicating(db_session, pricing, now):
    listing = await make_listing(db_session)
    await activate_bundle(db_session, listing.id, ["featured", "urgent"], "P1", now=now, pricing=pricing)

    later = now + timedelta(days=2)
    result = await activate_bundle(db_session, listing.id, ["featured", "urgent"], "P2", now=later, pricing=pricing)

    assert [p.action for p in result.promotions] == ["extended", "extended"]
    rows = await _rows(db_session, listing.id)
    assert len(rows) == 2
    by_type = {PromotionType(r.promotion_type): r for r in rows}

    featured = by_type[PromotionType.FEATURED]
    assert featured.is_active is True
    assert featured.expires_at == later + timedelta(days=7)
    assert featured.renewed_at == later
    assert featured.created_at == now
    assert featured.payment_reference == "P2"
    assert by_type[PromotionType.URGENT].expires_at == later + timedelta(days=5)

    projected = await _listing(db_session, listing.id)
    assert projected.featured_until == later + timedelta(days=7)


@pytest.mark.asyncio
async def test_replayed_payment_reference_is_a_no_op(db_session, pricing, now):
    listing = await make_listing(db_session)
    await activate_bundle(db_session, listing.id, ["boost"], "P1", now=now, pricing=pricing)

    replay = await activate_bundle(
        db_session, listing.id, ["boost"], "P1", now=now + timedelta(hours=1), pricing=pricing
    )

    assert replay.replayed is True
    assert [p.action for p in replay.promotions] == ["unchanged"]
    rows = await _rows(db_session, listing.id)
    assert len(rows) == 1
    assert rows[0].expires_at == now + timedelta(days=7)
    assert rows[0].renewed_at is None

    payments = await db_session.execute(select(func.count(BundlePayment.id)))
    assert payments.scalar_one() == 1


@pytest.mark.asyncio
async def test_expired_but_still_active_row_is_replaced(db_session, pricing, now):
    listing = await make_listing(db_session)
    stale = await make_promotion(
        db_session,
        listing.id,
        PromotionType.TOP_SPOT,
        created_at=now - timedelta(days=8),
        expires_at=now - timedelta(days=1),
    )

    result = await activate_bundle(db_session, listing.id, ["top_spot"], "P9", now=now, pricing=pricing)

    assert result.promotions[0].action == "replaced"
    rows = await _rows(db_session, listing.id)
    assert len(rows) == 2
    old, new = rows
    assert old.id == stale.id
    assert old.is_active is False
    assert new.is_active is True
    assert new.expires_at == now + timedelta(days=7)


@pytest.mark.asyncio
async def test_only_one_active_row_per_type(db_session, pricing, now):
    listing = await make_listing(db_session)
    for i, types in enumerate((["featured"], ["featured", "boost"], ["boost", "featured", "urgent"])):
        await activate_bundle(
            db_session, listing.id, types, f"PAY-{i}", now=now + timedelta(hours=i), pricing=pricing
        )

    rows = await _rows(db_session, listing.id)
    active_types = [PromotionType(r.promotion_type) for r in rows if r.is_active]
    assert sorted(t.value for t in active_types) == ["boost", "featured", "urgent"]


@pytest.mark.asyncio
async def test_unknown_listing(db_session, pricing, now):
    with pytest.raises(NotFoundError) as exc_info:
        await activate_bundle(db_session, 999, ["featured"], "P1", now=now, pricing=pricing)
    assert exc_info.value.code == "LISTING_NOT_FOUND"

    payments = await db_session.execute(select(func.count(BundlePayment.id)))
    assert payments.scalar_one() == 0


@pytest.mark.asyncio
async def test_invalid_types_write_nothing(db_session, pricing, now):
    listing = await make_listing(db_session)
    with pytest.raises(ValidationError):
        await activate_bundle(db_session, listing.id, ["featured", "platinum"], "P1", now=now, pricing=pricing)
    assert await _rows(db_session, listing.id) == []


@pytest.mark.asyncio
async def test_extension_replaces_amount_and_ledger_keeps_lifetime_spend(db_session, pricing, now):
    listing = await make_listing(db_session)
    await activate_bundle(db_session, listing.id, ["featured"], "P1", now=now, pricing=pricing)

    result = await activate_bundle(
        db_session, listing.id, ["featured"], "P2", now=now + timedelta(days=1), pricing=pricing
    )

    assert result.promotions[0].action == "extended"
    assert result.promotions[0].amount_paid == 3500.0
    rows = await _rows(db_session, listing.id)
    assert len(rows) == 1
    assert Decimal(str(rows[0].amount_paid)) == Decimal("3500")

    spent = await db_session.execute(
        select(func.sum(BundlePayment.amount)).where(BundlePayment.listing_id == listing.id)
    )
    assert Decimal(str(spent.scalar_one())) == Decimal("7000")


@pytest.mark.asyncio
async def test_reference_reused_for_another_listing_is_rejected(db_session, pricing, now):
    first = await make_listing(db_session, title="First")
    second = await make_listing(db_session, title="Second")
    await activate_bundle(db_session, first.id, ["featured"], "P1", now=now, pricing=pricing)

    with pytest.raises(PaymentVerificationError) as exc_info:
        await activate_bundle(db_session, second.id, ["urgent"], "P1", now=now, pricing=pricing)

    assert exc_info.value.code == "PAYMENT_REFERENCE_REUSED"
    assert exc_info.value.details["recorded_listing_id"] == first.id
    assert await _rows(db_session, second.id) == []


@pytest.mark.asyncio
async def test_reference_reused_for_other_types_is_rejected(db_session, pricing, now):
    listing = await make_listing(db_session)
    await activate_bundle(db_session, listing.id, ["featured", "urgent"], "P1", now=now, pricing=pricing)

    with pytest.raises(PaymentVerificationError):
        await activate_bundle(db_session, listing.id, ["featured", "boost"], "P1", now=now, pricing=pricing)

    # Same set in another order is a genuine replay
    replay = await activate_bundle(db_session, listing.id, ["urgent", "featured"], "P1", now=now, pricing=pricing)
    assert replay.replayed is True
    active_types = sorted(PromotionType(r.promotion_type).value for r in await _rows(db_session, listing.id))
    assert active_types == ["featured", "urgent"]
