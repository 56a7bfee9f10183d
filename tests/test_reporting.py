from datetime import timedelta

import pytest

from conftest import make_listing, make_promotion
from promo_api.core.exceptions import NotFoundError
from promo_api.models import PromotionType
from promo_api.services.reporting import (
    NEVER_SHOWN,
    NOT_SHOWN_RECENTLY,
    SHOWN_RECENTLY,
    SHOWN_TODAY,
    SHOWN_YESTERDAY,
    fair_share_report,
    listing_promotions,
    promoted_listings,
    rotation_stats,
    show_status,
)
from promo_api.services.projection import refresh_listing_projection
from promo_api.services.promotion_store import PromotionStore
from promo_api.services.rotation import RotationConfig


class TestShowStatus:
    def test_buckets(self):
        assert show_status(None) == NEVER_SHOWN
        assert show_status(0.5) == SHOWN_RECENTLY
        assert show_status(1) == SHOWN_TODAY
        assert show_status(5.9) == SHOWN_TODAY
        assert show_status(6) == SHOWN_YESTERDAY
        assert show_status(23.9) == SHOWN_YESTERDAY
        assert show_status(24) == NOT_SHOWN_RECENTLY


@pytest.mark.asyncio
async def test_fair_share_with_more_competitors_than_slots(db_session, now):
    listings = [await make_listing(db_session, title=f"Listing {i}") for i in range(5)]
    for listing in listings:
        await make_promotion(db_session, listing.id, PromotionType.FEATURED, impressions=12)

    report = await fair_share_report(db_session, listings[0].id, RotationConfig(featured_slots=2), now=now)

    assert report.promotion_type == PromotionType.FEATURED
    assert report.total_competing_ads == 5
    assert report.slots_available == 2
    assert report.fair_share_percentage == 40.0
    assert report.impressions == 12
    assert report.avg_daily_impressions == 12.0
    assert report.status == NEVER_SHOWN


@pytest.mark.asyncio
async def test_fair_share_capped_at_one_hundred(db_session, now):
    listing = await make_listing(db_session)
    await make_promotion(
        db_session, listing.id, PromotionType.URGENT, last_shown_at=now - timedelta(minutes=10)
    )

    report = await fair_share_report(db_session, listing.id, RotationConfig(), now=now)

    assert report.fair_share_percentage == 100.0
    assert report.total_competing_ads == 1
    assert report.status == SHOWN_RECENTLY


@pytest.mark.asyncio
async def test_fair_share_picks_requested_type(db_session, now):
    listing = await make_listing(db_session)
    await make_promotion(db_session, listing.id, PromotionType.FEATURED)
    boost = await make_promotion(db_session, listing.id, PromotionType.BOOST)

    report = await fair_share_report(
        db_session, listing.id, RotationConfig(), promotion_type=PromotionType.BOOST, now=now
    )

    assert report.promotion_id == boost.id
    assert report.slots_available == 10


@pytest.mark.asyncio
async def test_fair_share_without_active_promotion(db_session, now):
    listing = await make_listing(db_session)
    await make_promotion(db_session, listing.id, PromotionType.FEATURED, expires_at=now - timedelta(hours=1))

    with pytest.raises(NotFoundError) as exc_info:
        await fair_share_report(db_session, listing.id, RotationConfig(), now=now)
    assert exc_info.value.code == "PROMOTION_NOT_FOUND"


@pytest.mark.asyncio
async def test_rotation_stats_lists_only_live_rows(db_session, now):
    listing = await make_listing(db_session)
    live = await make_promotion(
        db_session,
        listing.id,
        PromotionType.TOP_SPOT,
        impressions=30,
        created_at=now - timedelta(days=3),
        last_shown_at=now - timedelta(hours=3),
    )
    other = await make_listing(db_session, title="Expired")
    await make_promotion(db_session, other.id, PromotionType.TOP_SPOT, expires_at=now - timedelta(seconds=1))

    stats = await rotation_stats(db_session, PromotionType.TOP_SPOT, now=now)

    assert [s.promotion_id for s in stats] == [live.id]
    stat = stats[0]
    assert stat.title == "Toyota Aqua 2015"
    assert stat.avg_daily_impressions == 10.0
    assert stat.hours_since_shown == 3.0
    assert stat.show_status == SHOWN_TODAY


@pytest.mark.asyncio
async def test_listing_promotions_splits_active_and_history(db_session, now):
    listing = await make_listing(db_session)
    old = await make_promotion(
        db_session,
        listing.id,
        PromotionType.FEATURED,
        created_at=now - timedelta(days=20),
        expires_at=now - timedelta(days=13),
        is_active=False,
    )
    current = await make_promotion(db_session, listing.id, PromotionType.FEATURED)

    result = await listing_promotions(db_session, listing.id, now=now)

    assert [p.id for p in result.active] == [current.id]
    assert [p.id for p in result.history] == [current.id, old.id]


@pytest.mark.asyncio
async def test_listing_promotions_unknown_listing(db_session, now):
    with pytest.raises(NotFoundError):
        await listing_promotions(db_session, 4242, now=now)


async def _promote(session, listing, promotion_type, projected_at):
    await make_promotion(session, listing.id, promotion_type)
    await refresh_listing_projection(PromotionStore(session), listing.id, projected_at)
    await session.commit()


@pytest.mark.asyncio
async def test_promoted_listings_follow_projection_order(db_session, now):
    plain = await make_listing(db_session, title="Plain")
    early_boost = await make_listing(db_session, title="Early boost")
    late_boost = await make_listing(db_session, title="Late boost")
    top_spot = await make_listing(db_session, title="Top spot")
    featured = await make_listing(db_session, title="Featured")
    await make_listing(db_session, title="Boat", category="boats")

    await _promote(db_session, early_boost, PromotionType.BOOST, now)
    await _promote(db_session, late_boost, PromotionType.BOOST, now + timedelta(hours=1))
    await _promote(db_session, top_spot, PromotionType.TOP_SPOT, now)
    await _promote(db_session, featured, PromotionType.FEATURED, now)

    listings = await promoted_listings(db_session, category="cars")

    assert [listing.id for listing in listings] == [
        featured.id,
        top_spot.id,
        late_boost.id,
        early_boost.id,
        plain.id,
    ]
    assert listings[2].boost_score > listings[3].boost_score


@pytest.mark.asyncio
async def test_promoted_listings_paging(db_session, now):
    featured = await make_listing(db_session, title="Featured")
    await make_listing(db_session, title="Plain")
    await _promote(db_session, featured, PromotionType.FEATURED, now)

    first_page = await promoted_listings(db_session, limit=1)
    second_page = await promoted_listings(db_session, limit=1, offset=1)

    assert [listing.id for listing in first_page] == [featured.id]
    assert len(second_page) == 1
    assert second_page[0].is_featured is False
