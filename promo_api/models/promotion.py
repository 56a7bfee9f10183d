# promo_api/models/promotion.py
from __future__ import annotations

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    text,
    true,
)
from sqlalchemy.orm import relationship

from promo_api.db.base import Base


class PromotionType(str, enum.Enum):
    FEATURED = "featured"
    TOP_SPOT = "top_spot"
    BOOST = "boost"
    URGENT = "urgent"


# Display priority, also used to pick a listing's headline promotion
PROMOTION_TYPE_ORDER = (
    PromotionType.FEATURED,
    PromotionType.TOP_SPOT,
    PromotionType.BOOST,
    PromotionType.URGENT,
)


class Promotion(Base):
    """One advertiser's purchase of one placement type for one listing.

    Rows are never deleted. Expiry flips ``is_active``; ``impressions`` is a
    lifetime counter and ``rotation_score`` is zeroed by the daily reset.
    """

    __tablename__ = "promotions"

    listing_id = Column(ForeignKey("listings.id", ondelete="RESTRICT"), nullable=False, index=True)
    listing = relationship("Listing", back_populates="promotions")

    promotion_type = Column(
        Enum(
            PromotionType,
            name="promotion_type",
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
    )
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0, server_default="0")
    payment_reference = Column(String(128))

    # Set when an active row is extended by a later bundle
    renewed_at = Column(DateTime)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, server_default=true())

    impressions = Column(Integer, nullable=False, default=0, server_default="0")
    rotation_score = Column(Integer, nullable=False, default=0, server_default="0")
    last_shown_at = Column(DateTime)

    __table_args__ = (
        # At most one active row per (listing, type)
        Index(
            "uq_promotions_active_listing_type",
            "listing_id",
            "promotion_type",
            unique=True,
            postgresql_where=text("is_active = true"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_promotions_rotation", "promotion_type", "is_active", "expires_at"),
        Index("idx_promotions_payment_reference", "payment_reference"),
        CheckConstraint("impressions >= 0", name="non_negative_impressions"),
        CheckConstraint("rotation_score >= 0", name="non_negative_rotation_score"),
        CheckConstraint("amount_paid >= 0", name="non_negative_amount"),
    )
