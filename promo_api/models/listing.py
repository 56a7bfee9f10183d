# promo_api/models/listing.py
from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Numeric,
    String,
    false,
    text,
)
from sqlalchemy.orm import relationship

from promo_api.db.base import Base


class Listing(Base):
    """Marketplace listing.

    Listing CRUD belongs to the surrounding application; this model carries only
    what the promotion engine reads (category filter) and the promotion
    projection, which is written exclusively by ``services.projection``.
    """

    __tablename__ = "listings"

    title = Column(String(200), nullable=False)
    category = Column(String(100), nullable=True, index=True)
    price = Column(Numeric(12, 2))

    # Promotion projection
    is_featured = Column(Boolean, nullable=False, default=False, server_default=false())
    featured_until = Column(DateTime)
    is_top_spot = Column(Boolean, nullable=False, default=False, server_default=false())
    top_spot_until = Column(DateTime)
    is_boosted = Column(Boolean, nullable=False, default=False, server_default=false())
    boosted_until = Column(DateTime)
    is_urgent = Column(Boolean, nullable=False, default=False, server_default=false())
    urgent_until = Column(DateTime)
    boost_score = Column(BigInteger, nullable=False, default=0, server_default="0")  # epoch ms

    promotions = relationship("Promotion", back_populates="listing")

    __table_args__ = (
        Index("idx_listings_boost_order", "is_boosted", "boost_score"),
        Index("idx_listings_featured_until", "featured_until", postgresql_where=text("is_featured = true")),
    )
