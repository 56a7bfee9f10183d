# promo_api/models/bundle_payment.py
from __future__ import annotations

from sqlalchemy import Column, ForeignKey, Numeric, String

from promo_api.db.base import Base


class BundlePayment(Base):
    """Ledger of confirmed payment references, one row per activated bundle."""

    __tablename__ = "bundle_payments"

    payment_reference = Column(String(128), nullable=False, unique=True)
    listing_id = Column(ForeignKey("listings.id", ondelete="RESTRICT"), nullable=False, index=True)
    promotion_types = Column(String(100), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    provider = Column(String(32))
