# promo_api/db/__init__.py
"""
Database package for SQLAlchemy setup, session management, and base models.
"""

from promo_api.db.base import Base
from promo_api.db.session import create_database_engine, get_session, get_session_factory

__all__ = [
    "Base",
    "create_database_engine",
    "get_session",
    "get_session_factory",
]
