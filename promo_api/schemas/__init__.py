# promo_api/schemas/__init__.py
"""
Pydantic request/response models for the HTTP API.
"""
