"""
Database package for SignPay.

Exports database initialization, models, and session management.
"""
from .init_db import initialize_database, get_db, get_async_session
from .models import (
    Base,
    MerchantModel,
    OrderModel,
)

__all__ = [
    "initialize_database",
    "get_db",
    "get_async_session",
    "Base",
    "MerchantModel",
    "OrderModel",
]
