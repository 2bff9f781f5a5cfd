"""
SQLAlchemy ORM Models for SignPay

Merchants are read-only for the order API; orders are created, updated and
deleted by it. The (merchant_id, trade_no) unique constraint settles
concurrent first submits for the same trade_no.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, ForeignKey, Text,
    CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores no timezone)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MerchantModel(Base):
    """
    ORM model for merchants table.

    Owned by the merchant registry; only `alive` merchants may submit orders.
    """
    __tablename__ = "merchants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, default="")
    public_key = Column(Text, nullable=False)  # PEM
    domain = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False, default="alive", index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class OrderModel(Base):
    """
    ORM model for orders table.

    Stores merchant orders; items is an opaque JSON blob.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    trade_no = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    items = Column(Text)  # JSON blob
    return_url = Column(Text, nullable=False)
    notify_url = Column(Text, nullable=False)
    status = Column(String(32), nullable=False, default="pending", index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("merchant_id", "trade_no", name="uq_orders_merchant_trade_no"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'done', 'refunded', 'cancelled')",
            name="order_status_check"
        ),
    )
