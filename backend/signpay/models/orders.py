"""
Pydantic Order Models

Request validation for submits and the order snapshot returned in
response envelopes. Wire names (merchandiser_id, returnUrl, notifyUrl)
are kept as aliases so merchants see a stable JSON shape.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _check_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError("must be a valid http(s) URL")
    return value


class SubmitOrderRequest(BaseModel):
    """
    Shape check for a submit payload.

    Only validates; the raw payload is still what gets signature-verified.
    Extra fields (sign, timestamp, merchant-specific keys) are allowed.
    """
    merchandiser_id: int
    trade_no: str = Field(min_length=1, max_length=255)
    subject: str = Field(min_length=1, max_length=255)
    amount: Decimal
    return_url: str = Field(alias="returnUrl")
    notify_url: str = Field(alias="notifyUrl")
    items: Optional[List[Any]] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("return_url", "notify_url")
    @classmethod
    def url_has_host(cls, v: str) -> str:
        """Require scheme and host."""
        return _check_url(v)

    @field_validator("amount")
    @classmethod
    def amount_is_finite(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("must be a number")
        return v


class Merchant(BaseModel):
    """Merchant as the order API sees it (read-only)."""
    id: int
    name: str = ""
    public_key: str
    domain: str
    status: str

    model_config = ConfigDict(from_attributes=True)


class OrderRecord(BaseModel):
    """
    Order snapshot returned in the `data` field of the envelope.
    """
    id: int
    merchant_id: int = Field(serialization_alias="merchandiser_id")
    trade_no: str
    subject: str
    amount: Decimal
    items: Optional[List[Any]] = None
    return_url: str = Field(serialization_alias="returnUrl")
    notify_url: str = Field(serialization_alias="notifyUrl")
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": 42,
                "merchandiser_id": 1,
                "trade_no": "T20261019-0001",
                "subject": "Coffee beans",
                "amount": "25.50",
                "items": [{"sku": "beans-1kg", "quantity": 1}],
                "returnUrl": "https://shop.example.com/return",
                "notifyUrl": "https://shop.example.com/notify",
                "status": "pending",
                "created_at": "2026-10-19T08:30:00",
                "updated_at": "2026-10-19T08:30:00"
            }
        }
    }

    def to_wire(self) -> dict:
        """JSON-ready dict using wire field names."""
        return self.model_dump(mode="json", by_alias=True)
