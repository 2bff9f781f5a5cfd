"""
Orders API Endpoints

Signed merchant operations on payment orders.

Every request carries `sign` (base64 signature) and `timestamp` (epoch
seconds) next to its other fields. Fields may come from the query string,
a JSON object body or a form body; body fields override query fields, and
the merged mapping is exactly what gets verified.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict, Any, Optional
import json
import logging

from ..db.init_db import get_db
from ..exceptions import ValidationError
from ..services.order_service import (
    complete_order,
    get_order,
    remove_order,
    submit_order
)
from ..services.signature_service import DuplicateFieldError, expand_fields

logger = logging.getLogger(__name__)

router = APIRouter()

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def envelope(data: Optional[Dict[str, Any]] = None, message: str = "", status: int = 0) -> Dict[str, Any]:
    """Response envelope shared by all order endpoints; status 0 is success."""
    return {
        "data": data,
        "message": message,
        "status": status,
    }


async def read_payload(request: Request) -> Dict[str, Any]:
    """
    Merge query string and body into one field mapping.

    Bracketed form/query names (`items[0][sku]`) are rebuilt into nested
    values. A name repeated within the query string or within a form body
    is rejected; a body field replaces a query field of the same name.

    Raises:
        ValidationError: If a JSON body is not a JSON object, or a field repeats
    """
    try:
        payload = expand_fields(request.query_params.multi_items())
    except DuplicateFieldError as e:
        raise ValidationError(str(e)) from e
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("application/json"):
        body = await request.body()
        if body:
            try:
                data = json.loads(body)
            except json.JSONDecodeError as e:
                raise ValidationError(f"Request body is not valid JSON: {e.msg}") from e
            if not isinstance(data, dict):
                raise ValidationError("Request body must be a JSON object")
            payload.update(data)
    elif content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        try:
            payload.update(expand_fields(form.multi_items()))
        except DuplicateFieldError as e:
            raise ValidationError(str(e)) from e

    return payload


@router.post("")
async def submit_order_endpoint(
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Submit a new order or update a pending one.

    Body Fields:
        merchandiser_id, trade_no, subject, amount, returnUrl, notifyUrl,
        items (optional), sign, timestamp

    Returns:
        Envelope with the order snapshot

    Example:
        POST /api/orders
    """
    payload = await read_payload(request)
    logger.debug(f"Submit order: merchant={payload.get('merchandiser_id')}, trade_no={payload.get('trade_no')}")

    order = await submit_order(db, payload)
    return envelope(order.to_wire())


@router.get("/{order_id}")
async def get_order_endpoint(
    order_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Fetch an order.

    Path Parameters:
        order_id: Order identifier

    Query Parameters:
        sign, timestamp (plus any other signed fields)

    Example:
        GET /api/orders/42?timestamp=1760862600&sign=...
    """
    payload = await read_payload(request)
    order = await get_order(db, order_id, payload)
    return envelope(order.to_wire())


@router.post("/{order_id}/complete")
async def complete_order_endpoint(
    order_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Mark a processing order as done.

    Body Fields:
        trade_no, sign, timestamp

    Example:
        POST /api/orders/42/complete
    """
    payload = await read_payload(request)
    order = await complete_order(db, order_id, payload)
    return envelope(order.to_wire())


@router.delete("/{order_id}")
async def remove_order_endpoint(
    order_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    """
    Delete a refunded or cancelled order.

    Body Fields:
        trade_no, sign, timestamp

    Example:
        DELETE /api/orders/42
    """
    payload = await read_payload(request)
    await remove_order(db, order_id, payload)
    return envelope(None)
