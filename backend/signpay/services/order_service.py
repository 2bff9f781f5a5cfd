"""
Order Service

Runs the four order operations (submit, fetch, complete, remove) against the
database. Each operation verifies the request signature with the owning
merchant's public key before the state machine is consulted.
"""
import json
from typing import Any, Mapping, Optional
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from ..db.models import OrderModel
from ..exceptions import AuthError, ConflictError, NotFoundError, ValidationError
from ..models.orders import Merchant, OrderRecord, SubmitOrderRequest
from .merchant_service import get_alive_merchant, get_merchant
from .order_state import (
    OrderStatus,
    SubmitAction,
    check_domain_binding,
    complete_target_status,
    decide_submit,
    ensure_deletable,
    ensure_trade_no_matches,
)
from .signature_service import VerificationOutcome, check_signature

logger = logging.getLogger(__name__)

# A lost create race is retried once as update-or-conflict
MAX_SUBMIT_ATTEMPTS = 2


# ============================================================================
# Helpers
# ============================================================================

def _to_record(db_order: OrderModel) -> OrderRecord:
    """Convert ORM row to the response snapshot."""
    return OrderRecord(
        id=db_order.id,
        merchant_id=db_order.merchant_id,
        trade_no=db_order.trade_no,
        subject=db_order.subject,
        amount=db_order.amount,
        items=json.loads(db_order.items) if db_order.items is not None else None,
        return_url=db_order.return_url,
        notify_url=db_order.notify_url,
        status=db_order.status,
        created_at=db_order.created_at,
        updated_at=db_order.updated_at,
    )


def _dump_items(items: Optional[list]) -> Optional[str]:
    return json.dumps(items) if items is not None else None


def parse_submit_request(payload: Mapping[str, Any]) -> SubmitOrderRequest:
    """
    Validate submit fields.

    Raises:
        ValidationError: With a readable summary of every failing field
    """
    try:
        return SubmitOrderRequest.model_validate(dict(payload))
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        )
        raise ValidationError(f"Invalid order request: {problems}") from e


def _require_signature(payload: Mapping[str, Any], merchant: Merchant) -> None:
    """
    Raises:
        AuthError: If the signature is missing, stale or does not verify
    """
    outcome = check_signature(payload, merchant.public_key)
    if outcome is not VerificationOutcome.VALID:
        logger.warning(f"Rejected request for merchant {merchant.id}: {outcome.value}")
        raise AuthError(details={"merchant_id": merchant.id})


async def _get_order_or_404(db: AsyncSession, order_id: int) -> OrderModel:
    db_order = await db.get(OrderModel, order_id)
    if not db_order:
        raise NotFoundError(f"Order not found: {order_id}")
    return db_order


async def _find_by_trade_no(
    db: AsyncSession,
    merchant_id: int,
    trade_no: str
) -> Optional[OrderModel]:
    result = await db.execute(
        select(OrderModel).where(
            OrderModel.merchant_id == merchant_id,
            OrderModel.trade_no == trade_no
        )
    )
    return result.scalar_one_or_none()


# ============================================================================
# Operations
# ============================================================================

async def submit_order(db: AsyncSession, payload: Mapping[str, Any]) -> OrderRecord:
    """
    Create an order, or update it while it is still pending.

    Args:
        db: Database session
        payload: Decoded request fields including sign and timestamp

    Returns:
        Created or updated order snapshot

    Raises:
        ValidationError: Bad fields, or callback URLs outside the merchant domain
        NotFoundError: Unknown or non-alive merchant
        AuthError: Signature rejected
        ConflictError: trade_no belongs to an order that left pending
    """
    request = parse_submit_request(payload)
    merchant = await get_alive_merchant(db, request.merchandiser_id)
    _require_signature(payload, merchant)

    for _ in range(MAX_SUBMIT_ATTEMPTS):
        db_order = await _find_by_trade_no(db, merchant.id, request.trade_no)
        action = decide_submit(db_order.status if db_order else None)

        if action is SubmitAction.UPDATE:
            db_order.subject = request.subject
            db_order.amount = request.amount
            db_order.items = _dump_items(request.items)
            await db.commit()
            await db.refresh(db_order)

            logger.info(f"Updated pending order: {db_order.id}, trade_no={request.trade_no}")
            return _to_record(db_order)

        check_domain_binding(request.return_url, request.notify_url, merchant.domain)

        db_order = OrderModel(
            merchant_id=merchant.id,
            trade_no=request.trade_no,
            subject=request.subject,
            amount=request.amount,
            items=_dump_items(request.items),
            return_url=request.return_url,
            notify_url=request.notify_url,
            status=OrderStatus.PENDING.value,
        )
        db.add(db_order)
        try:
            await db.commit()
        except IntegrityError:
            # Another request created the same (merchant, trade_no) first
            await db.rollback()
            logger.info(f"Lost create race for trade_no={request.trade_no}, re-reading")
            continue

        await db.refresh(db_order)
        logger.info(
            f"Created order: {db_order.id}, merchant={merchant.id}, "
            f"trade_no={request.trade_no}, amount={request.amount}"
        )
        return _to_record(db_order)

    raise ConflictError("trade_no already exists")


async def get_order(db: AsyncSession, order_id: int, payload: Mapping[str, Any]) -> OrderRecord:
    """
    Fetch an order snapshot for its owning merchant.

    Raises:
        NotFoundError: Unknown order or merchant
        AuthError: Signature rejected
    """
    db_order = await _get_order_or_404(db, order_id)
    merchant = await get_merchant(db, db_order.merchant_id)
    _require_signature(payload, merchant)

    return _to_record(db_order)


async def complete_order(db: AsyncSession, order_id: int, payload: Mapping[str, Any]) -> OrderRecord:
    """
    Move a processing order to done.

    Orders in any other status are returned unchanged, so repeating a
    complete is not an error.

    Raises:
        NotFoundError: Unknown order/merchant, or trade_no mismatch
        AuthError: Signature rejected
    """
    db_order = await _get_order_or_404(db, order_id)
    merchant = await get_merchant(db, db_order.merchant_id)
    ensure_trade_no_matches(payload.get("trade_no"), db_order.trade_no)
    _require_signature(payload, merchant)

    target = complete_target_status(db_order.status)
    if target != db_order.status:
        previous = db_order.status
        db_order.status = target
        await db.commit()
        await db.refresh(db_order)
        logger.info(f"Completed order: {db_order.id}, {previous} -> {target}")
    else:
        logger.debug(f"Complete on order {db_order.id} left status {db_order.status}")

    return _to_record(db_order)


async def remove_order(db: AsyncSession, order_id: int, payload: Mapping[str, Any]) -> None:
    """
    Hard-delete a refunded or cancelled order.

    Raises:
        NotFoundError: Unknown order/merchant, or trade_no mismatch
        AuthError: Signature rejected
        PolicyError: Order is not refunded or cancelled
    """
    db_order = await _get_order_or_404(db, order_id)
    merchant = await get_merchant(db, db_order.merchant_id)
    ensure_trade_no_matches(payload.get("trade_no"), db_order.trade_no)
    _require_signature(payload, merchant)
    ensure_deletable(db_order.status)

    await db.delete(db_order)
    await db.commit()

    logger.info(f"Deleted order: {order_id}, trade_no={db_order.trade_no}")

