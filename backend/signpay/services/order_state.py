"""
Order State Machine

Authoritative order statuses and the rules deciding which transition a
verified request may perform. Every function here is pure: it looks at an
order snapshot and request fields and either returns a decision or raises
the matching OrderAPIError. Signature checks happen before any of these run.

Transitions:
- submit (new)            -> pending
- submit (pending)        -> pending, subject/amount/items replaced
- complete (processing)   -> done
- complete (other status) -> unchanged
- remove (refunded/cancelled) -> deleted
"""
from enum import Enum
from typing import Any, FrozenSet, Optional
from urllib.parse import urlsplit

from ..exceptions import ConflictError, NotFoundError, PolicyError, ValidationError


class OrderStatus(str, Enum):
    """Order lifecycle statuses. refunded/cancelled are entered outside this service."""
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class SubmitAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"


DELETABLE_STATUSES: FrozenSet[OrderStatus] = frozenset({OrderStatus.REFUNDED, OrderStatus.CANCELLED})

MERCHANT_ALIVE = "alive"


def url_host(url: str) -> Optional[str]:
    """Host part of a URL, lowercased, or None if there is none."""
    try:
        return urlsplit(url).hostname
    except ValueError:
        return None


def check_domain_binding(return_url: str, notify_url: str, domain: str) -> None:
    """
    Ensure both callback URLs point at the merchant's registered domain.

    Raises:
        ValidationError: If either host differs from the domain
    """
    expected = (domain or "").lower()
    if url_host(return_url) != expected or url_host(notify_url) != expected:
        raise ValidationError(
            f'Your URL must belong to domain "{domain}"',
            details={"domain": domain}
        )


def decide_submit(existing_status: Optional[str]) -> SubmitAction:
    """
    Pick the submit branch for a (merchant, trade_no) pair.

    Args:
        existing_status: Status of the stored order, or None if there is none

    Returns:
        CREATE for an unseen pair, UPDATE while the order is pending

    Raises:
        ConflictError: If the existing order has left pending
    """
    if existing_status is None:
        return SubmitAction.CREATE
    if existing_status == OrderStatus.PENDING:
        return SubmitAction.UPDATE
    raise ConflictError(
        "trade_no already exists",
        details={"status": str(existing_status)}
    )


def ensure_trade_no_matches(requested: Any, stored: str) -> None:
    """
    Raises:
        NotFoundError: If the request's trade_no is not a string, is empty or
            names another order
    """
    if not isinstance(requested, str) or requested == "" or requested != stored:
        raise NotFoundError("trade_no not matched")


def complete_target_status(current: str) -> str:
    """
    Status after a complete request.

    Only processing moves (to done). Every other status is returned as-is,
    so repeated completes succeed without changing anything.
    """
    if current == OrderStatus.PROCESSING:
        return OrderStatus.DONE.value
    return current


def ensure_deletable(current: str) -> None:
    """
    Raises:
        PolicyError: If the order is not refunded or cancelled
    """
    if current not in {status.value for status in DELETABLE_STATUSES}:
        raise PolicyError(
            "Cannot delete this order",
            details={"status": current}
        )
