"""
SignPay Exception Hierarchy

Every error carries the status code that ends up both in the HTTP response
and in the `status` field of the response envelope.
"""
from typing import Optional, Dict, Any


SIGNATURE_REJECTED_MESSAGE = "Signature Invalid or timestamp expired"


class OrderAPIError(Exception):
    """
    Base exception for all order API errors.

    All errors are terminal for the request: the envelope's `data` is null
    and `message` is a human-readable description.
    """

    status: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_envelope(self) -> Dict[str, Any]:
        """Convert exception to the API response envelope."""
        return {
            "data": None,
            "message": self.message,
            "status": self.status
        }


class ValidationError(OrderAPIError):
    """
    Request payload is malformed.

    Examples:
    - Missing or over-long required submit field
    - returnUrl / notifyUrl host not matching the merchant domain
    """

    status = 400


class AuthError(OrderAPIError):
    """
    Request signature rejected.

    The message is fixed: callers never learn whether the signature was
    invalid or the timestamp expired.
    """

    status = 403

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__(SIGNATURE_REJECTED_MESSAGE, details)


class NotFoundError(OrderAPIError):
    """
    Referenced record does not exist.

    Examples:
    - Unknown or non-alive merchant
    - Unknown order id
    - trade_no does not match the addressed order
    """

    status = 404


class PolicyError(OrderAPIError):
    """
    Operation not permitted in the order's current status.

    Example:
    - Delete attempted on an order that is not refunded or cancelled
    """

    status = 405


class ConflictError(OrderAPIError):
    """
    trade_no already taken by an order that is no longer pending.
    """

    status = 409
