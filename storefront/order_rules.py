"""Order status and payment status state machines."""
from typing import Optional

from storefront.errors import InvalidStatusError, InvalidTransitionError
from storefront.models import ORDER_STATUSES, PAYMENT_STATUSES, Order, utcnow

CANCELLABLE_STATUSES = ("processing", "confirmed")


def validate_order_status(status: str) -> str:
    if status not in ORDER_STATUSES:
        raise InvalidStatusError("order status", status, ORDER_STATUSES)
    return status


def validate_payment_status(status: str) -> str:
    if status not in PAYMENT_STATUSES:
        raise InvalidStatusError("payment status", status, PAYMENT_STATUSES)
    return status


def can_be_cancelled(order: Order) -> bool:
    return order.order_status in CANCELLABLE_STATUSES


def apply_order_status(order: Order, status: str) -> None:
    """
    Move an order to ``status``.

    Reaching "delivered" marks the order delivered; ``delivered_at`` is
    only stamped the first time.
    """
    validate_order_status(status)
    order.order_status = status
    if status == "delivered":
        order.is_delivered = True
        if order.delivered_at is None:
            order.delivered_at = utcnow()


def cancel(order: Order, reason: Optional[str]) -> None:
    """Cancel an order that has not left the warehouse yet."""
    if not can_be_cancelled(order):
        raise InvalidTransitionError(order.order_status, "cancelled")
    order.order_status = "cancelled"
    order.cancel_reason = reason


def apply_payment_status(order: Order, status: str) -> None:
    """
    Record a payment status.

    Any enumerated value may be set; "paid" stamps ``paid_at`` once.
    """
    validate_payment_status(status)
    order.payment_status = status
    if status == "paid" and order.paid_at is None:
        order.paid_at = utcnow()
