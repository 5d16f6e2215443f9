"""Order analytics aggregation."""
import logging
from datetime import timedelta
from typing import Any, Dict

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from storefront.errors import InvalidInputError
from storefront.models import Order, utcnow

logger = logging.getLogger(__name__)


def summarize(db: Session, window_days: int = 30) -> Dict[str, Any]:
    """
    Roll up orders created in the last ``window_days`` days.

    An empty window yields zeros rather than an error.
    """
    if window_days is None or window_days < 1:
        raise InvalidInputError("window_days must be at least 1")

    since = utcnow() - timedelta(days=window_days)
    in_window = Order.created_at >= since

    row = db.query(
        func.count(Order.id).label("total_orders"),
        func.coalesce(func.sum(Order.total_amount), 0.0).label("total_revenue"),
        func.coalesce(func.avg(Order.total_amount), 0.0).label("avg_order_value"),
        func.coalesce(
            func.sum(case((Order.order_status == "cancelled", 1), else_=0)), 0
        ).label("cancelled_orders"),
        func.coalesce(
            func.sum(case((Order.order_status == "delivered", 1), else_=0)), 0
        ).label("delivered_orders"),
    ).filter(in_window).one()

    breakdown = db.query(Order.order_status, func.count(Order.id)) \
        .filter(in_window) \
        .group_by(Order.order_status) \
        .all()

    summary = {
        "window_days": window_days,
        "total_orders": int(row.total_orders),
        "total_revenue": float(row.total_revenue),
        "avg_order_value": float(row.avg_order_value),
        "cancelled_orders": int(row.cancelled_orders),
        "delivered_orders": int(row.delivered_orders),
        "status_breakdown": {status: count for status, count in sorted(breakdown)},
    }
    logger.debug("Computed order analytics", extra=summary)
    return summary
