# bakequote/orders/projection.py
"""Calendar view of accepted quotes.

An order is created once per accepted quote and tracks fulfillment only.
Payment state stays on the quote; ``Order.payment_status`` reads through to
it, so an order can be completed while only the deposit is in.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from sqlalchemy import func

from bakequote import db
from bakequote.errors import InvalidTransition
from bakequote.models import Order
from bakequote.money import ZERO

FULFILLMENT_FLOW = {
    'booked': ('in_progress', 'cancelled'),
    'in_progress': ('completed', 'cancelled'),
    'completed': (),
    'cancelled': (),
}
OPEN_STATUSES = ('booked', 'in_progress')


def project_order(quote, *, as_of) -> Order:
    """Create the order for an accepted quote, or return the existing one."""
    existing = Order.query.filter_by(quote_id=quote.id).first()
    if existing:
        return existing
    order = Order(
        baker_id           = quote.baker_id,
        quote_id           = quote.id,
        customer_id        = quote.customer_id,
        title              = quote.title,
        event_date         = quote.event_date,
        amount             = quote.total,
        fulfillment_status = 'booked',
        created_at         = as_of,
    )
    db.session.add(order)
    return order


def set_fulfillment(order: Order, status: str) -> Order:
    if status not in FULFILLMENT_FLOW:
        raise InvalidTransition(order.fulfillment_status, f"move to unknown status '{status}'")
    if status == order.fulfillment_status:
        return order
    if status not in FULFILLMENT_FLOW[order.fulfillment_status]:
        raise InvalidTransition(order.fulfillment_status, f"move order to '{status}'")
    order.fulfillment_status = status
    return order


def orders_for_month(baker_id: int, year: int, month: int) -> list[Order]:
    start = date(year, month, 1)
    end = date(year, month, calendar.monthrange(year, month)[1])
    return (
        Order.query
        .filter(Order.baker_id == baker_id,
                Order.event_date >= start,
                Order.event_date <= end)
        .order_by(Order.event_date, Order.id)
        .all()
    )


def upcoming_orders(baker_id: int, *, as_of: datetime, days: int = 7) -> list[Order]:
    today = as_of.date()
    return (
        Order.query
        .filter(Order.baker_id == baker_id,
                Order.event_date >= today,
                Order.event_date <= today + timedelta(days=days),
                Order.fulfillment_status.in_(OPEN_STATUSES))
        .order_by(Order.event_date, Order.id)
        .all()
    )


def _count_and_revenue(baker_id: int, since: datetime) -> tuple[int, object]:
    count, revenue = (
        db.session.query(func.count(Order.id), func.sum(Order.amount))
        .filter(Order.baker_id == baker_id,
                Order.created_at >= since,
                Order.fulfillment_status != 'cancelled')
        .one()
    )
    return count, revenue if revenue is not None else ZERO


def order_stats(baker_id: int, *, as_of: datetime) -> dict:
    month_start = datetime(as_of.year, as_of.month, 1)
    year_start = datetime(as_of.year, 1, 1)
    monthly_count, monthly_revenue = _count_and_revenue(baker_id, month_start)
    yearly_count, yearly_revenue = _count_and_revenue(baker_id, year_start)
    return {
        'monthly_count': monthly_count,
        'monthly_revenue': monthly_revenue,
        'yearly_count': yearly_count,
        'yearly_revenue': yearly_revenue,
    }
