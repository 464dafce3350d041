# bakequote/orders/routes.py

from flask import Blueprint, abort, jsonify, request

from bakequote import db
from bakequote.auth import current_baker, now
from bakequote.models import Order
from bakequote.money import money_str
from bakequote.orders.projection import (
    order_stats,
    orders_for_month,
    set_fulfillment,
    upcoming_orders,
)
from bakequote.quotes.utils import order_to_dict

bp = Blueprint('orders', __name__)


@bp.route('/')
def calendar():
    baker = current_baker()
    today = now()
    try:
        year = int(request.args.get('year', today.year))
        month = int(request.args.get('month', today.month))
        orders = orders_for_month(baker.id, year, month)
    except ValueError:
        return jsonify(error='invalid', message='bad year or month'), 400
    return jsonify(orders=[order_to_dict(o) for o in orders])


@bp.route('/upcoming')
def upcoming():
    baker = current_baker()
    days = request.args.get('days', 7, type=int)
    orders = upcoming_orders(baker.id, as_of=now(), days=days)
    return jsonify(orders=[order_to_dict(o) for o in orders])


@bp.route('/stats')
def stats():
    baker = current_baker()
    s = order_stats(baker.id, as_of=now())
    return jsonify(
        monthly_count=s['monthly_count'],
        monthly_revenue=money_str(s['monthly_revenue']),
        yearly_count=s['yearly_count'],
        yearly_revenue=money_str(s['yearly_revenue']),
    )


@bp.route('/<int:order_id>/fulfillment', methods=['POST'])
def update_fulfillment(order_id):
    baker = current_baker()
    order = db.session.get(Order, order_id)
    if order is None or order.baker_id != baker.id:
        abort(404)
    data = request.get_json() or {}
    set_fulfillment(order, data.get('status', ''))
    db.session.commit()
    return jsonify(order=order_to_dict(order))
