# bakequote/quotes/utils.py

"""JSON shapes for quotes, items, payments and orders."""

from datetime import date

from bakequote.money import money_str


def _iso(value):
    return value.isoformat() if value else None


def parse_date(value):
    if not value:
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def item_to_dict(it) -> dict:
    return {
        'id'          : it.id,
        'category'    : it.category,
        'name'        : it.name,
        'description' : it.description or '',
        'quantity'    : money_str(it.quantity),
        'unit_price'  : money_str(it.unit_price),
        'total_price' : money_str(it.total_price),
    }


def payment_to_dict(p) -> dict:
    return {
        'id'           : p.id,
        'external_id'  : p.external_id,
        'amount'       : money_str(p.amount),
        'type'         : p.type,
        'status'       : p.status,
        'platform_fee' : money_str(p.platform_fee),
        'created_at'   : _iso(p.created_at),
        'settled_at'   : _iso(p.settled_at),
    }


def quote_to_dict(q, with_items: bool = True) -> dict:
    out = {
        'id'             : q.id,
        'number'         : q.display_number,
        'title'          : q.title,
        'customer_id'    : q.customer_id,
        'customer_name'  : q.customer.name if q.customer else None,
        'lead_id'        : q.lead_id,
        'event_date'     : _iso(q.event_date),
        'status'         : q.status,
        'currency'       : q.currency,
        'tax_rate'       : money_str(q.tax_rate),
        'subtotal'       : money_str(q.subtotal),
        'tax_amount'     : money_str(q.tax_amount),
        'total'          : money_str(q.total),
        'payment_status' : q.payment_status,
        'amount_paid'    : money_str(q.amount_paid),
        'balance_due'    : money_str(q.balance_due),
        'notes'          : q.notes,
        'archived'       : q.is_archived,
        'created_at'     : _iso(q.created_at),
        'sent_at'        : _iso(q.sent_at),
        'accepted_at'    : _iso(q.accepted_at),
        'rejected_at'    : _iso(q.rejected_at),
        'paid_at'        : _iso(q.paid_at),
    }
    if with_items:
        out['items'] = [item_to_dict(i) for i in q.items]
    return out


def order_to_dict(o) -> dict:
    return {
        'id'                 : o.id,
        'quote_id'           : o.quote_id,
        'quote_number'       : o.quote.display_number,
        'customer_name'      : o.customer.name if o.customer else None,
        'title'              : o.title,
        'event_date'         : _iso(o.event_date),
        'amount'             : money_str(o.amount),
        'fulfillment_status' : o.fulfillment_status,
        'payment_status'     : o.payment_status,
    }
