# bakequote/quotes/routes.py

from flask import Blueprint, current_app, jsonify, request, abort

from bakequote import db
from bakequote.auth import current_baker, effective_tax_rate, now, owned_quote
from bakequote.catalog.resolver import load_catalog
from bakequote.models import Customer, Lead, Quote
from bakequote.quotes import lifecycle
from bakequote.quotes.assembler import (
    assemble_from_build,
    assemble_from_lead,
    assemble_manual,
    duplicate_quote,
)
from bakequote.pricing.calculator import Build
from bakequote.quotes.utils import parse_date, quote_to_dict

bp = Blueprint('quotes', __name__)


def _retries():
    return current_app.config['QUOTE_NUMBER_RETRIES']


def _customer_for(baker, data):
    """Resolve ``customer_id`` or build a customer from inline details.

    A new customer is left unsaved; it is written with the quote.
    """
    if data.get('customer_id'):
        try:
            customer_id = int(data['customer_id'])
        except (TypeError, ValueError):
            return None
        customer = db.session.get(Customer, customer_id)
        if customer is None or customer.baker_id != baker.id:
            abort(404)
        return customer
    info = data.get('customer') or {}
    if not info.get('name') or not info.get('email'):
        return None
    return Customer(baker_id=baker.id, name=info['name'], email=info['email'],
                    phone=info.get('phone'))


@bp.route('/quotes/')
def list_quotes():
    baker = current_baker()
    q = Quote.query.filter_by(baker_id=baker.id)
    if request.args.get('archived') == '1':
        q = q.filter(Quote.archived_at.isnot(None))
    else:
        q = q.filter(Quote.archived_at.is_(None))
    status = request.args.get('status')
    if status:
        q = q.filter_by(status=status)
    quotes = q.order_by(Quote.number.desc()).all()
    return jsonify(quotes=[quote_to_dict(x, with_items=False) for x in quotes])


@bp.route('/quotes/', methods=['POST'])
def create_quote():
    """Create a draft from manual items, or from a calculator ``build``."""
    baker = current_baker()
    data = request.get_json() or {}
    title = (data.get('title') or '').strip()
    if not title:
        return jsonify(error='invalid', message='title required'), 400
    customer = _customer_for(baker, data)
    if customer is None:
        return jsonify(error='invalid', message='customer required'), 400
    try:
        event_date = parse_date(data.get('event_date'))
    except ValueError:
        return jsonify(error='invalid', message='bad event_date'), 400
    tax_rate = data.get('tax_rate', effective_tax_rate(baker))

    if data.get('build') is not None:
        try:
            build = Build.from_dict(data['build'])
        except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError):
            return jsonify(error='invalid', message='malformed build'), 400
        quote = assemble_from_build(
            baker, customer, build, load_catalog(baker),
            title=title, as_of=now(), tax_rate=tax_rate, event_date=event_date,
            notes=data.get('notes'), retries=_retries(),
        )
    else:
        quote = assemble_manual(
            baker, customer, data.get('items') or [],
            title=title, as_of=now(), tax_rate=tax_rate, event_date=event_date,
            notes=data.get('notes'), retries=_retries(),
        )
    return jsonify(quote=quote_to_dict(quote)), 201


@bp.route('/quotes/from-lead/<int:lead_id>', methods=['POST'])
def quote_from_lead(lead_id):
    baker = current_baker()
    lead = db.session.get(Lead, lead_id)
    if lead is None or lead.baker_id != baker.id:
        abort(404)
    customer = db.session.get(Customer, lead.customer_id) if lead.customer_id else None
    if customer is None:
        customer = Customer(baker_id=baker.id, name=lead.customer_name,
                            email=lead.customer_email, phone=lead.customer_phone)
    data = request.get_json(silent=True) or {}
    quote = assemble_from_lead(lead, baker, customer, load_catalog(baker),
                               as_of=now(), title=data.get('title'),
                               tax_rate=effective_tax_rate(baker), retries=_retries())
    return jsonify(quote=quote_to_dict(quote)), 201


@bp.route('/quotes/<int:quote_id>')
def view_quote(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/quotes/<int:quote_id>', methods=['PATCH'])
def edit_quote(quote_id):
    baker = current_baker()
    quote = owned_quote(baker, quote_id)
    data = request.get_json() or {}
    fields = {k: data[k] for k in lifecycle.LOOSE_FIELDS + lifecycle.DRAFT_FIELDS if k in data}
    try:
        if 'event_date' in fields:
            fields['event_date'] = parse_date(fields['event_date'])
    except ValueError:
        return jsonify(error='invalid', message='bad event_date'), 400
    if 'customer_id' in fields:
        customer = _customer_for(baker, {'customer_id': fields['customer_id']})
        if customer is None:
            return jsonify(error='invalid', message='customer_id required'), 400
        fields['customer_id'] = customer.id

    lifecycle.update_details(quote, fields)
    if 'items' in data:
        lifecycle.replace_items(quote, data['items'] or [])
    quote.updated_at = now()
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/quotes/<int:quote_id>', methods=['DELETE'])
def delete_quote(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    number = quote.display_number
    lifecycle.delete_quote(quote)
    db.session.commit()
    return jsonify(success=True, message=f'Quote {number} deleted')


@bp.route('/quotes/<int:quote_id>/send', methods=['POST'])
def send_quote(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    lifecycle.send_quote(quote, as_of=now())
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/quotes/<int:quote_id>/revert', methods=['POST'])
def revert_quote(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    lifecycle.revert_to_draft(quote)
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/quotes/<int:quote_id>/accept', methods=['POST'])
def accept_quote(quote_id):
    """Baker override, e.g. the customer accepted by phone."""
    quote = owned_quote(current_baker(), quote_id)
    lifecycle.accept_quote(quote, as_of=now())
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/quotes/<int:quote_id>/reject', methods=['POST'])
def reject_quote(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    lifecycle.reject_quote(quote, as_of=now())
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/quotes/<int:quote_id>/archive', methods=['POST'])
def archive_quote(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    lifecycle.archive_quote(quote, as_of=now())
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote, with_items=False))


@bp.route('/quotes/<int:quote_id>/unarchive', methods=['POST'])
def unarchive_quote(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    lifecycle.unarchive_quote(quote)
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote, with_items=False))


@bp.route('/quotes/<int:quote_id>/duplicate', methods=['POST'])
def duplicate(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    copy = duplicate_quote(quote, as_of=now(), retries=_retries())
    return jsonify(quote=quote_to_dict(copy)), 201


# Customer-facing endpoints; the quote id is the share link.

def _public_quote(quote_id):
    quote = db.session.get(Quote, quote_id)
    if quote is None or quote.status == 'draft' or quote.is_archived:
        abort(404)
    return quote


@bp.route('/public/quotes/<int:quote_id>')
def public_quote(quote_id):
    quote = _public_quote(quote_id)
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/public/quotes/<int:quote_id>/accept', methods=['POST'])
def public_accept(quote_id):
    quote = _public_quote(quote_id)
    lifecycle.accept_quote(quote, as_of=now())
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote))


@bp.route('/public/quotes/<int:quote_id>/decline', methods=['POST'])
def public_decline(quote_id):
    quote = _public_quote(quote_id)
    lifecycle.reject_quote(quote, as_of=now())
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote))
