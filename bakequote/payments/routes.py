# bakequote/payments/routes.py

import uuid

from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from bakequote import db
from bakequote.auth import current_baker, now, owned_quote
from bakequote.models import Payment, Quote
from bakequote.payments.reconciliation import (
    DepositConfig,
    record_payment,
    request_payment,
    required_deposit,
)
from bakequote.quotes.utils import payment_to_dict, quote_to_dict

bp = Blueprint('payments', __name__)


def _settings():
    cfg = current_app.config
    return {
        'tolerance': cfg['PAYMENT_TOLERANCE'],
        'platform_fee_rate': cfg['PLATFORM_FEE_RATE'],
    }


@bp.route('/quotes/<int:quote_id>/payments')
def list_payments(quote_id):
    quote = owned_quote(current_baker(), quote_id)
    deposit = required_deposit(quote.total, DepositConfig.from_baker(quote.baker), quote.currency)
    return jsonify(
        payments=[payment_to_dict(p) for p in quote.payments],
        required_deposit=str(deposit),
        amount_paid=str(quote.amount_paid),
        balance_due=str(quote.balance_due),
        payment_status=quote.payment_status,
    )


@bp.route('/quotes/<int:quote_id>/payments', methods=['POST'])
def record_manual_payment(quote_id):
    """Cash, Zelle and other payments the baker collected themselves."""
    quote = owned_quote(current_baker(), quote_id)
    data = request.get_json() or {}
    external_id = data.get('reference') or f"manual_{uuid.uuid4().hex}"
    try:
        record_payment(
            quote,
            external_id=external_id,
            amount=data.get('amount'),
            payment_type=data.get('type', 'full'),
            status='succeeded',
            config=DepositConfig.from_baker(quote.baker),
            as_of=now(),
            **_settings(),
        )
    except (ValueError, ArithmeticError) as e:
        db.session.rollback()
        return jsonify(error='invalid', message=str(e)), 400
    db.session.commit()
    return jsonify(quote=quote_to_dict(quote, with_items=False)), 201


@bp.route('/public/quotes/<int:quote_id>/pay', methods=['POST'])
def public_request_payment(quote_id):
    """Customer asks to pay; the processor collects against the reference."""
    quote = db.session.get(Quote, quote_id)
    if quote is None or quote.is_archived:
        abort(404)
    data = request.get_json(silent=True) or {}
    payment = request_payment(
        quote,
        data.get('type', 'deposit'),
        DepositConfig.from_baker(quote.baker),
        as_of=now(),
        **_settings(),
    )
    db.session.commit()
    return jsonify(payment=payment_to_dict(payment)), 201


@bp.route('/payments/webhook', methods=['POST'])
def payment_webhook():
    """Processor confirmation, keyed by its idempotent payment id.

    Expects ``{"external_id", "status"}`` for a payment we requested, or
    additionally ``quote_id``, ``amount`` and ``type`` for one we have not
    seen.  Replays answer 200 without applying anything twice.
    """
    secret = current_app.config.get('PAYMENT_WEBHOOK_SECRET')
    if secret and request.headers.get('X-Webhook-Secret') != secret:
        abort(403)
    data = request.get_json() or {}
    external_id = data.get('external_id')
    if not external_id:
        return jsonify(error='invalid', message='external_id required'), 400

    for attempt in range(2):
        payment = Payment.query.filter_by(external_id=external_id).first()
        quote_id = payment.quote_id if payment else data.get('quote_id')
        quote = db.session.get(Quote, int(quote_id)) if quote_id else None
        if quote is None:
            abort(404)
        try:
            record_payment(
                quote,
                external_id=external_id,
                amount=data.get('amount'),
                payment_type=data.get('type', 'full'),
                status=data.get('status', 'succeeded'),
                config=DepositConfig.from_baker(quote.baker),
                as_of=now(),
                **_settings(),
            )
            db.session.commit()
            break
        except IntegrityError:
            # another worker inserted this payment id first; replay against it
            db.session.rollback()
            if attempt:
                raise
        except (ValueError, ArithmeticError) as e:
            db.session.rollback()
            return jsonify(error='invalid', message=str(e)), 400
    return jsonify(received=True, payment_status=quote.payment_status)
