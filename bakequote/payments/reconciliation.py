# bakequote/payments/reconciliation.py
"""Deposits, payment requests and settlement.

``record_payment`` is the only code that moves ``Quote.amount_paid`` and
``Quote.payment_status``.  It is keyed on the processor's payment id, so a
webhook delivered twice (or by two workers at once) is applied once: the
payment row flips to ``succeeded`` with a compare-and-set UPDATE and only the
caller that wins it adds the amount.

Nothing here reads the clock or the app config; ``as_of``, the deposit
config, tolerance and fee rate are all passed in.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import update

from bakequote import db
from bakequote.errors import (
    AlreadyPaid,
    DuplicatePaymentNotification,
    InvalidTransition,
    OverpaymentAttempt,
)
from bakequote.models import Payment, Quote
from bakequote.money import ZERO, minor_units, percent_of, quantize, to_money

logger = logging.getLogger(__name__)

DEPOSIT_TYPES = ('full', 'percentage', 'fixed')
PAYMENT_TYPES = ('deposit', 'full', 'remaining')
PAYABLE_STATUSES = ('sent', 'approved')
DEFAULT_TOLERANCE = Decimal('0.01')


@dataclass(frozen=True)
class DepositConfig:
    deposit_type: str = 'full'
    percentage: Decimal = Decimal(50)
    fixed_amount: Decimal = ZERO

    @classmethod
    def from_baker(cls, baker) -> 'DepositConfig':
        return cls(
            deposit_type=baker.deposit_type or 'full',
            percentage=to_money(baker.deposit_percentage),
            fixed_amount=to_money(baker.deposit_fixed_amount),
        )


def required_deposit(total, config: DepositConfig, currency: str = 'USD') -> Decimal:
    """Deposit owed for a quote total; zero means pay in full."""
    total = to_money(total)
    if config.deposit_type == 'percentage':
        return percent_of(total, config.percentage, currency)
    if config.deposit_type == 'fixed':
        return min(quantize(config.fixed_amount, currency), total)
    return ZERO


def payment_status_for(amount_paid, total, deposit, tolerance=DEFAULT_TOLERANCE) -> str:
    amount_paid, total, deposit = to_money(amount_paid), to_money(total), to_money(deposit)
    if amount_paid >= total - to_money(tolerance):
        return 'paid'
    if deposit > 0 and amount_paid >= deposit:
        return 'deposit_paid'
    return 'unpaid'


def balance_due(quote) -> Decimal:
    return max(to_money(quote.total) - to_money(quote.amount_paid), ZERO)


def _fee(amount, rate, currency) -> Decimal:
    return quantize(to_money(amount) * to_money(rate), currency)


def _check_payable(quote, tolerance):
    if quote.status not in PAYABLE_STATUSES:
        raise InvalidTransition(quote.status, 'take payment for')
    if quote.payment_status == 'paid' or balance_due(quote) <= to_money(tolerance):
        raise AlreadyPaid(f"quote {quote.display_number} is already paid in full")


def request_payment(quote, payment_type: str, config: DepositConfig, *, as_of,
                    tolerance=DEFAULT_TOLERANCE, platform_fee_rate=ZERO) -> Payment:
    """Open a pending payment for the processor to collect.

    The amount is decided here, never by the client; ``remaining`` is capped
    at the outstanding balance.
    """
    if payment_type not in PAYMENT_TYPES:
        raise InvalidTransition(quote.status, f"request a '{payment_type}' payment for")
    _check_payable(quote, tolerance)

    outstanding = balance_due(quote)
    if payment_type == 'deposit':
        deposit = required_deposit(quote.total, config, quote.currency)
        if deposit <= 0:
            raise InvalidTransition(quote.status, 'request a deposit for',
                                    'baker takes full payment only')
        amount = deposit - to_money(quote.amount_paid)
        if amount <= 0:
            raise AlreadyPaid(f"deposit for {quote.display_number} is already paid")
    elif payment_type == 'full':
        if to_money(quote.amount_paid) > 0:
            raise InvalidTransition(quote.status, 'request a full payment for',
                                    'part is paid, request the remaining balance')
        amount = outstanding
    else:
        amount = outstanding

    payment = Payment(
        quote_id     = quote.id,
        external_id  = f"pay_{uuid.uuid4().hex}",
        amount       = amount,
        type         = payment_type,
        status       = 'pending',
        platform_fee = _fee(amount, platform_fee_rate, quote.currency),
        created_at   = as_of,
    )
    db.session.add(payment)
    db.session.flush()
    logger.info("payment %s requested: %s %s for %s",
                payment.external_id, payment_type, amount, quote.display_number)
    return payment


def _settle(quote, payment, config, as_of, tolerance):
    """Apply a succeeded payment exactly once, never past the quote total.

    The payment row is claimed first so duplicates of one id serialise on
    it; the increment then only applies while ``amount_paid + amount``
    still fits under ``total``, which holds against concurrent settlement
    of other ids on the same quote.
    """
    amount = to_money(payment.amount)
    if quote.payment_status == 'paid' or balance_due(quote) <= to_money(tolerance):
        raise AlreadyPaid(f"quote {quote.display_number} is already paid in full")
    if amount > balance_due(quote):
        raise OverpaymentAttempt(amount, balance_due(quote))

    prior_status = payment.status
    won = db.session.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status != 'succeeded')
        .values(status='succeeded', settled_at=as_of)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not won:
        raise DuplicatePaymentNotification(payment.external_id)

    # half a minor unit absorbs REAL storage of Numeric on SQLite
    slack = Decimal(1).scaleb(-minor_units(quote.currency)) / 2
    applied = db.session.execute(
        update(Quote)
        .where(Quote.id == quote.id,
               Quote.amount_paid + amount <= Quote.total + slack)
        .values(amount_paid=Quote.amount_paid + amount)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not applied:
        db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .values(status=prior_status, settled_at=None)
            .execution_options(synchronize_session=False)
        )
        db.session.refresh(payment, ['status', 'settled_at'])
        db.session.refresh(quote, ['amount_paid', 'total'])
        outstanding = balance_due(quote)
        logger.warning("payment %s of %s refused, %s outstanding on %s",
                       payment.external_id, amount, outstanding, quote.display_number)
        if outstanding <= to_money(tolerance):
            raise AlreadyPaid(f"quote {quote.display_number} is already paid in full")
        raise OverpaymentAttempt(amount, outstanding)

    db.session.refresh(quote, ['amount_paid'])
    db.session.refresh(payment, ['status', 'settled_at'])

    deposit = required_deposit(quote.total, config, quote.currency)
    status = payment_status_for(quote.amount_paid, quote.total, deposit, tolerance)
    if status != quote.payment_status:
        logger.info("quote %s payment status %s -> %s",
                    quote.display_number, quote.payment_status, status)
    if status == 'paid' and quote.paid_at is None:
        quote.paid_at = as_of
    # deposit_paid never drops back to unpaid
    if status != 'unpaid' or quote.payment_status == 'unpaid':
        quote.payment_status = status


def record_payment(quote, *, external_id: str, amount=None, payment_type: str = 'full',
                   status: str = 'succeeded', config: DepositConfig, as_of,
                   tolerance=DEFAULT_TOLERANCE, platform_fee_rate=ZERO):
    """Reconcile one processor notification (or manual payment) against ``quote``.

    A notification for an unknown id records a new payment.  Failed and
    pending notifications never touch the quote's totals.  Replays of an
    already settled id are logged and ignored.
    """
    if status not in ('pending', 'succeeded', 'failed'):
        raise ValueError(f"unknown payment status '{status}'")

    payment = Payment.query.filter_by(external_id=external_id).first()
    if payment is not None and payment.quote_id != quote.id:
        raise InvalidTransition(quote.status, 'record payment',
                                f"payment {external_id} belongs to another quote")
    if payment is not None and payment.status == 'succeeded':
        logger.info("%s", DuplicatePaymentNotification(
            f"replayed notification for {external_id} ignored"))
        return quote

    if status == 'succeeded':
        _check_payable(quote, tolerance)

    if payment is None:
        if payment_type not in PAYMENT_TYPES:
            raise InvalidTransition(quote.status, f"record a '{payment_type}' payment for")
        amount = quantize(amount, quote.currency)
        if amount <= 0:
            raise ValueError('payment amount must be positive')
        if status == 'succeeded' and amount > balance_due(quote):
            raise OverpaymentAttempt(amount, balance_due(quote))
        payment = Payment(
            quote_id     = quote.id,
            external_id  = external_id,
            amount       = amount,
            type         = payment_type,
            status       = 'pending',
            platform_fee = _fee(amount, platform_fee_rate, quote.currency),
            created_at   = as_of,
        )
        db.session.add(payment)
        db.session.flush()

    if status != 'succeeded':
        if payment.status != status:
            logger.info("payment %s marked %s", external_id, status)
            payment.status = status
        return quote

    try:
        _settle(quote, payment, config, as_of, tolerance)
    except DuplicatePaymentNotification as dup:
        logger.info("concurrent settlement of %s ignored", dup)
    return quote
