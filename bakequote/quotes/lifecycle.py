# bakequote/quotes/lifecycle.py
"""Quote status transitions.

    draft --send--> sent --accept--> approved
      ^              |
      +---revert-----+---reject--> rejected

A quote that has taken money cannot go back to draft.  ``approved`` and
``rejected`` are final for the acceptance decision; payment and fulfillment
carry on separately.  Archiving is a flag on top of any status.  Every
function checks first and mutates second, so a refused action leaves the
quote untouched.  Callers own the commit.
"""

from __future__ import annotations

import logging

from bakequote import db
from bakequote import events
from bakequote.errors import EmptyQuote, InvalidTransition
from bakequote.money import to_money
from bakequote.orders.projection import project_order
from bakequote.quotes.assembler import apply_totals, build_items, parse_tax_rate

logger = logging.getLogger(__name__)

# fields a baker may still change after the quote has been sent
LOOSE_FIELDS = ('title', 'notes', 'event_date')
DRAFT_FIELDS = ('customer_id', 'tax_rate')


def _require(quote, allowed: tuple, action: str):
    if quote.status not in allowed:
        raise InvalidTransition(quote.status, action)


def send_quote(quote, *, as_of):
    _require(quote, ('draft',), 'send')
    if not quote.items:
        raise EmptyQuote()
    apply_totals(quote)
    quote.status = 'sent'
    quote.sent_at = as_of
    events.emit(events.QUOTE_SENT, quote, as_of)
    logger.info("quote %s sent, total %s", quote.display_number, quote.total)
    return quote


def revert_to_draft(quote):
    _require(quote, ('sent',), 'revert')
    # re-itemising a paid quote could drop its total below amount_paid
    if to_money(quote.amount_paid) > 0 or any(p.status == 'succeeded' for p in quote.payments):
        raise InvalidTransition(quote.status, 'revert', 'quote has payments')
    quote.status = 'draft'
    quote.sent_at = None
    return quote


def accept_quote(quote, *, as_of):
    if quote.status == 'approved':
        return quote
    _require(quote, ('sent',), 'accept')
    quote.status = 'approved'
    quote.accepted_at = as_of
    project_order(quote, as_of=as_of)
    events.emit(events.QUOTE_ACCEPTED, quote, as_of)
    logger.info("quote %s accepted", quote.display_number)
    return quote


def reject_quote(quote, *, as_of):
    if quote.status == 'rejected':
        return quote
    _require(quote, ('sent',), 'reject')
    quote.status = 'rejected'
    quote.rejected_at = as_of
    events.emit(events.QUOTE_DECLINED, quote, as_of)
    logger.info("quote %s declined", quote.display_number)
    return quote


def replace_items(quote, items: list[dict]):
    _require(quote, ('draft',), 'edit items of')
    rows = build_items(items, quote.currency)
    quote.items = rows
    return apply_totals(quote)


def update_details(quote, data: dict):
    """Apply editable header fields; money-affecting ones only while draft."""
    if any(k in data for k in DRAFT_FIELDS):
        _require(quote, ('draft',), 'edit')
    elif any(k in data for k in LOOSE_FIELDS):
        _require(quote, ('draft', 'sent'), 'edit')
    values = {k: data[k] for k in LOOSE_FIELDS + DRAFT_FIELDS if k in data}
    if 'tax_rate' in values:
        values['tax_rate'] = parse_tax_rate(values['tax_rate'])

    for key, value in values.items():
        setattr(quote, key, value)
    if 'tax_rate' in data:
        apply_totals(quote)
    return quote


def archive_quote(quote, *, as_of):
    if quote.archived_at is None:
        quote.archived_at = as_of
    return quote


def unarchive_quote(quote):
    quote.archived_at = None
    return quote


def delete_quote(quote):
    """Hard delete.  Its number is not reused."""
    if quote.status == 'approved':
        raise InvalidTransition(quote.status, 'delete', 'archive it instead')
    if quote.payments:
        raise InvalidTransition(quote.status, 'delete', 'quote has payments')
    db.session.delete(quote)
