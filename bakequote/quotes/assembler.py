# bakequote/quotes/assembler.py
"""Turn a priced build or hand-written line items into a draft quote.

Item totals are always recomputed here, never taken from the caller, and the
quote's money figures are derived from those items.  Each new quote takes the
next number in its baker's sequence; numbers are never handed out twice even
if a quote is later deleted.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from bakequote import db
from bakequote.errors import InvalidQuoteItem, MoneyInvariantViolation
from bakequote.models import ITEM_CATEGORIES, Baker, Quote, QuoteItem
from bakequote.money import ZERO, quantize, to_money
from bakequote.pricing.calculator import items_from_build
from bakequote.pricing.leads import FastQuoteSelection, decode_lead_payload

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 5


def next_quote_number(baker_id: int) -> int:
    """Claim the baker's next quote number inside the current transaction.

    The increment is a single UPDATE so the row (or, on SQLite, the database)
    stays write-locked until the caller commits or rolls back.
    """
    db.session.execute(
        update(Baker)
        .where(Baker.id == baker_id)
        .values(quote_sequence=Baker.quote_sequence + 1)
        .execution_options(synchronize_session=False)
    )
    return db.session.execute(
        select(Baker.quote_sequence).where(Baker.id == baker_id)
    ).scalar_one()


def _amount(value, what: str):
    try:
        amount = to_money(value)
    except (ArithmeticError, TypeError, ValueError):
        amount = None
    if amount is None or not amount.is_finite():
        raise InvalidQuoteItem(f"{what} must be a number, got {value!r}")
    return amount


def parse_tax_rate(value):
    rate = _amount(value, 'tax rate')
    if not ZERO <= rate <= 1:
        raise InvalidQuoteItem(f"tax rate {rate} must be between 0 and 1")
    return rate


def build_items(items: list[dict], currency: str) -> list[QuoteItem]:
    rows = []
    for pos, data in enumerate(items):
        name = (data.get('name') or '').strip()
        if not name:
            raise InvalidQuoteItem(f"item {pos + 1} needs a name")
        qty = _amount(data.get('quantity', 1), f"item '{name}' quantity")
        if qty <= 0:
            raise InvalidQuoteItem(f"item '{name}' quantity must be positive")
        unit = quantize(_amount(data.get('unit_price', 0), f"item '{name}' unit price"), currency)
        if unit < 0:
            raise InvalidQuoteItem(f"item '{name}' unit price cannot be negative")
        total = quantize(qty * unit, currency)
        if data.get('total_price') is not None and data['total_price'] != str(total):
            logger.info("ignoring client total %s for item '%s', using %s",
                        data['total_price'], name, total)

        category = data.get('category') or 'other'
        if category not in ITEM_CATEGORIES:
            category = 'other'
        rows.append(QuoteItem(
            category    = category,
            name        = name,
            description = data.get('description'),
            quantity    = qty,
            unit_price  = unit,
            total_price = total,
            sort_order  = pos,
        ))
    return rows


def lines_to_items(lines) -> list[dict]:
    return [
        {
            'category': line.category,
            'name': line.name,
            'description': line.description,
            'quantity': line.quantity,
            'unit_price': line.unit_price,
        }
        for line in lines
    ]


def apply_totals(quote: Quote) -> Quote:
    """Derive subtotal, tax and total from the quote's items."""
    subtotal = quantize(quote.items_total, quote.currency)
    tax = quantize(subtotal * to_money(quote.tax_rate), quote.currency)
    quote.subtotal = subtotal
    quote.tax_amount = tax
    quote.total = subtotal + tax
    assert_reconciled(quote)
    return quote


def assert_reconciled(quote: Quote) -> None:
    items_total = quote.items_total
    if items_total != to_money(quote.subtotal):
        raise MoneyInvariantViolation(
            f"quote {quote.id}: items sum to {items_total}, subtotal is {quote.subtotal}"
        )
    if to_money(quote.subtotal) + to_money(quote.tax_amount) != to_money(quote.total):
        raise MoneyInvariantViolation(
            f"quote {quote.id}: {quote.subtotal} + {quote.tax_amount} != {quote.total}"
        )


def _persist_numbered(baker_id: int, make_quote, retries: int) -> Quote:
    """Run ``make_quote(number)`` and commit, retrying on number contention."""
    attempt = 0
    while True:
        attempt += 1
        try:
            quote = make_quote(next_quote_number(baker_id))
            db.session.add(quote)
            db.session.commit()
            return quote
        except (IntegrityError, OperationalError) as exc:
            db.session.rollback()
            if attempt >= retries:
                raise
            logger.warning("quote number contention for baker %s (attempt %s): %s",
                           baker_id, attempt, exc.__class__.__name__)
            time.sleep(0.02 * attempt)


def assemble_manual(baker, customer, items: list[dict], *, title: str, as_of,
                    tax_rate=None, event_date=None, notes=None, lead_id=None,
                    catalog_version=None, retries: int = DEFAULT_RETRIES) -> Quote:
    baker_id = baker.id
    currency = baker.currency
    if tax_rate is None:
        tax_rate = baker.tax_rate if baker.tax_rate is not None else ZERO
    rate = parse_tax_rate(tax_rate)
    # validate before claiming a number
    build_items(items, currency)

    def make_quote(number):
        quote = Quote(
            baker_id        = baker_id,
            customer        = customer,
            lead_id         = lead_id,
            number          = number,
            title           = title,
            event_date      = event_date,
            status          = 'draft',
            currency        = currency,
            tax_rate        = rate,
            notes           = notes,
            catalog_version = catalog_version,
            created_at      = as_of,
            updated_at      = as_of,
        )
        quote.items = build_items(items, currency)
        return apply_totals(quote)

    quote = _persist_numbered(baker_id, make_quote, retries)
    logger.info("assembled draft %s for baker %s (%s items, total %s)",
                quote.display_number, baker_id, len(quote.items), quote.total)
    return quote


def assemble_from_build(baker, customer, build, catalog, *, title: str, as_of,
                        tax_rate=None, event_date=None, notes=None, lead_id=None,
                        retries: int = DEFAULT_RETRIES) -> Quote:
    lines = items_from_build(build, catalog, baker.currency)
    if build.special_requests:
        notes = '\n\n'.join(filter(None, [notes, build.special_requests]))
    return assemble_manual(
        baker, customer, lines_to_items(lines),
        title=title, as_of=as_of, tax_rate=tax_rate, event_date=event_date,
        notes=notes, lead_id=lead_id, catalog_version=catalog.version, retries=retries,
    )


def assemble_from_lead(lead, baker, customer, catalog, *, as_of, title: str | None = None,
                       tax_rate=None, retries: int = DEFAULT_RETRIES) -> Quote:
    payload = decode_lead_payload(lead.payload or {})
    title = title or f"{lead.event_type or 'Custom'} order for {lead.customer_name}"
    lead_id = lead.id
    if isinstance(payload, FastQuoteSelection):
        items = [{
            'category': 'cake',
            'name': payload.featured_item_name or payload.featured_item_id,
            'quantity': 1,
            'unit_price': payload.featured_item_price,
        }]
        quote = assemble_manual(baker, customer, items, title=title, as_of=as_of,
                                tax_rate=tax_rate,
                                event_date=lead.event_date, notes=lead.notes,
                                lead_id=lead_id, retries=retries)
    else:
        quote = assemble_from_build(baker, customer, payload.build, catalog,
                                    title=title, as_of=as_of, tax_rate=tax_rate,
                                    event_date=lead.event_date, notes=lead.notes,
                                    lead_id=lead_id, retries=retries)
    lead.customer_id = customer.id
    lead.status = 'quoted'
    db.session.commit()
    return quote


def duplicate_quote(quote: Quote, *, as_of, retries: int = DEFAULT_RETRIES) -> Quote:
    """Copy ``quote`` into a fresh draft; the source is never modified."""
    items = [
        {
            'category': i.category,
            'name': i.name,
            'description': i.description,
            'quantity': i.quantity,
            'unit_price': i.unit_price,
        }
        for i in quote.items
    ]
    return assemble_manual(
        quote.baker, quote.customer, items,
        title=f"{quote.title} (Copy)", as_of=as_of, tax_rate=quote.tax_rate,
        event_date=quote.event_date, notes=quote.notes,
        catalog_version=quote.catalog_version, retries=retries,
    )
