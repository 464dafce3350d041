# bakequote/events.py
"""Lifecycle events for the notification collaborator.

Events are written to the ``quote_event`` outbox in the same transaction as
the status change, so a rolled back transition never notifies anyone.  The
``flask notify dispatch`` command delivers them.
"""

from __future__ import annotations

import logging

from bakequote import db
from bakequote.models import QuoteEvent

logger = logging.getLogger(__name__)

QUOTE_SENT = 'quote_sent'
QUOTE_ACCEPTED = 'quote_accepted'
QUOTE_DECLINED = 'quote_declined'


def emit(kind: str, quote, as_of) -> QuoteEvent:
    event = QuoteEvent(
        baker_id   = quote.baker_id,
        quote_id   = quote.id,
        kind       = kind,
        created_at = as_of,
        payload    = {
            'quote_id': quote.id,
            'quote_number': quote.display_number,
            'title': quote.title,
            'customer_id': quote.customer_id,
            'status': quote.status,
            'total': str(quote.total),
            'currency': quote.currency,
        },
    )
    db.session.add(event)
    logger.info("event %s for quote %s", kind, quote.display_number)
    return event


def pending_events(limit: int = 100) -> list[QuoteEvent]:
    return (
        QuoteEvent.query
        .filter(QuoteEvent.dispatched_at.is_(None))
        .order_by(QuoteEvent.id)
        .limit(limit)
        .all()
    )
