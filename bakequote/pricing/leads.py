# bakequote/pricing/leads.py
"""Public calculator intake.

A lead carries either a full calculator build or a "fast quote" pick of one
featured item.  The two shapes are told apart once, here, and stored with an
explicit ``kind`` so nothing downstream has to guess.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Union

from bakequote import db
from bakequote.models import Lead
from bakequote.money import quantize, to_money
from bakequote.pricing.calculator import Build, calculate


@dataclass(frozen=True)
class FastQuoteSelection:
    featured_item_id: str
    featured_item_name: str
    featured_item_price: Decimal

    kind = 'fast_quote'

    def to_dict(self) -> dict:
        return {
            'kind': self.kind,
            'featured_item_id': self.featured_item_id,
            'featured_item_name': self.featured_item_name,
            'featured_item_price': str(self.featured_item_price),
        }


@dataclass(frozen=True)
class FullCalculatorBuild:
    build: Build

    kind = 'calculator'

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'build': self.build.to_dict()}


LeadPayload = Union[FastQuoteSelection, FullCalculatorBuild]


def decode_lead_payload(raw: dict) -> LeadPayload:
    """Decode a stored or submitted payload into its tagged form.

    Accepts the explicit ``kind`` tag, plus the calculator's older untagged
    shapes (``fastQuote: true`` or a bare build) at ingestion.
    """
    if not isinstance(raw, dict):
        raise ValueError('lead payload must be an object')

    kind = raw.get('kind')
    if kind is None:
        kind = 'fast_quote' if raw.get('fastQuote') is True else 'calculator'

    if kind == 'fast_quote':
        return FastQuoteSelection(
            featured_item_id=str(raw.get('featured_item_id') or raw.get('featuredItemId') or ''),
            featured_item_name=str(raw.get('featured_item_name') or raw.get('featuredItemName') or ''),
            featured_item_price=to_money(
                raw.get('featured_item_price', raw.get('featuredItemPrice'))
            ),
        )
    if kind == 'calculator':
        return FullCalculatorBuild(build=Build.from_dict(raw.get('build', raw)))
    raise ValueError(f"unknown lead payload kind '{kind}'")


def estimate_total(payload: LeadPayload, catalog, tax_rate, currency: str) -> Decimal:
    if isinstance(payload, FastQuoteSelection):
        return quantize(payload.featured_item_price, currency)
    return calculate(payload.build, catalog, tax_rate, currency).total


def create_lead(baker, data: dict, catalog, tax_rate) -> Lead:
    payload = decode_lead_payload(data.get('payload') or {})
    event_date = data.get('event_date')
    lead = Lead(
        baker_id        = baker.id,
        customer_name   = data['customer_name'],
        customer_email  = data['customer_email'],
        customer_phone  = data.get('customer_phone'),
        event_date      = date.fromisoformat(event_date) if event_date else None,
        event_type      = data.get('event_type'),
        guest_count     = data.get('guest_count'),
        payload         = payload.to_dict(),
        estimated_total = estimate_total(payload, catalog, tax_rate, baker.currency),
        notes           = data.get('notes'),
    )
    db.session.add(lead)
    db.session.flush()
    return lead
