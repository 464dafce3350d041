# bakequote/pricing/calculator.py
"""Price a customer's build against a catalog snapshot.

``calculate`` is pure: no database, no clock, no config lookups.  Tax rate and
currency are passed in by the caller.  Selections missing from the catalog
price at zero and come back on ``PriceBreakdown.unresolved`` so the caller can
surface them; they never raise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from bakequote.catalog.resolver import PriceCatalog
from bakequote.errors import CatalogMiscalculation
from bakequote.money import ZERO, quantize, to_money

logger = logging.getLogger(__name__)

# quantity value the calculator UI uses for "half dozen"
HALF_DOZEN = Decimal('0.5')


@dataclass(frozen=True)
class Tier:
    size: str
    shape: str = 'round'
    flavor: str = 'vanilla'
    frosting: str = 'buttercream'


@dataclass(frozen=True)
class AddonSelection:
    id: str
    quantity: Decimal | None = None
    attendees: int | None = None


@dataclass(frozen=True)
class TreatSelection:
    id: str
    quantity: Decimal = Decimal(1)


@dataclass(frozen=True)
class Build:
    category: str = 'cake'
    tiers: tuple = ()
    decorations: tuple = ()
    addons: tuple = ()
    treats: tuple = ()
    delivery_option: str = 'pickup'
    delivery_address: str | None = None
    special_requests: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> 'Build':
        """Decode the calculator's JSON shape (camelCase or snake_case)."""
        def pick(*keys, default=None):
            for k in keys:
                if k in data and data[k] is not None:
                    return data[k]
            return default

        tiers = tuple(
            Tier(
                size=str(t.get('size', '')),
                shape=str(t.get('shape') or ''),
                flavor=str(t.get('flavor') or ''),
                frosting=str(t.get('frosting') or ''),
            )
            for t in pick('tiers', default=[])
        )
        addons = tuple(
            AddonSelection(
                id=str(a['id']),
                quantity=to_money(a['quantity']) if a.get('quantity') is not None else None,
                attendees=int(a['attendees']) if a.get('attendees') else None,
            )
            for a in pick('addons', default=[])
        )
        treats = tuple(
            TreatSelection(id=str(t['id']), quantity=to_money(t.get('quantity', 1)))
            for t in pick('treats', default=[])
        )
        # decorations are a set; keep first-seen order for stable line items
        decorations = tuple(dict.fromkeys(str(d) for d in pick('decorations', default=[])))
        return cls(
            category=pick('category', default='cake'),
            tiers=tiers,
            decorations=decorations,
            addons=addons,
            treats=treats,
            delivery_option=pick('delivery_option', 'deliveryOption', default='pickup'),
            delivery_address=pick('delivery_address', 'deliveryAddress'),
            special_requests=pick('special_requests', 'specialRequests'),
        )

    def to_dict(self) -> dict:
        return {
            'category': self.category,
            'tiers': [
                {'size': t.size, 'shape': t.shape, 'flavor': t.flavor, 'frosting': t.frosting}
                for t in self.tiers
            ],
            'decorations': list(self.decorations),
            'addons': [
                {
                    'id': a.id,
                    'quantity': str(a.quantity) if a.quantity is not None else None,
                    'attendees': a.attendees,
                }
                for a in self.addons
            ],
            'treats': [{'id': t.id, 'quantity': str(t.quantity)} for t in self.treats],
            'delivery_option': self.delivery_option,
            'delivery_address': self.delivery_address,
            'special_requests': self.special_requests,
        }


@dataclass(frozen=True)
class PriceBreakdown:
    tiers_total: Decimal
    decorations_total: Decimal
    addons_total: Decimal
    treats_total: Decimal
    delivery_total: Decimal
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    unresolved: tuple = field(default=())

    def to_dict(self) -> dict:
        return {
            'tiers_total': str(self.tiers_total),
            'decorations_total': str(self.decorations_total),
            'addons_total': str(self.addons_total),
            'treats_total': str(self.treats_total),
            'delivery_total': str(self.delivery_total),
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'total': str(self.total),
            'unresolved': [
                {'category': u.category, 'id': u.item_id} for u in self.unresolved
            ],
        }


@dataclass(frozen=True)
class Line:
    """One priced selection, the unit quote items are synthesised from."""
    category: str
    name: str
    description: str | None
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal


class _Pricer:
    """Resolves ids against the catalog, remembering what it could not find."""

    def __init__(self, catalog: PriceCatalog, currency: str):
        self.catalog = catalog
        self.currency = currency
        self.unresolved: list[CatalogMiscalculation] = []

    def price(self, category: str, item_id: str | None) -> Decimal:
        item = self.catalog.lookup(category, item_id)
        if item is None:
            if item_id:
                miss = CatalogMiscalculation(category, item_id)
                if miss not in self.unresolved:
                    self.unresolved.append(miss)
            return ZERO
        return item.price

    def tier_line(self, index: int, tier: Tier, tier_count: int) -> Line:
        unit = (
            self.price('sizes', tier.size)
            + self.price('shapes', tier.shape)
            + self.price('flavors', tier.flavor)
            + self.price('frostings', tier.frosting)
        )
        unit = quantize(unit, self.currency)
        name = self.catalog.label('sizes', tier.size)
        if tier_count > 1:
            name = f"Tier {index + 1}: {name}"
        desc = ', '.join(
            self.catalog.label(cat, item_id)
            for cat, item_id in (
                ('shapes', tier.shape),
                ('flavors', tier.flavor),
                ('frostings', tier.frosting),
            )
            if item_id
        ) or None
        return Line('cake', name, desc, Decimal(1), unit, unit)

    def decoration_line(self, deco_id: str) -> Line:
        unit = quantize(self.price('decorations', deco_id), self.currency)
        return Line('decoration', self.catalog.label('decorations', deco_id), None,
                    Decimal(1), unit, unit)

    def addon_line(self, addon: AddonSelection) -> Line:
        item = self.catalog.lookup('addons', addon.id)
        unit = self.price('addons', addon.id)
        if addon.attendees:
            qty = Decimal(addon.attendees)
            desc = f"{addon.attendees} guests"
        elif item is not None and item.pricing_type == 'per-attendee':
            qty = Decimal(item.min_attendees or 0)
            desc = f"{qty} guests (minimum)"
        else:
            qty = addon.quantity if addon.quantity else Decimal(1)
            desc = 'Half dozen' if qty == HALF_DOZEN else None
        total = quantize(unit * qty, self.currency)
        return Line('addon', self.catalog.label('addons', addon.id), desc,
                    qty, quantize(unit, self.currency), total)

    def treat_line(self, treat: TreatSelection) -> Line:
        item = self.catalog.lookup('treats', treat.id)
        unit = self.price('treats', treat.id)
        if item is not None and not item.enabled:
            unit = ZERO
        total = quantize(unit * treat.quantity, self.currency)
        return Line('other', self.catalog.label('treats', treat.id), None,
                    treat.quantity, quantize(unit, self.currency), total)

    def delivery_line(self, option: str | None) -> Line:
        unit = ZERO if option in (None, '', 'pickup') else self.price('delivery_options', option)
        unit = quantize(unit, self.currency)
        return Line('delivery', self.catalog.label('delivery_options', option or 'pickup'),
                    None, Decimal(1), unit, unit)


def _lines(build: Build, pricer: _Pricer) -> dict[str, list[Line]]:
    is_cake = build.category == 'cake'
    is_treat = build.category == 'treat'
    return {
        'tiers': [pricer.tier_line(i, t, len(build.tiers)) for i, t in enumerate(build.tiers)]
        if is_cake else [],
        'decorations': [pricer.decoration_line(d) for d in build.decorations] if is_cake else [],
        'addons': [pricer.addon_line(a) for a in build.addons] if is_cake else [],
        'treats': [pricer.treat_line(t) for t in build.treats] if is_treat else [],
        'delivery': [pricer.delivery_line(build.delivery_option)],
    }


def _sum(lines) -> Decimal:
    return sum((line.total_price for line in lines), ZERO)


def calculate(build: Build, catalog: PriceCatalog, tax_rate, currency: str = 'USD') -> PriceBreakdown:
    pricer = _Pricer(catalog, currency)
    groups = _lines(build, pricer)

    tiers_total = _sum(groups['tiers'])
    decorations_total = _sum(groups['decorations'])
    addons_total = _sum(groups['addons'])
    treats_total = _sum(groups['treats'])
    delivery_total = _sum(groups['delivery'])
    subtotal = tiers_total + decorations_total + addons_total + treats_total + delivery_total
    tax = quantize(subtotal * to_money(tax_rate), currency)

    for miss in pricer.unresolved:
        logger.warning("catalog v%s: %s", catalog.version, miss)

    return PriceBreakdown(
        tiers_total=tiers_total,
        decorations_total=decorations_total,
        addons_total=addons_total,
        treats_total=treats_total,
        delivery_total=delivery_total,
        subtotal=subtotal,
        tax=tax,
        total=subtotal + tax,
        unresolved=tuple(pricer.unresolved),
    )


def items_from_build(build: Build, catalog: PriceCatalog, currency: str = 'USD') -> list[Line]:
    """Line items for a build; their totals sum to ``calculate(...).subtotal``.

    Zero-priced delivery (pickup) is left out so quotes don't carry a $0 row.
    """
    groups = _lines(build, _Pricer(catalog, currency))
    lines = groups['tiers'] + groups['decorations'] + groups['addons'] + groups['treats']
    lines += [d for d in groups['delivery'] if d.total_price != ZERO]
    return lines
