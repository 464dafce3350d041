# bakequote/catalog/resolver.py
"""Per-baker price catalog.

Every baker prices against the built-in ``DEFAULT_CATALOG`` overlaid with
their own ``CatalogEntry`` rows.  The resolver hands the calculator an
immutable ``PriceCatalog`` snapshot so a price change mid-request can never
split one calculation across two price lists.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Mapping

from bakequote import db
from bakequote.models import CatalogEntry
from bakequote.money import to_money

CATEGORIES = (
    'sizes',
    'shapes',
    'flavors',
    'frostings',
    'decorations',
    'addons',
    'treats',
    'delivery_options',
)


@dataclass(frozen=True)
class CatalogItem:
    id: str
    label: str
    price: Decimal
    pricing_type: str = 'flat'
    min_attendees: int | None = None
    enabled: bool = True


def _items(category_rows) -> dict:
    return {
        row[0]: CatalogItem(
            id=row[0],
            label=row[1],
            price=Decimal(row[2]),
            pricing_type=row[3] if len(row) > 3 else 'flat',
            min_attendees=row[4] if len(row) > 4 else None,
        )
        for row in category_rows
    }


# (id, label, price[, pricing_type, min_attendees])
DEFAULT_CATALOG = {
    'sizes': _items([
        ('6-round', '6" Round', '45'),
        ('8-round', '8" Round', '65'),
        ('10-round', '10" Round', '95'),
        ('12-round', '12" Round', '125'),
        ('quarter-sheet', 'Quarter Sheet', '55'),
        ('half-sheet', 'Half Sheet', '85'),
        ('full-sheet', 'Full Sheet', '145'),
    ]),
    'shapes': _items([
        ('round', 'Round', '0'),
        ('square', 'Square', '10'),
        ('heart', 'Heart', '15'),
        ('custom', 'Custom', '25'),
    ]),
    'flavors': _items([
        ('vanilla', 'Vanilla', '0'),
        ('chocolate', 'Chocolate', '0'),
        ('red-velvet', 'Red Velvet', '10'),
        ('lemon', 'Lemon', '5'),
        ('marble', 'Marble', '5'),
        ('carrot', 'Carrot', '10'),
        ('funfetti', 'Funfetti', '5'),
    ]),
    'frostings': _items([
        ('buttercream', 'Buttercream', '0'),
        ('cream-cheese', 'Cream Cheese', '10'),
        ('fondant', 'Fondant', '25'),
        ('ganache', 'Ganache', '15'),
        ('whipped-cream', 'Whipped Cream', '5'),
    ]),
    'decorations': _items([
        ('fresh-flowers', 'Fresh Flowers', '35'),
        ('edible-flowers', 'Edible Flowers', '25'),
        ('custom-topper', 'Custom Cake Topper', '20'),
        ('edible-image', 'Edible Image', '15'),
        ('gold-leaf', 'Gold/Silver Leaf', '30'),
        ('sprinkles', 'Sprinkles', '5'),
        ('fruit-topping', 'Fruit Topping', '20'),
        ('chocolate-drip', 'Chocolate Drip', '15'),
        ('macarons', 'Macarons (6)', '18'),
        ('meringue-kisses', 'Meringue Kisses', '12'),
    ]),
    # flat add-ons are priced per dozen
    'addons': _items([
        ('cupcakes', 'Matching Cupcakes (dozen)', '36'),
        ('cookies', 'Decorated Cookies (dozen)', '42'),
        ('cake-pops', 'Cake Pops (dozen)', '30'),
        ('dessert-table', 'Dessert Table Service', '6', 'per-attendee', 25),
        ('cake-cutting', 'Cake Cutting Service', '1.50', 'per-attendee', 50),
    ]),
    'treats': _items([
        ('cupcake', 'Cupcake', '3.50'),
        ('cookie', 'Decorated Cookie', '4'),
        ('cake-pop', 'Cake Pop', '2.75'),
        ('macaron', 'Macaron', '2.50'),
        ('brownie', 'Brownie', '3'),
        ('cakesicle', 'Cakesicle', '5'),
    ]),
    'delivery_options': _items([
        ('pickup', 'Pickup', '0'),
        ('local', 'Local Delivery (within 15 miles)', '25'),
        ('extended', 'Extended Delivery (15-30 miles)', '45'),
    ]),
}


@dataclass(frozen=True)
class PriceCatalog:
    """Read-only snapshot of one baker's effective price list."""
    categories: Mapping[str, Mapping[str, CatalogItem]]
    version: int = 0

    def lookup(self, category: str, item_id: str | None) -> CatalogItem | None:
        if not item_id:
            return None
        return self.categories.get(category, {}).get(item_id)

    def price(self, category: str, item_id: str | None) -> Decimal | None:
        item = self.lookup(category, item_id)
        return item.price if item else None

    def label(self, category: str, item_id: str) -> str:
        item = self.lookup(category, item_id)
        return item.label if item else item_id


def build_catalog(overrides: Iterable = (), version: int = 0) -> PriceCatalog:
    """Overlay ``overrides`` (CatalogEntry-like rows) on the defaults."""
    merged = {cat: dict(items) for cat, items in DEFAULT_CATALOG.items()}
    for row in overrides:
        if row.category not in merged:
            continue
        merged[row.category][row.item_id] = CatalogItem(
            id=row.item_id,
            label=row.label,
            price=to_money(row.price),
            pricing_type=row.pricing_type or 'flat',
            min_attendees=row.min_attendees,
            enabled=row.enabled is not False,
        )
    return PriceCatalog(
        categories=MappingProxyType(
            {cat: MappingProxyType(items) for cat, items in merged.items()}
        ),
        version=version,
    )


def load_catalog(baker) -> PriceCatalog:
    return build_catalog(baker.catalog_entries, version=baker.catalog_version)


def replace_catalog(baker, category: str, entries: list[dict]) -> list[CatalogEntry]:
    """Replace the baker's overrides for one category.

    Bumps ``catalog_version``.  Existing quotes are unaffected because they
    snapshot their items and tax rate at creation.  Caller commits.
    """
    if category not in CATEGORIES:
        raise ValueError(f"unknown catalog category '{category}'")

    CatalogEntry.query.filter_by(baker_id=baker.id, category=category).delete()
    rows = []
    for pos, data in enumerate(entries):
        rows.append(CatalogEntry(
            baker_id      = baker.id,
            category      = category,
            item_id       = str(data['id']),
            label         = data.get('label') or str(data['id']),
            price         = to_money(data.get('price', 0)),
            pricing_type  = data.get('pricing_type', 'flat'),
            min_attendees = data.get('min_attendees'),
            enabled       = data.get('enabled', True),
            position      = pos,
        ))
    db.session.add_all(rows)
    baker.catalog_version = (baker.catalog_version or 0) + 1
    db.session.flush()
    db.session.expire(baker, ['catalog_entries'])
    return rows


def catalog_as_dict(catalog: PriceCatalog) -> dict:
    return {
        'version': catalog.version,
        'categories': {
            cat: [
                {
                    'id': item.id,
                    'label': item.label,
                    'price': str(item.price),
                    'pricing_type': item.pricing_type,
                    'min_attendees': item.min_attendees,
                    'enabled': item.enabled,
                }
                for item in items.values()
            ]
            for cat, items in catalog.categories.items()
        },
    }
