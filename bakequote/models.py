from datetime import datetime, timezone

from flask import current_app

from bakequote import db
from bakequote.money import ZERO


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _default_currency():
    return current_app.config.get('DEFAULT_CURRENCY', 'USD')


QUOTE_STATUSES = ('draft', 'sent', 'approved', 'rejected')
PAYMENT_STATUSES = ('unpaid', 'deposit_paid', 'paid')
ITEM_CATEGORIES = ('cake', 'decoration', 'addon', 'delivery', 'other')
FULFILLMENT_STATUSES = ('booked', 'in_progress', 'completed', 'cancelled')
LEAD_STATUSES = ('new', 'contacted', 'quoted', 'converted', 'lost')


class Baker(db.Model):
    __tablename__ = 'baker'
    id                   = db.Column(db.Integer, primary_key=True)
    slug                 = db.Column(db.String(80), unique=True, nullable=False)
    business_name        = db.Column(db.String(200), nullable=False)
    email                = db.Column(db.String(200))
    currency             = db.Column(db.String(3), nullable=False, default=_default_currency)
    # None falls back to the platform DEFAULT_TAX_RATE
    tax_rate             = db.Column(db.Numeric(6, 4))
    deposit_type         = db.Column(db.String(16), nullable=False, default='full')
    deposit_percentage   = db.Column(db.Integer, nullable=False, default=50)
    deposit_fixed_amount = db.Column(db.Numeric(10, 2))
    # last issued quote number; only ever incremented
    quote_sequence       = db.Column(db.Integer, nullable=False, default=0)
    catalog_version      = db.Column(db.Integer, nullable=False, default=0)
    created_at           = db.Column(db.DateTime, nullable=False, default=utcnow)

    catalog_entries = db.relationship(
        'CatalogEntry',
        backref='baker',
        lazy=True,
        cascade='all, delete-orphan',
        order_by='CatalogEntry.position',
    )


class Customer(db.Model):
    __tablename__ = 'customer'
    id         = db.Column(db.Integer, primary_key=True)
    baker_id   = db.Column(db.Integer, db.ForeignKey('baker.id'), nullable=False)
    name       = db.Column(db.String(200), nullable=False)
    email      = db.Column(db.String(200), nullable=False)
    phone      = db.Column(db.String(40))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class CatalogEntry(db.Model):
    """A baker's override of (or addition to) the default price list."""
    __tablename__ = 'catalog_entry'
    __table_args__ = (
        db.UniqueConstraint('baker_id', 'category', 'item_id', name='uq_catalog_item'),
    )
    id            = db.Column(db.Integer, primary_key=True)
    baker_id      = db.Column(db.Integer, db.ForeignKey('baker.id'), nullable=False)
    category      = db.Column(db.String(32), nullable=False)
    item_id       = db.Column(db.String(80), nullable=False)
    label         = db.Column(db.String(200), nullable=False)
    price         = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    pricing_type  = db.Column(db.String(16), nullable=False, default='flat')
    min_attendees = db.Column(db.Integer)
    enabled       = db.Column(db.Boolean, nullable=False, default=True)
    position      = db.Column(db.Integer, nullable=False, default=0)


class Lead(db.Model):
    __tablename__ = 'lead'
    id              = db.Column(db.Integer, primary_key=True)
    baker_id        = db.Column(db.Integer, db.ForeignKey('baker.id'), nullable=False)
    customer_id     = db.Column(db.Integer, db.ForeignKey('customer.id'))
    customer_name   = db.Column(db.String(200), nullable=False)
    customer_email  = db.Column(db.String(200), nullable=False)
    customer_phone  = db.Column(db.String(40))
    event_date      = db.Column(db.Date)
    event_type      = db.Column(db.String(40))
    guest_count     = db.Column(db.Integer)
    payload         = db.Column(db.JSON)
    estimated_total = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    status          = db.Column(db.String(16), nullable=False, default='new')
    notes           = db.Column(db.Text)
    created_at      = db.Column(db.DateTime, nullable=False, default=utcnow)


class Quote(db.Model):
    __tablename__ = 'quote'
    __table_args__ = (
        db.UniqueConstraint('baker_id', 'number', name='uq_quote_number'),
    )
    id              = db.Column(db.Integer, primary_key=True)
    baker_id        = db.Column(db.Integer, db.ForeignKey('baker.id'), nullable=False)
    customer_id     = db.Column(db.Integer, db.ForeignKey('customer.id'), nullable=False)
    lead_id         = db.Column(db.Integer, db.ForeignKey('lead.id'))
    number          = db.Column(db.Integer, nullable=False)
    title           = db.Column(db.String(200), nullable=False)
    event_date      = db.Column(db.Date)
    status          = db.Column(db.String(16), nullable=False, default='draft')
    currency        = db.Column(db.String(3), nullable=False, default='USD')
    tax_rate        = db.Column(db.Numeric(6, 4), nullable=False, default=0)
    subtotal        = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax_amount      = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total           = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    payment_status  = db.Column(db.String(16), nullable=False, default='unpaid')
    amount_paid     = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    catalog_version = db.Column(db.Integer)
    notes           = db.Column(db.Text)
    archived_at     = db.Column(db.DateTime)
    created_at      = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at      = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    sent_at         = db.Column(db.DateTime)
    accepted_at     = db.Column(db.DateTime)
    rejected_at     = db.Column(db.DateTime)
    paid_at         = db.Column(db.DateTime)

    baker    = db.relationship('Baker', lazy=True)
    customer = db.relationship('Customer', lazy=True)
    items = db.relationship(
        'QuoteItem',
        backref='quote',
        lazy=True,
        cascade='all, delete-orphan',
        order_by='QuoteItem.sort_order',
    )
    payments = db.relationship(
        'Payment',
        backref='quote',
        lazy=True,
        cascade='all, delete-orphan',
        order_by='Payment.id',
    )

    @property
    def display_number(self):
        year = (self.created_at or utcnow()).year
        return f"Q-{year}-{self.number:03d}"

    @property
    def items_total(self):
        return sum((i.total_price for i in self.items), ZERO)

    @property
    def balance_due(self):
        return (self.total or ZERO) - (self.amount_paid or ZERO)

    @property
    def is_archived(self):
        return self.archived_at is not None


class QuoteItem(db.Model):
    __tablename__ = 'quote_item'
    id          = db.Column(db.Integer, primary_key=True)
    quote_id    = db.Column(
        db.Integer,
        db.ForeignKey('quote.id', ondelete='CASCADE'),
        nullable=False
    )
    category    = db.Column(db.String(16), nullable=False, default='other')
    name        = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    quantity    = db.Column(db.Numeric(10, 2), nullable=False, default=1)
    unit_price  = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    sort_order  = db.Column(db.Integer, nullable=False, default=0)


class Payment(db.Model):
    __tablename__ = 'payment'
    id           = db.Column(db.Integer, primary_key=True)
    quote_id     = db.Column(db.Integer, db.ForeignKey('quote.id'), nullable=False)
    # the processor's idempotency key
    external_id  = db.Column(db.String(120), unique=True, nullable=False)
    amount       = db.Column(db.Numeric(10, 2), nullable=False)
    type         = db.Column(db.String(16), nullable=False)
    status       = db.Column(db.String(16), nullable=False, default='pending')
    platform_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    created_at   = db.Column(db.DateTime, nullable=False, default=utcnow)
    settled_at   = db.Column(db.DateTime)


class Order(db.Model):
    __tablename__ = 'orders'
    id                 = db.Column(db.Integer, primary_key=True)
    baker_id           = db.Column(db.Integer, db.ForeignKey('baker.id'), nullable=False)
    quote_id           = db.Column(db.Integer, db.ForeignKey('quote.id'), unique=True, nullable=False)
    customer_id        = db.Column(db.Integer, db.ForeignKey('customer.id'), nullable=False)
    title              = db.Column(db.String(200), nullable=False)
    event_date         = db.Column(db.Date)
    amount             = db.Column(db.Numeric(10, 2), nullable=False)
    fulfillment_status = db.Column(db.String(16), nullable=False, default='booked')
    notes              = db.Column(db.Text)
    created_at         = db.Column(db.DateTime, nullable=False, default=utcnow)

    quote    = db.relationship('Quote', backref=db.backref('order', uselist=False), lazy=True)
    customer = db.relationship('Customer', lazy=True)

    @property
    def payment_status(self):
        """Read through to the quote; orders never own payment state."""
        return self.quote.payment_status


class QuoteEvent(db.Model):
    """Outbox of lifecycle events for the notification collaborator."""
    __tablename__ = 'quote_event'
    id            = db.Column(db.Integer, primary_key=True)
    baker_id      = db.Column(db.Integer, db.ForeignKey('baker.id'), nullable=False)
    quote_id      = db.Column(db.Integer, db.ForeignKey('quote.id', ondelete='SET NULL'))
    kind          = db.Column(db.String(32), nullable=False)
    payload       = db.Column(db.JSON, nullable=False)
    created_at    = db.Column(db.DateTime, nullable=False, default=utcnow)
    dispatched_at = db.Column(db.DateTime)
