# bakequote/auth.py
"""Request helpers shared by the blueprints.

Authentication lives upstream; by the time a request reaches us the baker is
named in the ``X-Baker-Id`` header.
"""

from flask import abort, current_app, request

from bakequote import db
from bakequote.models import Baker, Quote, utcnow
from bakequote.money import to_money


def current_baker() -> Baker:
    raw = request.headers.get('X-Baker-Id', '')
    if not raw.isdigit():
        abort(401)
    baker = db.session.get(Baker, int(raw))
    if baker is None:
        abort(401)
    return baker


def baker_by_slug(slug: str) -> Baker:
    baker = Baker.query.filter_by(slug=slug).first()
    if baker is None:
        abort(404)
    return baker


def owned_quote(baker: Baker, quote_id: int) -> Quote:
    quote = db.session.get(Quote, quote_id)
    if quote is None or quote.baker_id != baker.id:
        abort(404)
    return quote


def effective_tax_rate(baker: Baker):
    if baker.tax_rate is not None:
        return to_money(baker.tax_rate)
    return current_app.config['DEFAULT_TAX_RATE']


def now():
    """Request timestamp handed to the engine as ``as_of``."""
    return utcnow()
