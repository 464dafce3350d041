# bakequote/pricing/routes.py
"""Public calculator endpoints, addressed by the baker's slug."""

from flask import Blueprint, jsonify, request

from bakequote import db
from bakequote.auth import baker_by_slug, effective_tax_rate
from bakequote.catalog.resolver import catalog_as_dict, load_catalog
from bakequote.money import money_str
from bakequote.pricing.calculator import Build, calculate
from bakequote.pricing.leads import create_lead

bp = Blueprint('pricing', __name__)


@bp.route('/<slug>/catalog')
def public_catalog(slug):
    baker = baker_by_slug(slug)
    return jsonify(catalog_as_dict(load_catalog(baker)))


@bp.route('/<slug>/calculate', methods=['POST'])
def calculate_price(slug):
    baker = baker_by_slug(slug)
    try:
        build = Build.from_dict(request.get_json() or {})
    except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError):
        return jsonify(error='invalid', message='malformed build'), 400
    breakdown = calculate(build, load_catalog(baker), effective_tax_rate(baker), baker.currency)
    return jsonify(breakdown.to_dict())


@bp.route('/<slug>/leads', methods=['POST'])
def submit_lead(slug):
    baker = baker_by_slug(slug)
    data = request.get_json() or {}
    if not data.get('customer_name') or not data.get('customer_email'):
        return jsonify(error='invalid', message='customer_name and customer_email required'), 400
    try:
        lead = create_lead(baker, data, load_catalog(baker), effective_tax_rate(baker))
    except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
        db.session.rollback()
        return jsonify(error='invalid', message=str(e)), 400
    db.session.commit()
    return jsonify(id=lead.id, estimated_total=money_str(lead.estimated_total)), 201
