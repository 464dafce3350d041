# bakequote/catalog/routes.py

from flask import Blueprint, jsonify, request

from bakequote import db
from bakequote.auth import current_baker
from bakequote.catalog.resolver import catalog_as_dict, load_catalog, replace_catalog

bp = Blueprint('catalog', __name__)


@bp.route('/')
def view_catalog():
    baker = current_baker()
    return jsonify(catalog_as_dict(load_catalog(baker)))


@bp.route('/<category>', methods=['PUT'])
def update_category(category):
    """Replace the baker's overrides for one category.

    Body is ``{"items": [{"id", "label", "price", ...}]}``; an empty list
    falls back to the platform defaults for that category.
    """
    baker = current_baker()
    data = request.get_json() or {}
    entries = data.get('items')
    if not isinstance(entries, list):
        return jsonify(error='invalid', message='items must be a list'), 400
    try:
        replace_catalog(baker, category, entries)
    except (AttributeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
        db.session.rollback()
        return jsonify(error='invalid', message=str(e)), 400
    db.session.commit()
    return jsonify(catalog_as_dict(load_catalog(baker)))
