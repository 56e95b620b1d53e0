"""
Catalog Blueprint - product listing and live pricing.

Provides:
- GET  /api/products - Products, pricing mode, add-ons, quick-pick sizes
- POST /api/quote    - Price a list of line items (called on every form edit)
"""
from flask import Blueprint, request, jsonify

from errors import ValidationError
from extensions import limiter
from services.catalog import get_product_options
from services.container import get_services
from services.intake import parse_line_item
from services.pricing import quote

catalog_bp = Blueprint('catalog', __name__)


@catalog_bp.route('/api/products', methods=['GET'])
def list_products():
    services = get_services()
    return jsonify({
        "products": get_product_options(services.catalog),
        "currency": services.settings.currency,
    })


@catalog_bp.route('/api/quote', methods=['POST'])
@limiter.limit("120/minute")
def quote_items():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise ValidationError("Body must be a JSON object with an items list.", code="invalid_body")

    catalog = get_services().catalog
    items = [parse_line_item(raw, catalog) for raw in data["items"]]
    breakdowns, totals = quote(items, catalog)

    return jsonify({
        "items": [
            {"id": item.id, "productCode": item.product_code, "priceBreakdown": breakdown.to_dict()}
            for item, breakdown in zip(items, breakdowns)
        ],
        "totals": totals.to_dict(),
        "currency": get_services().settings.currency,
    })
