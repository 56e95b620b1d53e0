"""
Orders Blueprint - order submission and read-back.

POST /api/orders
    JSON (preferred) or legacy multipart. Both are reduced to an OrderDraft
    by services.intake and submitted through the same workflow.
    200: {ok: true, orderNo, uploaded, files: [{path, url}], notification}

GET /api/orders/<orderNo>?email=<contact email>
    The stored order record plus its notification status. The contact
    email must match; otherwise the order is reported as not found.
"""
from flask import Blueprint, request, jsonify, abort

from errors import ValidationError
from extensions import limiter
from services.container import get_services
from services.intake import from_json, from_multipart
from services.orders import is_valid_order_no, load_notification, load_order

orders_bp = Blueprint('orders', __name__)


@orders_bp.route('/api/orders', methods=['POST'])
@limiter.limit("20/minute")
def create_order():
    services = get_services()

    if request.mimetype == 'multipart/form-data':
        intake = from_multipart(request.form, request.files, services.uploads, services.catalog)
    else:
        data = request.get_json(silent=True)
        if data is None:
            raise ValidationError("Body must be JSON or multipart/form-data.", code="invalid_body")
        intake = from_json(data, services.uploads, services.catalog)

    result = services.workflow.submit(intake.draft, order_no=intake.order_no)
    return jsonify(result.to_dict()), 200


@orders_bp.route('/api/orders/<order_no>', methods=['GET'])
def get_order(order_no):
    if not is_valid_order_no(order_no):
        abort(404)

    storage = get_services().storage
    order = load_order(storage, order_no)
    email = (request.args.get("email") or "").strip().lower()
    if order is None or not email or order.contact.email.lower() != email:
        abort(404)

    notification = load_notification(storage, order_no)
    return jsonify({
        "order": order.to_record(),
        "notification": notification.to_dict() if notification else None,
    })
