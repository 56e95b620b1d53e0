"""
Uploads Blueprint - signed upload slots.

POST /api/sign-upload
    Body: {draftId | orderNo, filename, itemId?, size?, contentType?}
    200:  {storagePath, uploadCredential, signedUrl, path}
    400:  missing owner/filename, file too large
    500:  {error: "signing_error"} when storage cannot issue a credential

The client PUTs the file bytes to signedUrl itself; this server never sees them.
"""
from flask import Blueprint, request, jsonify

from errors import ValidationError
from extensions import limiter
from services.container import get_services
from services.orders import is_valid_order_no

uploads_bp = Blueprint('uploads', __name__)


@uploads_bp.route('/api/sign-upload', methods=['POST'])
@limiter.limit("120/minute")
def sign_upload():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Body must be a JSON object.", code="invalid_body")

    uploads = get_services().uploads
    order_no = data.get("orderNo")
    owner = data.get("draftId") or data.get("orderNoOrDraftId") or order_no
    filename = data.get("filename")
    if not owner or not filename:
        raise ValidationError("draftId (or orderNo) and filename required", code="missing_fields")

    if uploads.policy == "direct":
        owner = order_no or data.get("orderNoOrDraftId")
        if not is_valid_order_no(owner):
            raise ValidationError("A valid orderNo is required for uploads.", code="invalid_order_no")

    size = data.get("size")
    slot = uploads.request_upload_slot(
        str(owner),
        str(filename),
        item_id=data.get("itemId") or None,
        size_bytes=size if isinstance(size, int) and not isinstance(size, bool) else None,
        content_type=data.get("contentType") or None,
    )

    payload = slot.to_dict()
    # Older order forms read these two keys directly
    payload["signedUrl"] = slot.credential.signed_url
    payload["path"] = slot.storage_path
    return jsonify(payload)
