"""
Storage Files Blueprint - signed URL endpoints for the local storage backend.

GET /storage/<token>         redeem a signed read credential
PUT /storage/upload/<token>  redeem a signed write credential (one path only)

With the S3 backend the signed URLs point at S3 itself and these routes
answer 404.
"""
import logging
import mimetypes

from flask import Blueprint, abort, request, send_file, jsonify

from services.container import get_services
from utils.storage import LocalStorage, StorageBackendError, TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

storage_files_bp = Blueprint('storage_files', __name__)


def _local_storage() -> LocalStorage:
    storage = get_services().storage
    if not isinstance(storage, LocalStorage):
        abort(404)
    return storage


def _redeem(resolve, token):
    try:
        return resolve(token)
    except TokenExpired:
        abort(410)
    except TokenInvalid:
        abort(403)


@storage_files_bp.route('/storage/<token>', methods=['GET'])
def serve_storage_file(token):
    storage = _local_storage()
    key = _redeem(storage.resolve_read_token, token)

    try:
        if not storage.exists(key):
            abort(404)
        file_data = storage.get_file(key)
    except (ValueError, StorageBackendError):
        # Path traversal attempt or unreadable file
        abort(404)

    content_type, _ = mimetypes.guess_type(key)
    return send_file(
        file_data,
        mimetype=content_type or 'application/octet-stream',
        as_attachment=False,
        download_name=key.rsplit("/", 1)[-1],
    )


@storage_files_bp.route('/storage/upload/<token>', methods=['PUT'])
def receive_upload(token):
    storage = _local_storage()
    key = _redeem(storage.resolve_write_token, token)

    try:
        storage.put_file(request.get_data(), key, content_type=request.mimetype or None)
    except (ValueError, StorageBackendError) as e:
        logger.error(f"[Storage] Local upload to {key} failed: {e}")
        return jsonify({"error": "upload_failed", "detail": "Upload could not be stored."}), 500

    return jsonify({"ok": True, "path": key}), 200
