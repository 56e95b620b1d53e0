"""
Order workflow error taxonomy.

Every error carries a short machine code (returned to callers as ``error``)
and the HTTP status the API layer maps it to. Messages must never contain
credentials or signed URLs: they are returned verbatim as ``detail``.
"""


class OrderError(Exception):
    """Base class for all expected order-workflow failures."""
    code = "order_error"
    http_status = 500

    def __init__(self, message: str = "", code: str = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ValidationError(OrderError):
    """Bad or missing input. Never retried automatically."""
    code = "validation_error"
    http_status = 400


class InvalidDimension(ValidationError):
    code = "invalid_dimension"


class InvalidQuantity(ValidationError):
    code = "invalid_quantity"


class AddOnNotAllowed(ValidationError):
    code = "addon_not_allowed"


class UnknownProduct(OrderError):
    code = "unknown_product"
    http_status = 400

    def __init__(self, product_code):
        super().__init__(f"Unknown product code: {product_code!r}")
        self.product_code = product_code


class SigningError(OrderError):
    """The storage backend could not issue an upload or read credential."""
    code = "signing_error"


class UploadFailed(OrderError):
    """Byte transfer (or server-side upload) of a single file failed."""
    code = "upload_failed"


class StorageFinalizeError(OrderError):
    """Moving files or writing the order record failed; the order may be partially written."""
    code = "storage_finalize_error"


class NotifyError(OrderError):
    """Email send failed. Logged and recorded, never surfaced as a submission failure."""
    code = "notify_error"
