import logging

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from config import load_settings
from errors import OrderError, ValidationError
from extensions import limiter
from services.container import EXTENSION_KEY, build_services
from utils.storage import StorageBackendError

# Blueprints
from routes.catalog import catalog_bp
from routes.uploads import uploads_bp
from routes.orders import orders_bp
from routes.storage_files import storage_files_bp

logger = logging.getLogger(__name__)

# Multipart legacy submissions carry the files plus the meta document
MULTIPART_OVERHEAD_BYTES = 1024 * 1024


def _is_api_request() -> bool:
    return request.path.startswith("/api/") or request.path.startswith("/storage/")


def register_error_handlers(app):
    @app.errorhandler(OrderError)
    def handle_order_error(e):
        if isinstance(e, ValidationError) or e.http_status < 500:
            logger.info(f"[API] {request.method} {request.path} rejected: {e.code}")
        else:
            logger.error(f"[API] {request.method} {request.path} failed: {e.code}: {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            if _is_api_request():
                code = (e.name or "error").lower().replace(" ", "_")
                return jsonify({"error": code, "detail": e.description}), e.code
            return e

        # Traceback stays in the server log; the client only sees a category
        logger.exception(f"[API] Unhandled error on {request.method} {request.path}")
        if _is_api_request():
            return jsonify({"error": "internal_error"}), 500
        return "Internal Server Error", 500


def create_app(test_config=None, services=None):
    app = Flask(__name__)

    # Apply Test Config Overrides (Early)
    if test_config:
        app.config.update(test_config)

    settings = app.config.get("SETTINGS") or (services.settings if services else None) or load_settings()
    app.config["SETTINGS"] = settings
    app.config['SECRET_KEY'] = settings.secret_key
    app.config['MAX_CONTENT_LENGTH'] = settings.max_upload_mb * 1024 * 1024 + MULTIPART_OVERHEAD_BYTES

    # Setup Structured Logging
    from utils.logger import setup_logger
    setup_logger(app)

    if services is None:
        services = build_services(settings)
    app.extensions[EXTENSION_KEY] = services
    app.logger.info(
        f"[App] Stage={settings.app_stage} storage={settings.storage_backend} "
        f"uploads={services.uploads.policy} email={services.email_sender.name}"
    )

    limiter.init_app(app)
    register_error_handlers(app)

    # Health Check (Validates storage connectivity)
    @app.route("/healthz")
    def healthz():
        try:
            services.storage.ping()
            return {"status": "ok", "storage": settings.storage_backend}, 200
        except StorageBackendError as e:
            logger.warning(f"[Health] Storage check failed: {e}")
            return {"status": "error", "storage": "unreachable"}, 503

    # Simple ping endpoint for Docker health checks
    @app.route("/ping")
    def ping():
        return {"status": "ok"}, 200

    # Blueprints
    app.register_blueprint(catalog_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(storage_files_bp)

    # CLI Commands
    @app.cli.command("cleanup-drafts")
    def cleanup_drafts_cmd():
        """Delete uploads of drafts that were never submitted."""
        from services.cleanup import cleanup_abandoned_drafts
        result = cleanup_abandoned_drafts(services.storage, settings.draft_max_age_hours)
        print(f"Deleted {result['files']} file(s) from {result['drafts']} abandoned draft(s).")

    return app


# WSGI Entry Point
app = create_app()

if __name__ == "__main__":
    app.run(host='0.0.0.0', debug=True)
