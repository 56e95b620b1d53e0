import logging
import json
import uuid
from flask import request, has_request_context, g
import sys

from utils.redaction import redact_urls_in_text
from utils.timestamps import utc_now

# Passed as logger.info(..., extra={"order_no": ...}) by the submission path
CONTEXT_FIELDS = ("order_no", "draft_id")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line. Signed URLs in the message are reduced to
    their path so upload/download credentials never reach the log sink.
    """
    def format(self, record):
        log_record = {
            "timestamp": utc_now().isoformat(),
            "level": record.levelname,
            "message": redact_urls_in_text(record.getMessage()),
            "logger": record.name,
            "module": record.module,
            "lineno": record.lineno,
        }

        if record.exc_info:
            log_record["exception"] = redact_urls_in_text(self.formatException(record.exc_info))

        if has_request_context():
            log_record["method"] = request.method
            log_record["path"] = request.path
            log_record["remote_ip"] = request.remote_addr
            if hasattr(g, "request_id"):
                log_record["request_id"] = g.request_id

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_record[name] = value

        return json.dumps(log_record)


def setup_logger(app):
    """
    Route app, service and werkzeug logs through one stdout JSON handler and
    tag every request with an X-Request-Id (client supplied or generated).
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    app.logger.handlers = [handler]
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = False

    # services.* and utils.* loggers propagate here
    root = logging.getLogger()
    if not any(isinstance(h.formatter, JSONFormatter) for h in root.handlers):
        root.addHandler(handler)
    if root.level == logging.NOTSET or root.level > logging.INFO:
        root.setLevel(logging.INFO)

    logging.getLogger('werkzeug').handlers = [handler]

    gunicorn_logger = logging.getLogger('gunicorn.error')
    if gunicorn_logger.handlers:
        for gunicorn_handler in gunicorn_logger.handlers:
            gunicorn_handler.setFormatter(JSONFormatter())
        app.logger.handlers = gunicorn_logger.handlers
        app.logger.setLevel(gunicorn_logger.level)

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())

    @app.after_request
    def echo_request_id(response):
        if hasattr(g, "request_id"):
            response.headers["X-Request-Id"] = g.request_id
        return response

    app.logger.info("[App] JSON logging enabled")
