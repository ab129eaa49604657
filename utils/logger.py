"""
JSON logging for the fulfillment service.

Pipeline code logs through module loggers and passes run context with
`extra={"order_id": ..., "line_item_id": ..., "stage": ...}`; those fields
become top-level keys so one line item can be followed across stages.
"""
import json
import logging
import sys
import uuid

from flask import g, has_request_context, request

from utils.timestamps import utc_iso

CONTEXT_FIELDS = ("order_id", "line_item_id", "stage", "event", "run_state")

REQUEST_ID_HEADER = "X-Request-Id"


class JSONFormatter(logging.Formatter):
    """One JSON object per record: base fields, run context, request info."""

    def format(self, record):
        entry = {
            "timestamp": utc_iso(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "lineno": record.lineno,
        }
        entry.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        if has_request_context():
            entry["method"] = request.method
            entry["path"] = request.path
            entry["request_id"] = g.get("request_id")

        return json.dumps(entry, default=str)


def configure_logging(level=logging.INFO):
    """Route every logger through a single JSON handler on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    return handler


def setup_logger(app):
    """Attach JSON logging to the Flask app and tag each request with an id."""
    handler = configure_logging()

    # Flask's app logger propagates to root
    app.logger.handlers.clear()
    logging.getLogger("werkzeug").handlers = []

    # Under gunicorn, follow its configured level
    gunicorn_logger = logging.getLogger("gunicorn.error")
    if gunicorn_logger.handlers:
        logging.getLogger().setLevel(gunicorn_logger.level)

    @app.before_request
    def assign_request_id():
        g.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex

    app.logger.info("[App] JSON logging enabled")
    return handler
