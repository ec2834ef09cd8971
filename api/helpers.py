"""Shared helpers for API endpoints (store/manager lookup, request capture)."""

from flask import current_app

from config import WEBHOOK_LOG_FILE
from webhook_store import WebhookStore, new_webhook_id, utc_timestamp


def get_webhook_store():
    """Get or create the WebhookStore for this app."""
    if not hasattr(current_app, 'webhook_store'):
        store = WebhookStore(WEBHOOK_LOG_FILE, logger=current_app.logger)
        store.load()
        current_app.webhook_store = store
    return current_app.webhook_store


def get_connection_manager():
    """ConnectionManager attached at startup, or None when running without a tunnel."""
    return getattr(current_app, 'connection_manager', None)


def build_webhook_record(req):
    """Capture the parts of an inbound request the viewer shows."""
    full_path = req.full_path
    if full_path.endswith('?'):
        full_path = full_path[:-1]

    return {
        'id': new_webhook_id(),
        'timestamp': utc_timestamp(),
        'method': req.method,
        'url': full_path,
        'headers': {k: str(v) for k, v in req.headers.items()},
        'body': req.get_json(silent=True),
        'query': req.args.to_dict(),
        'ip': req.remote_addr or '',
    }
