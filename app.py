"""Main Flask app - local webhook listener, viewer, and tunnel startup."""

import logging
import os
import sys
import threading
import webbrowser

from flask import Flask, send_from_directory
from werkzeug.serving import make_server

import config
from config import STATIC_DIR
from tunnel import (
    BinaryManager,
    CloudflaredProvider,
    ConnectionManager,
    ConnectionState,
    ShutdownCoordinator,
)
from tunnel.backoff import backoff_delay
from webhook_store import WebhookStore

app = Flask(__name__, static_folder=STATIC_DIR, static_url_path='/static')
# Limit request body size
app.config['MAX_CONTENT_LENGTH'] = 10 * 1024 * 1024  # 10 MB


@app.after_request
def add_security_headers(response):
    """Add security-related response headers."""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    return response


@app.route('/')
def index():
    return send_from_directory(STATIC_DIR, 'index.html')


# Import API blueprint - must be after app creation
from api import api_bp  # noqa: E402

app.register_blueprint(api_bp)


def configure_logging(level=None):
    logging.basicConfig(
        level=level or config.LOG_LEVEL,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    # werkzeug logs every request at INFO; the webhook route already logs what matters
    logging.getLogger('werkzeug').setLevel(logging.WARNING)


def _backoff(attempt):
    return backoff_delay(
        attempt,
        base_ms=config.BACKOFF_BASE_MS,
        cap_ms=config.BACKOFF_MAX_MS,
        jitter_ms=config.BACKOFF_JITTER_MS,
    )


def start_listener(port=None, host=None):
    """Start the local HTTP listener on a daemon thread and return the server."""
    port = config.PORT if port is None else port
    host = config.HOST if host is None else host

    server = make_server(host, port, app, threaded=True)
    threading.Thread(target=server.serve_forever, name='http-listener', daemon=True).start()
    app.logger.info(f"Server running on port {port}")
    return server


def main():
    configure_logging()

    os.makedirs(config.CONFIG_DIR, exist_ok=True)
    store = WebhookStore(config.WEBHOOK_LOG_FILE, logger=app.logger)
    store.load()
    app.webhook_store = store

    try:
        server = start_listener()
    except OSError as e:
        app.logger.error(f"Could not listen on port {config.PORT}: {e}")
        return 1

    state = ConnectionState()
    provider = CloudflaredProvider(
        app,
        BinaryManager(config.CONFIG_DIR, explicit_path=config.CLOUDFLARED_PATH),
        log_dir=config.CONFIG_DIR,
        local_host=config.TUNNEL_LOCAL_HOST,
        timeout=config.TUNNEL_START_TIMEOUT,
    )
    manager = ConnectionManager(
        app,
        provider,
        state,
        port=config.PORT,
        subdomain=config.TUNNEL_SUBDOMAIN,
        backoff=_backoff,
        stability_window_ms=config.STABILITY_WINDOW_MS,
    )
    coordinator = ShutdownCoordinator(app, state, server, grace_ms=config.SHUTDOWN_GRACE_MS)
    coordinator.install()

    manager.on_startup_failure = lambda exc: coordinator.abort(f"startup failed: {exc}")
    app.connection_manager = manager

    if config.OPEN_BROWSER:
        webbrowser.open(f"http://localhost:{config.PORT}/")

    manager.start()
    return coordinator.wait()


if __name__ == '__main__':
    sys.exit(main())
