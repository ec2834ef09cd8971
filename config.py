"""
Centralized configuration for the webhook relay.
Override via environment variables.
"""
import os


def _int_env(name, default):
    """Read an integer env var, falling back to default when unset or invalid."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


# Local listen port; also the port the tunnel forwards to.
PORT = _int_env("PORT", 8080)
HOST = os.environ.get("WEBHOOK_RELAY_HOST", "0.0.0.0")

# Config directory: downloaded cloudflared, tunnel.log and webhook history live here.
CONFIG_DIR = os.environ.get("WEBHOOK_RELAY_CONFIG", os.path.expanduser("~/.webhook-relay"))

# Newline-delimited JSON history of received webhooks.
WEBHOOK_LOG_FILE = os.environ.get("WEBHOOK_LOG_FILE", os.path.join(CONFIG_DIR, "webhooks.jsonl"))

# Tunnel request. Quick tunnels ignore the subdomain and assign a random one.
TUNNEL_SUBDOMAIN = os.environ.get("TUNNEL_SUBDOMAIN", "respondio")
TUNNEL_LOCAL_HOST = os.environ.get("TUNNEL_LOCAL_HOST", "127.0.0.1")
CLOUDFLARED_PATH = os.environ.get("CLOUDFLARED_PATH") or None
TUNNEL_START_TIMEOUT = _int_env("TUNNEL_START_TIMEOUT", 45)

# Reconnect backoff, all in milliseconds.
BACKOFF_BASE_MS = _int_env("BACKOFF_BASE_MS", 1000)
BACKOFF_MAX_MS = _int_env("BACKOFF_MAX_MS", 30000)
BACKOFF_JITTER_MS = _int_env("BACKOFF_JITTER_MS", 500)

# Uptime after which the retry counter resets.
STABILITY_WINDOW_MS = _int_env("STABILITY_WINDOW_MS", 5000)

# Hard deadline for graceful shutdown before exiting with status 1.
SHUTDOWN_GRACE_MS = _int_env("SHUTDOWN_GRACE_MS", 3000)

OPEN_BROWSER = _bool_env("OPEN_BROWSER", False)
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Local viewer assets, shipped inside the api package.
STATIC_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "api", "static")
