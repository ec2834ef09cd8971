"""
Reverse tunnel lifecycle for the webhook relay.

This package keeps a Cloudflare Quick Tunnel pointed at the local
listener: it connects, retries with backoff, reconnects when the tunnel
dies, and tears everything down on shutdown.
"""

from .backoff import backoff_delay
from .binary import BinaryManager
from .manager import ConnectionManager
from .provider import CloudflaredProvider, TunnelProvider
from .session import TunnelSession
from .shutdown import ShutdownCoordinator
from .state import ConnectionPhase, ConnectionState
from .exceptions import (
    TunnelError,
    BinaryDownloadError,
    TunnelCreationError,
    TunnelProcessError,
)

__all__ = [
    'backoff_delay',
    'BinaryManager',
    'ConnectionManager',
    'CloudflaredProvider',
    'TunnelProvider',
    'TunnelSession',
    'ShutdownCoordinator',
    'ConnectionPhase',
    'ConnectionState',
    'TunnelError',
    'BinaryDownloadError',
    'TunnelCreationError',
    'TunnelProcessError',
]
