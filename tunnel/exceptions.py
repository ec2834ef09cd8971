"""
Custom exceptions for tunnel operations.
"""


class TunnelError(Exception):
    """Base exception for all tunnel-related errors."""
    pass


class BinaryDownloadError(TunnelError):
    """Raised when the cloudflared binary cannot be located or downloaded."""
    pass


class TunnelCreationError(TunnelError):
    """Raised when a tunnel session could not be established."""
    pass


class TunnelProcessError(TunnelError):
    """Raised (emitted) when a running tunnel process dies on its own."""

    def __init__(self, message, returncode=None):
        super().__init__(message)
        self.returncode = returncode
