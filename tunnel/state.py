"""
Connection state shared by the connection manager, the shutdown
coordinator and the session event handlers.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .session import TunnelSession


class ConnectionPhase(str, Enum):
    """Where the connection manager is in its lifecycle."""
    IDLE = 'idle'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    RETRYING = 'retrying'
    SHUTTING_DOWN = 'shutting_down'


@dataclass
class ConnectionState:
    """
    The single mutable record behind the tunnel lifecycle.

    Every read-modify-write goes through the methods below, which hold
    `lock`. The lock is re-entrant so event handlers fired while a method
    holds it can read state safely.
    """

    active_session: Optional['TunnelSession'] = None
    retry_attempt: int = 0
    shutting_down: bool = False
    reconnecting: bool = False
    phase: ConnectionPhase = ConnectionPhase.IDLE
    stability_timer: Optional[threading.Timer] = None
    missed_failure: Optional['TunnelSession'] = field(default=None, repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def try_begin_reconnect(self, failed_session=None) -> bool:
        """
        Claim the single-flight latch. False if already held or shutting down.

        When the latch is held, `failed_session` is remembered so the
        running sequence can pick it up in end_reconnect().
        """
        with self.lock:
            if self.shutting_down:
                return False
            if self.reconnecting:
                if failed_session is not None:
                    self.missed_failure = failed_session
                return False
            self.reconnecting = True
            self.missed_failure = None
            return True

    def end_reconnect(self) -> bool:
        """
        Release the latch. True if a failure of the still-active session
        was reported while it was held.
        """
        with self.lock:
            self.reconnecting = False
            missed = self.missed_failure
            self.missed_failure = None
            return (missed is not None and missed is self.active_session
                    and not self.shutting_down)

    def begin_shutdown(self) -> bool:
        """Flip shutting_down to True. Only the first caller gets True."""
        with self.lock:
            if self.shutting_down:
                return False
            self.shutting_down = True
            self.phase = ConnectionPhase.SHUTTING_DOWN
            return True

    def next_attempt(self) -> int:
        with self.lock:
            self.retry_attempt += 1
            if not self.shutting_down:
                self.phase = ConnectionPhase.CONNECTING
            return self.retry_attempt

    def set_phase(self, phase: ConnectionPhase):
        # shutting_down is terminal
        with self.lock:
            if not self.shutting_down:
                self.phase = phase

    def take_session(self) -> Optional['TunnelSession']:
        """Detach and return the active session, leaving None behind."""
        with self.lock:
            session = self.active_session
            self.active_session = None
            return session

    def is_active(self, session) -> bool:
        with self.lock:
            return session is not None and self.active_session is session

    def replace_timer(self, timer: Optional[threading.Timer]):
        """Swap in a new stability timer, cancelling the previous one."""
        with self.lock:
            old = self.stability_timer
            self.stability_timer = timer
        if old is not None:
            old.cancel()

    def cancel_timers(self):
        self.replace_timer(None)
