"""
Orderly shutdown on SIGINT/SIGTERM with a hard deadline.
"""

import signal
import threading
from typing import Optional

from .state import ConnectionState

SHUTDOWN_GRACE_MS = 3000


class ShutdownCoordinator:
    """
    Tears down the tunnel and the local listener, then decides the exit code.

    Graceful listener close finishes with 0; the deadline timer finishes
    with 1. Whichever fires first wins. The main thread blocks in wait()
    and passes the result to sys.exit().
    """

    def __init__(self, app, state: ConnectionState, server=None,
                 grace_ms: int = SHUTDOWN_GRACE_MS, timer_factory=threading.Timer):
        """
        Args:
            app: Flask application instance (for logging)
            state: Shared connection state
            server: Local listener exposing shutdown() and server_close()
            grace_ms: Deadline before forcing exit status 1
            timer_factory: threading.Timer-compatible constructor
        """
        self.app = app
        self.state = state
        self.server = server
        self.grace_ms = grace_ms
        self.timer_factory = timer_factory

        self._lock = threading.Lock()
        self._done = threading.Event()
        self._exit_code: Optional[int] = None
        self._deadline = None

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    def install(self):
        """Route SIGINT and SIGTERM to shutdown(). Main thread only."""
        signal.signal(signal.SIGINT, self._handle_signal)
        signal.signal(signal.SIGTERM, self._handle_signal)

    def _handle_signal(self, signum, frame):
        self.shutdown(signal.Signals(signum).name)

    def shutdown(self, reason: str = 'shutdown') -> bool:
        """
        Begin graceful shutdown. Returns False if shutdown already started.
        """
        if not self.state.begin_shutdown():
            return False

        self.app.logger.info(f"Received {reason}. Shutting down...")

        # armed first: a tunnel that is slow to die counts against the grace period
        self._deadline = self.timer_factory(self.grace_ms / 1000.0, self._force_exit)
        self._deadline.daemon = True
        self._deadline.start()

        session = self._detach_session()
        threading.Thread(
            target=self._teardown,
            args=(session,),
            name='shutdown-teardown',
            daemon=True,
        ).start()
        return True

    def abort(self, reason: str, exit_code: int = 1):
        """Stop immediately with a non-zero status (startup failure)."""
        self.state.begin_shutdown()
        self.app.logger.error(f"Aborting: {reason}")
        self._close_session(self._detach_session())
        self._finish(exit_code)

    def _detach_session(self):
        self.state.cancel_timers()
        session = self.state.take_session()
        if session is not None:
            session.remove_all_listeners()
        return session

    def _close_session(self, session):
        if session is None:
            return
        try:
            session.close()
        except Exception as e:
            self.app.logger.debug(f"Ignoring error while closing tunnel: {e}")

    def _teardown(self, session):
        self._close_session(session)
        if self.server is None:
            self._finish(0)
            return
        self._close_listener()

    def _close_listener(self):
        try:
            self.server.shutdown()
            self.server.server_close()
        except Exception as e:
            self.app.logger.error(f"Error closing HTTP listener: {e}")
            return
        self._finish(0)

    def _force_exit(self):
        if self._finish(1):
            self.app.logger.warning(
                f"Graceful shutdown did not finish within {self.grace_ms}ms, forcing exit"
            )

    def _finish(self, code: int) -> bool:
        with self._lock:
            if self._exit_code is not None:
                return False
            self._exit_code = code
        if self._deadline is not None and code == 0:
            self._deadline.cancel()
        self._done.set()
        return True

    def wait(self, poll_interval: float = 0.5) -> int:
        """Block until an exit code is decided and return it."""
        # short waits keep the main thread responsive to signals on every platform
        while not self._done.wait(poll_interval):
            pass
        return self._exit_code
