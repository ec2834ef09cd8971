"""
Core tunnel lifecycle management - connect, retry with backoff, and
reconnect when the active session fails.
"""

import threading
import time
from concurrent.futures import Future
from functools import partial
from typing import Callable, Optional

from .backoff import backoff_delay
from .provider import TunnelProvider
from .session import EVENT_CLOSE, EVENT_ERROR, TunnelSession
from .state import ConnectionPhase, ConnectionState

STABILITY_WINDOW_MS = 5000


class ConnectionManager:
    """Owns the active tunnel session and keeps one alive until shutdown."""

    def __init__(self, app, provider: TunnelProvider, state: ConnectionState, port: int,
                 subdomain: str, backoff: Callable[[int], int] = backoff_delay,
                 sleep: Callable[[float], None] = time.sleep,
                 stability_window_ms: int = STABILITY_WINDOW_MS,
                 timer_factory=threading.Timer):
        """
        Initialize connection manager.

        Args:
            app: Flask application instance (for logging)
            provider: Opens tunnel sessions
            state: Shared connection state
            port: Local port to expose
            subdomain: Subdomain to request from the provider
            backoff: Maps a 1-based attempt number to a delay in ms
            sleep: Blocks for the given number of seconds
            stability_window_ms: Uptime after which the retry counter resets
            timer_factory: threading.Timer-compatible constructor
        """
        self.app = app
        self.provider = provider
        self.state = state
        self.port = port
        self.subdomain = subdomain
        self.backoff = backoff
        self.sleep = sleep
        self.stability_window_ms = stability_window_ms
        self.timer_factory = timer_factory
        self.on_startup_failure = None

    def start(self) -> Optional[Future]:
        """
        Kick off the initial connect sequence.

        An exception escaping that sequence (not a connect failure, which
        is retried) is handed to `on_startup_failure`.
        """
        future = self.reconnect()
        if future is not None:
            future.add_done_callback(self._check_startup)
        return future

    def _check_startup(self, future: Future):
        exc = future.exception()
        if exc is None:
            return
        self.app.logger.error(f"Startup failed: {exc!r}")
        if self.on_startup_failure is not None:
            self.on_startup_failure(exc)

    def reconnect(self, failed_session: Optional[TunnelSession] = None) -> Optional[Future]:
        """
        Run a connect sequence on a background thread.

        Single-flight: returns None without doing anything when a sequence
        is already running or shutdown has begun. A `failed_session` that
        arrives while a sequence is running is remembered, and the sequence
        starts another one on exit if that session is still the active one.
        """
        if not self.state.try_begin_reconnect(failed_session):
            return None

        future = Future()
        future.set_running_or_notify_cancel()
        future.add_done_callback(self._log_sequence_failure)
        thread = threading.Thread(
            target=self._run_sequence,
            args=(future,),
            name='tunnel-reconnect',
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self.state.end_reconnect()
            raise
        return future

    def _log_sequence_failure(self, future: Future):
        exc = future.exception()
        if exc is not None:
            self.app.logger.error(f"Reconnect sequence failed: {exc!r}")

    def _run_sequence(self, future: Future):
        # release the latch before resolving so waiters see it free
        session = None
        try:
            session = self.connect_or_retry()
        except BaseException as e:
            missed = self.state.end_reconnect()
            future.set_exception(e)
        else:
            missed = self.state.end_reconnect()
            future.set_result(session)

        if missed or self._died_during_adoption(session):
            self.app.logger.warning("Tunnel failed while it was being established; reconnecting...")
            self.reconnect()

    def _died_during_adoption(self, session: Optional[TunnelSession]) -> bool:
        return session is not None and self.state.is_active(session) and not session.is_alive()

    def connect_or_retry(self) -> Optional[TunnelSession]:
        """
        Connect, retrying with backoff until a session is up or shutdown.

        Returns:
            The newly active session, or None if shutdown ended the loop
        """
        while not self.state.shutting_down:
            attempt = self.state.next_attempt()
            self.app.logger.info(f"Creating tunnel, please wait... (attempt {attempt})")

            try:
                self._discard_active_session()
                session = self.provider.open(self.port, self.subdomain)
            except Exception as e:
                self.app.logger.error(f"Failed to create tunnel: {e}")

                self.state.set_phase(ConnectionPhase.RETRYING)
                delay = self.backoff(attempt)
                self.app.logger.info(f"Retrying in {delay}ms...")
                self.sleep(delay / 1000.0)
                # attempt counter is retained
                continue

            if self._adopt(session):
                return session
            return None

        return None

    def _discard_active_session(self):
        session = self.state.take_session()
        if session is None:
            return
        self.state.cancel_timers()
        session.remove_all_listeners()
        try:
            session.close()
        except Exception:
            pass

    def _adopt(self, session: TunnelSession) -> bool:
        with self.state.lock:
            if self.state.shutting_down:
                adopted = False
            else:
                self.state.active_session = session
                self.state.phase = ConnectionPhase.CONNECTED
                adopted = True

        if not adopted:
            # shutdown won the race while the provider was connecting
            self.app.logger.info("Shutdown in progress, closing freshly created tunnel")
            try:
                session.close()
            except Exception:
                pass
            return False

        self.app.logger.info(f"Webhook Route: [POST] {session.webhook_url}")

        self._schedule_attempt_reset(session)
        session.on(EVENT_ERROR, partial(self._handle_session_error, session))
        session.on(EVENT_CLOSE, partial(self._handle_session_close, session))
        # watching starts only once listeners exist so an early exit is not missed
        session.start_watching()
        return True

    def _schedule_attempt_reset(self, session: TunnelSession):
        """Reset the retry counter once the session has stayed up for a while."""
        timer = self.timer_factory(
            self.stability_window_ms / 1000.0,
            self._reset_if_stable,
            args=(session,),
        )
        timer.daemon = True
        self.state.replace_timer(timer)
        timer.start()

    def _reset_if_stable(self, session: TunnelSession):
        with self.state.lock:
            if self.state.shutting_down or self.state.active_session is not session:
                return
            self.state.retry_attempt = 0
        self.app.logger.info("Tunnel looks stable; retryAttempt reset to 0")

    def _handle_session_error(self, session: TunnelSession, err=None):
        if not self.state.is_active(session):
            self.app.logger.debug(f"Ignoring error from superseded tunnel {session.url}")
            return

        msg = str(err) if err is not None else 'unknown error'
        self.app.logger.error(f"Tunnel error: {msg}")
        if not self.state.shutting_down:
            self.reconnect(session)

    def _handle_session_close(self, session: TunnelSession):
        if not self.state.is_active(session):
            self.app.logger.debug(f"Ignoring close from superseded tunnel {session.url}")
            return

        if not self.state.shutting_down:
            self.app.logger.warning("Tunnel closed unexpectedly; reconnecting...")
            self.reconnect(session)

    def status(self) -> dict:
        """Snapshot of the connection for status endpoints."""
        with self.state.lock:
            session = self.state.active_session
            return {
                'phase': self.state.phase.value,
                'connected': session is not None,
                'url': session.url if session is not None else None,
                'retry_attempt': self.state.retry_attempt,
                'reconnecting': self.state.reconnecting,
            }
