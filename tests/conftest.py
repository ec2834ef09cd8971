"""
Webhook relay test suite - shared fixtures and test doubles.

Run:  pytest tests/ -v
"""

import threading
import time

import pytest

from tunnel.provider import TunnelProvider
from tunnel.session import TunnelSession
from webhook_store import WebhookStore


# ---------------------------------------------------------------------------
# Flask app with an isolated webhook store
# ---------------------------------------------------------------------------

@pytest.fixture
def flask_app(tmp_path):
    from app import app as flask_app

    flask_app.config['TESTING'] = True
    store = WebhookStore(str(tmp_path / 'webhooks.jsonl'), logger=flask_app.logger)
    store.load()
    flask_app.webhook_store = store

    yield flask_app

    for attr in ('webhook_store', 'connection_manager'):
        if hasattr(flask_app, attr):
            delattr(flask_app, attr)


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


# ---------------------------------------------------------------------------
# Tunnel doubles
# ---------------------------------------------------------------------------

class FakeTimer:
    """threading.Timer stand-in that only fires when the test says so."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self, force=False):
        if self.cancelled and not force:
            return
        self.function(*self.args, **self.kwargs)


class TimerRecorder:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


class FakeProvider(TunnelProvider):
    """
    Plays back a script of outcomes: an exception instance is raised, a
    callable is invoked (and its return value used if it is a session),
    anything else yields a fresh session.
    """

    def __init__(self, outcomes=None, state=None):
        self.outcomes = list(outcomes or [])
        self.state = state
        self.calls = []
        self.attempts_seen = []
        self.sessions = []

    def open(self, port, subdomain):
        self.calls.append((port, subdomain))
        if self.state is not None:
            self.attempts_seen.append(self.state.retry_attempt)

        outcome = self.outcomes.pop(0) if self.outcomes else 'ok'
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            result = outcome()
            if isinstance(result, TunnelSession):
                self.sessions.append(result)
                return result

        session = TunnelSession(f"https://tunnel-{len(self.calls)}.trycloudflare.com")
        self.sessions.append(session)
        return session


class FakeServer:
    """Local listener stand-in; shutdown() can be made to hang."""

    def __init__(self, hang=False):
        self.hang = hang
        self.release = threading.Event()
        self.shutdown_calls = 0
        self.closed = threading.Event()

    def shutdown(self):
        self.shutdown_calls += 1
        if self.hang:
            self.release.wait()

    def server_close(self):
        self.closed.set()


def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def timers():
    return TimerRecorder()
