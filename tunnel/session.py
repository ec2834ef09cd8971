"""
A single running reverse tunnel and its lifecycle events.
"""

import logging
import os
import signal
import subprocess
import threading
import time
from collections import defaultdict
from typing import Callable, Optional

from .exceptions import TunnelProcessError

EVENT_ERROR = 'error'
EVENT_CLOSE = 'close'


class TunnelSession:
    """
    Wraps one cloudflared process that is serving a public URL.

    Emits:
        error(exc): the process died on its own with a non-zero exit code
        close(): the process is gone, for whatever reason (emitted once)
    """

    def __init__(self, url: str, process: Optional[subprocess.Popen] = None,
                 log_path: Optional[str] = None, requested_subdomain: Optional[str] = None,
                 logger: Optional[logging.Logger] = None):
        self.url = url.rstrip('/')
        self.process = process
        self.log_path = log_path
        self.requested_subdomain = requested_subdomain
        self.logger = logger or logging.getLogger(__name__)
        self.started_at = time.time()

        self._callbacks = defaultdict(list)
        self._lock = threading.Lock()
        self._closing = False
        self._close_emitted = False
        self._watcher = None

    def __repr__(self):
        return f"<TunnelSession {self.url}>"

    @property
    def webhook_url(self) -> str:
        return f"{self.url}/webhook"

    def on(self, event: str, callback: Callable) -> None:
        """Register a callback for 'error' or 'close'."""
        with self._lock:
            self._callbacks[event].append(callback)

    def remove_all_listeners(self) -> None:
        with self._lock:
            self._callbacks.clear()

    def _emit(self, event: str, *args) -> None:
        """Fire callbacks for an event."""
        with self._lock:
            if event == EVENT_CLOSE:
                if self._close_emitted:
                    return
                self._close_emitted = True
            callbacks = list(self._callbacks.get(event, []))

        for cb in callbacks:
            try:
                cb(*args)
            except Exception as e:
                self.logger.error(f"Tunnel {event} callback failed: {e}")

    def is_alive(self) -> bool:
        if self._closing:
            return False
        if self.process is None:
            return True
        return self.process.poll() is None

    def start_watching(self) -> None:
        """
        Drain process output into the tunnel log and report when it exits.

        Reading the pipe also keeps cloudflared from blocking on a full
        stdout buffer.
        """
        if self.process is None or self._watcher is not None:
            return

        self._watcher = threading.Thread(
            target=self._watch,
            name=f"tunnel-watch-{self.process.pid}",
            daemon=True,
        )
        self._watcher.start()

    def _watch(self):
        try:
            if self.process.stdout is not None:
                if self.log_path:
                    with open(self.log_path, 'a') as log_file:
                        for line in self.process.stdout:
                            log_file.write(line)
                            log_file.flush()
                else:
                    for _ in self.process.stdout:
                        pass
        except (OSError, ValueError):
            # pipe closed underneath us during close()
            pass

        returncode = self.process.wait()

        if not self._closing and returncode != 0:
            self._emit(EVENT_ERROR, TunnelProcessError(
                f"cloudflared exited with code {returncode}", returncode=returncode
            ))
        self._emit(EVENT_CLOSE)

    def close(self, timeout: float = 5) -> None:
        """
        Stop the tunnel. Safe to call more than once.

        Sends SIGTERM (CTRL_BREAK_EVENT on Windows), waits up to `timeout`
        seconds, then kills.
        """
        with self._lock:
            if self._closing:
                return
            self._closing = True

        process = self.process
        if process is None:
            self._emit(EVENT_CLOSE)
            return

        try:
            if process.poll() is None:
                if os.name == 'nt':
                    process.send_signal(signal.CTRL_BREAK_EVENT)
                else:
                    process.terminate()

                try:
                    process.wait(timeout=timeout)
                except subprocess.TimeoutExpired:
                    self.logger.warning(f"Tunnel process {process.pid} did not exit, force-killing")
                    process.kill()
                    process.wait(timeout=timeout)
        except Exception as e:
            # the session is being discarded anyway
            self.logger.debug(f"Ignoring error while closing tunnel: {e}")

        if self._watcher is None:
            self._emit(EVENT_CLOSE)
