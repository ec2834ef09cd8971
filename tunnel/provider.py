"""
Tunnel providers - turn a local port into a public URL.
"""

import os
import re
import subprocess
import threading
import time
from abc import ABC, abstractmethod

import requests

from .binary import BinaryManager
from .exceptions import TunnelCreationError
from .session import TunnelSession

QUICK_TUNNEL_URL_PATTERN = re.compile(r'https://(?!api\.)[a-z0-9-]+\.trycloudflare\.com')
METRICS_PATTERN = re.compile(r'(?:Starting metrics server|Metrics server listening) on (?:127\.0\.0\.1|localhost):(\d+)')


class TunnelProvider(ABC):
    """Base class for anything that can open a reverse tunnel."""

    @abstractmethod
    def open(self, port: int, subdomain: str) -> TunnelSession:
        """
        Establish a tunnel to the given local port.

        Raises:
            TunnelError: If the tunnel could not be established
        """


class CloudflaredProvider(TunnelProvider):
    """Opens Cloudflare Quick Tunnels (trycloudflare.com) via cloudflared."""

    def __init__(self, app, binary_manager: BinaryManager, log_dir: str,
                 local_host: str = '127.0.0.1', timeout: int = 45):
        """
        Args:
            app: Flask application instance (for logging)
            binary_manager: Locates the cloudflared executable
            log_dir: Directory for tunnel.log
            local_host: Host cloudflared forwards traffic to
            timeout: Seconds to wait for the public URL
        """
        self.app = app
        self.binary_manager = binary_manager
        self.log_dir = log_dir
        self.local_host = local_host
        self.timeout = timeout

    def open(self, port: int, subdomain: str) -> TunnelSession:
        # quick tunnels always get a random hostname
        binary_path = self.binary_manager.ensure_binary()
        local_url = f"http://{self.local_host}:{port}"

        self.app.logger.info(
            f"Starting Cloudflare Quick Tunnel to {local_url} (requested subdomain '{subdomain}')"
        )

        os.makedirs(self.log_dir, exist_ok=True)
        log_path = os.path.join(self.log_dir, 'tunnel.log')

        try:
            process = subprocess.Popen(
                [binary_path, 'tunnel', '--no-autoupdate', '--url', local_url],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                start_new_session=True
            )
        except OSError as e:
            raise TunnelCreationError(f"Could not start cloudflared: {e}")

        # readline() blocks, so enforce the timeout by killing the process
        watchdog = threading.Timer(self.timeout, process.kill)
        watchdog.daemon = True
        watchdog.start()

        try:
            tunnel_url = self._read_tunnel_url(process, log_path)
        finally:
            watchdog.cancel()

        if not tunnel_url:
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait()
            raise TunnelCreationError(
                f"No Quick Tunnel URL from cloudflared within {self.timeout}s "
                f"(exit code {process.poll()})"
            )

        session = TunnelSession(
            tunnel_url,
            process=process,
            log_path=log_path,
            requested_subdomain=subdomain,
            logger=self.app.logger,
        )
        # the caller starts watching once its listeners are attached
        return session

    def _read_tunnel_url(self, process: subprocess.Popen, log_path: str):
        """Scan cloudflared output for the assigned URL, copying it to the log."""
        with open(log_path, 'a') as log_file:
            log_file.write(f"\n--- Quick Tunnel Started at {time.ctime()} ---\n")

            for line in process.stdout:
                log_file.write(line)
                log_file.flush()
                self.app.logger.debug(f"cloudflared: {line.strip()}")

                match = QUICK_TUNNEL_URL_PATTERN.search(line)
                if match:
                    return match.group(0)

                metrics_match = METRICS_PATTERN.search(line)
                if metrics_match:
                    url = self._query_metrics(metrics_match.group(1))
                    if url:
                        return url

        return None

    def _query_metrics(self, metrics_port: str):
        """Ask the cloudflared metrics server for the quick tunnel hostname."""
        try:
            resp = requests.get(f"http://127.0.0.1:{metrics_port}/quicktunnel", timeout=2)
        except requests.RequestException as e:
            self.app.logger.debug(f"Metrics query failed: {e}")
            return None

        if resp.status_code != 200:
            return None

        try:
            hostname = resp.json().get('hostname')
        except ValueError:
            return None

        if not hostname:
            return None
        return hostname if hostname.startswith('https://') else f"https://{hostname}"
