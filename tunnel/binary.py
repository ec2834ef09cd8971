"""
Cloudflared binary management - locate, download, and make executable.
"""

import os
import platform
import shutil
import stat
from pathlib import Path
from typing import Optional

import requests

from .exceptions import BinaryDownloadError


class BinaryManager:
    """Finds a usable cloudflared binary, downloading one if needed."""

    CLOUDFLARE_DOWNLOAD_BASE = "https://github.com/cloudflare/cloudflared/releases/download"
    DEFAULT_VERSION = "2024.12.2"

    def __init__(self, config_dir: str, explicit_path: Optional[str] = None):
        """
        Initialize binary manager.

        Args:
            config_dir: Directory used to store a downloaded cloudflared
            explicit_path: Binary path from configuration, tried first
        """
        self.config_dir = Path(config_dir)
        self.explicit_path = explicit_path

    def ensure_binary(self) -> str:
        """
        Return a path to an executable cloudflared.

        Lookup order: explicit path, `cloudflared` on PATH, the copy in
        the config directory. Downloads into the config directory when
        none of these exist.

        Raises:
            BinaryDownloadError: If no binary is available and download fails
        """
        if self.explicit_path:
            if os.path.exists(self.explicit_path):
                return self.explicit_path
            raise BinaryDownloadError(f"cloudflared not found at {self.explicit_path}")

        on_path = shutil.which('cloudflared')
        if on_path:
            return on_path

        binary_path = self.get_binary_path()
        if os.path.exists(binary_path):
            if platform.system().lower() != 'windows' and not os.access(binary_path, os.X_OK):
                self._set_executable_permissions(binary_path)
            return binary_path

        self.config_dir.mkdir(parents=True, exist_ok=True)
        self._download_binary(self._detect_platform())
        self._set_executable_permissions(binary_path)
        return binary_path

    def get_binary_path(self) -> str:
        """Return path to the cloudflared binary in the config directory."""
        binary_name = "cloudflared"

        if platform.system().lower() == 'windows':
            binary_name += ".exe"

        return str(self.config_dir / binary_name)

    def _detect_platform(self) -> str:
        """
        Detect OS and architecture.

        Returns:
            Platform string (e.g., 'linux-amd64', 'windows-amd64', 'darwin-amd64')
        """
        system = platform.system().lower()
        machine = platform.machine().lower()

        os_map = {
            'linux': 'linux',
            'darwin': 'darwin',
            'windows': 'windows'
        }

        arch_map = {
            'x86_64': 'amd64',
            'amd64': 'amd64',
            'aarch64': 'arm64',
            'arm64': 'arm64',
            'armv7l': 'arm'
        }

        os_name = os_map.get(system)
        arch_name = arch_map.get(machine)

        if not os_name or not arch_name:
            raise BinaryDownloadError(
                f"Unsupported platform: {system} {machine}"
            )

        return f"{os_name}-{arch_name}"

    def _download_url(self, platform_str: str, version: str) -> str:
        # darwin builds ship as .tgz archives only; linux/windows are raw binaries
        suffix = '.exe' if platform_str.startswith('windows') else ''
        return f"{self.CLOUDFLARE_DOWNLOAD_BASE}/{version}/cloudflared-{platform_str}{suffix}"

    def _download_binary(self, platform_str: str, version: str = DEFAULT_VERSION) -> None:
        """
        Download cloudflared for platform into the config directory.

        Raises:
            BinaryDownloadError: If download fails
        """
        if platform_str.startswith('darwin'):
            raise BinaryDownloadError(
                "Automatic download is not supported on macOS; install cloudflared "
                "(brew install cloudflared) or set CLOUDFLARED_PATH"
            )

        url = self._download_url(platform_str, version)
        binary_path = self.get_binary_path()
        temp_path = f"{binary_path}.tmp"

        try:
            response = requests.get(url, stream=True, timeout=300, allow_redirects=True)
            response.raise_for_status()

            # write to temp file first, then rename
            with open(temp_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)

            os.replace(temp_path, binary_path)

        except requests.RequestException as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise BinaryDownloadError(f"Failed to download cloudflared binary: {e}")
        except OSError as e:
            raise BinaryDownloadError(f"Failed to write cloudflared binary: {e}")

    def _set_executable_permissions(self, binary_path: str) -> None:
        """chmod u+rwx on Unix systems."""
        if platform.system().lower() == 'windows':
            return

        try:
            current_permissions = os.stat(binary_path).st_mode
            os.chmod(binary_path, current_permissions | stat.S_IXUSR | stat.S_IRUSR | stat.S_IWUSR)
        except OSError:
            raise BinaryDownloadError(
                "Failed to set executable permissions"
            )
