"""Unit tests for tunnel.binary - BinaryManager."""

import os

import pytest
import requests

from tunnel import binary as binary_mod
from tunnel.binary import BinaryManager
from tunnel.exceptions import BinaryDownloadError


class FakeDownload:
    def __init__(self, chunks, status_error=None):
        self.chunks = chunks
        self.status_error = status_error

    def raise_for_status(self):
        if self.status_error:
            raise self.status_error

    def iter_content(self, chunk_size=8192):
        return iter(self.chunks)


@pytest.fixture
def no_path_binary(monkeypatch):
    monkeypatch.setattr(binary_mod.shutil, 'which', lambda name: None)


class TestEnsureBinary:
    def test_explicit_path(self, tmp_path):
        exe = tmp_path / 'my-cloudflared'
        exe.write_text('')
        manager = BinaryManager(str(tmp_path / 'cfg'), explicit_path=str(exe))
        assert manager.ensure_binary() == str(exe)

    def test_explicit_path_missing(self, tmp_path):
        manager = BinaryManager(str(tmp_path), explicit_path=str(tmp_path / 'gone'))
        with pytest.raises(BinaryDownloadError):
            manager.ensure_binary()

    def test_found_on_path(self, tmp_path, monkeypatch):
        monkeypatch.setattr(binary_mod.shutil, 'which', lambda name: '/usr/local/bin/cloudflared')
        assert BinaryManager(str(tmp_path)).ensure_binary() == '/usr/local/bin/cloudflared'

    def test_existing_copy_in_config_dir(self, tmp_path, no_path_binary):
        manager = BinaryManager(str(tmp_path))
        path = manager.get_binary_path()
        with open(path, 'w') as f:
            f.write('')
        assert manager.ensure_binary() == path

    @pytest.mark.skipif(os.name == 'nt', reason="unix permissions")
    def test_downloads_when_missing(self, tmp_path, no_path_binary, monkeypatch):
        requested = []

        def fake_get(url, **kwargs):
            requested.append(url)
            return FakeDownload([b'\x7fELF', b'rest'])

        monkeypatch.setattr(binary_mod.requests, 'get', fake_get)
        manager = BinaryManager(str(tmp_path / 'cfg'))
        monkeypatch.setattr(manager, '_detect_platform', lambda: 'linux-amd64')

        path = manager.ensure_binary()

        assert requested == [
            f"{BinaryManager.CLOUDFLARE_DOWNLOAD_BASE}/{BinaryManager.DEFAULT_VERSION}/cloudflared-linux-amd64"
        ]
        with open(path, 'rb') as f:
            assert f.read() == b'\x7fELFrest'
        assert os.access(path, os.X_OK)
        assert not os.path.exists(path + '.tmp')

    def test_download_failure(self, tmp_path, no_path_binary, monkeypatch):
        def fake_get(url, **kwargs):
            return FakeDownload([], status_error=requests.HTTPError("404"))

        monkeypatch.setattr(binary_mod.requests, 'get', fake_get)
        manager = BinaryManager(str(tmp_path))
        monkeypatch.setattr(manager, '_detect_platform', lambda: 'linux-arm64')

        with pytest.raises(BinaryDownloadError):
            manager.ensure_binary()
        assert not os.path.exists(manager.get_binary_path())

    def test_macos_requires_install(self, tmp_path, no_path_binary, monkeypatch):
        manager = BinaryManager(str(tmp_path))
        monkeypatch.setattr(manager, '_detect_platform', lambda: 'darwin-arm64')
        with pytest.raises(BinaryDownloadError):
            manager.ensure_binary()


class TestDetectPlatform:
    def test_linux_amd64(self, monkeypatch):
        monkeypatch.setattr(binary_mod.platform, 'system', lambda: 'Linux')
        monkeypatch.setattr(binary_mod.platform, 'machine', lambda: 'x86_64')
        assert BinaryManager('/tmp')._detect_platform() == 'linux-amd64'

    def test_unsupported(self, monkeypatch):
        monkeypatch.setattr(binary_mod.platform, 'system', lambda: 'Plan9')
        monkeypatch.setattr(binary_mod.platform, 'machine', lambda: 'mips')
        with pytest.raises(BinaryDownloadError):
            BinaryManager('/tmp')._detect_platform()
