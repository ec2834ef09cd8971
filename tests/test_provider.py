"""Tests for tunnel.provider - CloudflaredProvider against a fake cloudflared."""

import os
import stat
import sys
import threading

import pytest

from tunnel.binary import BinaryManager
from tunnel.exceptions import BinaryDownloadError, TunnelCreationError
from tunnel.provider import CloudflaredProvider

pytestmark = pytest.mark.skipif(os.name == 'nt', reason="fake cloudflared is a shebang script")


def _fake_cloudflared(tmp_path, body):
    """Write an executable script standing in for cloudflared."""
    script = tmp_path / 'cloudflared'
    script.write_text(
        f"#!{sys.executable}\n"
        "import sys, time\n"
        f"open({str(tmp_path / 'argv.txt')!r}, 'w').write(' '.join(sys.argv[1:]))\n"
        + body
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


def _provider(flask_app, tmp_path, binary, timeout=10):
    return CloudflaredProvider(
        flask_app,
        BinaryManager(str(tmp_path), explicit_path=binary),
        log_dir=str(tmp_path / 'logs'),
        timeout=timeout,
    )


class TestCloudflaredProvider:
    def test_open_returns_session_with_url(self, flask_app, tmp_path):
        binary = _fake_cloudflared(tmp_path, (
            "print('INF Requesting new quick Tunnel on trycloudflare.com...', flush=True)\n"
            "print('INF |  https://quiet-river-1234.trycloudflare.com  |', flush=True)\n"
            "time.sleep(30)\n"
        ))
        provider = _provider(flask_app, tmp_path, binary)

        session = provider.open(8080, 'respondio')
        try:
            assert session.url == 'https://quiet-river-1234.trycloudflare.com'
            assert session.requested_subdomain == 'respondio'
            assert session.is_alive()
            assert session._watcher is None
            argv = (tmp_path / 'argv.txt').read_text()
            assert '--url http://127.0.0.1:8080' in argv
        finally:
            session.close()
        assert not session.is_alive()
        assert 'Quick Tunnel Started' in (tmp_path / 'logs' / 'tunnel.log').read_text()

    def test_process_death_after_connect_emits_events(self, flask_app, tmp_path):
        binary = _fake_cloudflared(tmp_path, (
            "print('https://brief-cat-9.trycloudflare.com', flush=True)\n"
            "time.sleep(0.2)\n"
            "sys.exit(1)\n"
        ))
        session = _provider(flask_app, tmp_path, binary).open(8080, 'respondio')
        events = []
        closed = threading.Event()
        session.on('error', lambda err: events.append('error'))
        session.on('close', lambda: (events.append('close'), closed.set()))
        session.start_watching()

        assert closed.wait(10)
        assert events == ['error', 'close']

    def test_exit_without_url_raises(self, flask_app, tmp_path):
        binary = _fake_cloudflared(tmp_path, (
            "print('ERR failed to request quick Tunnel', flush=True)\n"
            "sys.exit(1)\n"
        ))
        with pytest.raises(TunnelCreationError):
            _provider(flask_app, tmp_path, binary).open(8080, 'respondio')

    def test_timeout_without_url_raises(self, flask_app, tmp_path):
        binary = _fake_cloudflared(tmp_path, (
            "print('INF still waiting', flush=True)\n"
            "time.sleep(30)\n"
        ))
        with pytest.raises(TunnelCreationError):
            _provider(flask_app, tmp_path, binary, timeout=1).open(8080, 'respondio')

    def test_missing_binary_raises(self, flask_app, tmp_path):
        provider = _provider(flask_app, tmp_path, str(tmp_path / 'absent'))
        with pytest.raises(BinaryDownloadError):
            provider.open(8080, 'respondio')

    def test_metrics_hostname(self, flask_app, tmp_path, monkeypatch):
        class FakeResponse:
            status_code = 200

            def json(self):
                return {'hostname': 'metric-host.trycloudflare.com'}

        requested = []

        def fake_get(url, timeout):
            requested.append(url)
            return FakeResponse()

        monkeypatch.setattr('tunnel.provider.requests.get', fake_get)
        provider = _provider(flask_app, tmp_path, str(tmp_path / 'unused'))
        assert provider._query_metrics('20241') == 'https://metric-host.trycloudflare.com'
        assert requested == ['http://127.0.0.1:20241/quicktunnel']

    def test_metrics_empty_hostname(self, flask_app, tmp_path, monkeypatch):
        class FakeResponse:
            status_code = 200

            def json(self):
                return {'hostname': ''}

        monkeypatch.setattr('tunnel.provider.requests.get', lambda url, timeout: FakeResponse())
        provider = _provider(flask_app, tmp_path, str(tmp_path / 'unused'))
        assert provider._query_metrics('20241') is None
