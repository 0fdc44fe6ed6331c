"""Tests for the blocking HTTP helpers and logging utilities."""

import logging

import pytest

requests = pytest.importorskip("requests")

from common import http_client
from common.logging_utils import Timer, configure_logging, extra_context, safe_url


class FakeResponse:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text


class TestGetJson:
    """Test get_json status and parse handling."""

    def test_parses_json(self, monkeypatch):
        seen = {}

        def fake_get(url, timeout=None, headers=None):
            seen.update(url=url, timeout=timeout, headers=headers)
            return FakeResponse(200, '{"imports": {}}')

        monkeypatch.setattr(http_client.requests, "get", fake_get)

        status, data = http_client.get_json("https://example.com/map.json")

        assert status == 200
        assert data == {"imports": {}}
        assert seen["headers"]["User-Agent"].startswith("denoloader")
        assert seen["timeout"] == 30

    def test_invalid_json(self, monkeypatch):
        monkeypatch.setattr(http_client.requests, "get", lambda url, **kw: FakeResponse(200, "<html>"))
        assert http_client.get_json("https://example.com/map.json") == (200, None)

    def test_error_status(self, monkeypatch):
        monkeypatch.setattr(http_client.requests, "get", lambda url, **kw: FakeResponse(404, "{}"))
        assert http_client.get_json("https://example.com/map.json") == (404, None)

    def test_transport_failure(self, monkeypatch):
        def boom(url, **kwargs):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(http_client.requests, "get", boom)

        status, text = http_client.get_text("https://example.com/map.json")

        assert status == 0
        assert "refused" in text

    def test_timeout(self, monkeypatch):
        def slow(url, **kwargs):
            raise requests.Timeout()

        monkeypatch.setattr(http_client.requests, "get", slow)

        assert http_client.get_text("https://example.com/map.json", timeout=1) == (0, "timeout")


class TestLoggingUtils:
    def test_safe_url_strips_credentials(self):
        cleaned = safe_url("https://user:pw@example.com/mod.ts?token=abc&v=1")
        assert "pw" not in cleaned
        assert "abc" not in cleaned
        assert "v=1" in cleaned

    def test_safe_url_truncates_data_urls(self):
        url = "data:text/javascript," + "x" * 200
        assert safe_url(url) == url[:64] + "..."

    def test_extra_context_drops_none(self):
        assert extra_context(event="fetch", target=None) == {"event": "fetch"}

    def test_timer(self):
        with Timer() as t:
            pass
        assert t.duration_ms() >= 0

    def test_configure_logging_level_from_env(self, monkeypatch):
        root = logging.getLogger()
        previous = root.level
        monkeypatch.setenv("DENOLOADER_LOG_LEVEL", "debug")
        try:
            configure_logging()
            assert root.level == logging.DEBUG
            configure_logging("error")
            assert root.level == logging.ERROR
        finally:
            root.setLevel(previous)
