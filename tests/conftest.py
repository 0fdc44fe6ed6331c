"""Shared test doubles for the aiohttp-backed fetch cache."""

import asyncio

import pytest


class DummyResponse:
    """Minimal stand-in for aiohttp.ClientResponse."""

    def __init__(self, status, headers=None, body=b""):
        self.status = status
        self.headers = headers or {}
        self._body = body
        self.released = False

    async def read(self):
        return self._body

    def release(self):
        self.released = True


class DummySession:
    """Serves canned responses per URL and records every request.

    A route value may be a single ``(status, headers, body)`` tuple or a list
    of them, consumed one per request.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.responses = []
        self.closed = False

    async def request(self, method, url, allow_redirects=True, **kwargs):
        self.calls.append((method, url, allow_redirects))
        # yield so concurrent callers really overlap
        await asyncio.sleep(0)
        route = self.routes.get(url)
        if route is None:
            response = DummyResponse(404, {}, b"not found")
        else:
            if isinstance(route, list):
                route = route.pop(0) if len(route) > 1 else route[0]
            status, headers, body = route
            response = DummyResponse(status, headers, body)
        self.responses.append(response)
        return response

    async def close(self):
        self.closed = True


@pytest.fixture
def dummy_session():
    """Factory for DummySession instances."""
    return DummySession
