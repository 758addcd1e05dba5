"""Test configuration and fixtures for the relay proxy."""

import io

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from relay_proxy.app import create_app
from relay_proxy.cache import ResponseCache
from relay_proxy.config import TestingConfig
from relay_proxy.errors import UpstreamError


def make_upstream_response(body: bytes = b'', status: int = 200, content_type: str = 'text/html',
                           headers: dict = None, url: str = 'http://example.com/') -> requests.Response:
    """Build a streamed requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status
    response.reason = 'OK' if status == 200 else ''
    response.url = url
    response.headers = CaseInsensitiveDict(headers or {})
    if content_type:
        response.headers.setdefault('Content-Type', content_type)
    response.raw = io.BytesIO(body)
    return response


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    """Stands in for UpstreamFetcher and records every upstream call."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, url: str, body: bytes = b'', status: int = 200, content_type: str = 'text/html',
            headers: dict = None, final_url: str = None):
        self.routes[url] = dict(body=body, status=status, content_type=content_type,
                                headers=headers, url=final_url or url)

    def fail(self, url: str, error: Exception):
        self.routes[url] = error

    def fetch(self, url, method='GET', data=None, headers=None):
        self.calls.append({'url': url, 'method': method, 'data': data, 'headers': headers})
        route = self.routes.get(url)
        if route is None:
            raise UpstreamError(404, 'Not Found')
        if isinstance(route, Exception):
            raise route
        if not 200 <= route['status'] < 300:
            raise UpstreamError(route['status'], 'Upstream Said No')
        return make_upstream_response(**route)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def cache(clock) -> ResponseCache:
    return ResponseCache(max_size=3, ttl=120, clock=clock)


@pytest.fixture
def app(cache, fetcher):
    return create_app(TestingConfig, cache=cache, fetcher=fetcher)


@pytest.fixture
def client(app):
    return app.test_client()
