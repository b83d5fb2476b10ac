import asyncio
import time

import pytest

from ecom_crawler.config.crawl_config import CrawlSettings
from ecom_crawler.crawler.fetcher import FetchError, Fetcher, FetchResponse


class FakeFetcher(Fetcher):
    """Serves canned responses and records when each fetch was issued"""

    def __init__(self, routes=None, latency: float = 0.0):
        self.routes = dict(routes or {})
        self.latency = latency
        self.calls = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.closed = False

    async def fetch(self, url, headers=None, timeout=None, binary=False, accept_statuses=()):
        self.calls.append((url, time.monotonic()))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            route = self.routes.get(url)
            if route is None:
                raise FetchError(url, "HTTP 404", status=404)
            if isinstance(route, Exception):
                raise route
            if isinstance(route, tuple):
                status, body = route
            else:
                status, body = 200, route
            if not (200 <= status < 300) and status not in accept_statuses:
                raise FetchError(url, f"HTTP {status}", status=status)
            if binary and isinstance(body, str):
                body = body.encode('utf-8')
            return FetchResponse(url=url, status=status, body=body, content_type='text/html; charset=utf-8')
        finally:
            self.in_flight -= 1

    def fetched(self):
        return [url for url, _ in self.calls]

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def settings():
    return CrawlSettings.for_domains(
        ['shop.test'],
        request_delay=0,
        workers=1,
        max_depth=3,
    )


def page(*hrefs, scripts=()):
    links = ''.join(f'<a href="{href}">link</a>' for href in hrefs)
    blocks = ''.join(scripts)
    return f'<html><head>{blocks}</head><body>{links}</body></html>'
