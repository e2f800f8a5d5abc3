import asyncio
import json

import pytest

from driftwood.config import Settings
from driftwood.errors import NetworkError
from driftwood.providers.adapter import AdapterOutput, ProviderAdapter
from driftwood.providers.base import StreamSource
from driftwood.providers.fetcher import Fetcher, FetchResponse


class StubFetcher:
    """Serves canned bodies keyed by URL (query string ignored) and records calls."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def add(self, url, body, status=200):
        self.routes[url] = (status, body)

    async def request(self, method, url, *, headers=None, params=None, json_body=None, **kwargs):
        self.calls.append({"method": method, "url": url, "headers": headers or {},
                           "params": params, "json": json_body})
        route = self.routes.get(url.split("?", 1)[0])
        if route is None:
            raise NetworkError(f"no route for {url}", url=url)
        if callable(route):
            route = route(method, url, headers or {}, json_body)
        status, body = route if isinstance(route, tuple) else (200, route)
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        resp = FetchResponse(status=status, url=url, body=body)
        Fetcher._raise_for_status(resp)
        return resp

    async def get(self, url, **kwargs):
        return (await self.request("GET", url, **kwargs)).text()

    async def get_json(self, url, **kwargs):
        return (await self.request("GET", url, **kwargs)).json()

    async def get_bytes(self, url, **kwargs):
        return await self.request("GET", url, **kwargs)

    async def close(self):
        pass


class StubAdapter(ProviderAdapter):
    """Adapter whose outcome is fixed up front: a URL to return or an exception to raise."""

    def __init__(self, id, outcome, *, rank=0, delay=0.0, media_types=("movie", "tv"),
                 verify=False):
        super().__init__(Settings(verify_manifests=verify))
        self.id = id
        self.name = id
        self.rank = rank
        self.outcome = outcome
        self.delay = delay
        self.media_types = media_types
        self.calls = 0
        self.finished = False

    async def scrape(self, ref, run):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished = True
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return AdapterOutput(sources=[StreamSource(url=self.outcome)])


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def stub_adapter():
    return StubAdapter
