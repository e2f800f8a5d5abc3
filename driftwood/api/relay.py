"""
Streaming upstream relay for the /segment, /key and /subtitle endpoints.

Bytes are fetched with httpx and streamed back as they arrive. Hosts on the
block lists go through the proxy gateway; everything else is fetched
directly. Gateway keys never appear in an error message.
"""
from __future__ import annotations
import logging
from typing import AsyncIterator, Optional

import httpx

from ..config import Settings
from ..errors import ExtractionTimeout, InvalidRequest, ProxyFailure, UpstreamUnavailable
from ..providers.fetcher import DEFAULT_UA, referer_headers
from ..providers.gateway import HostMatcher, ProxyGateway

log = logging.getLogger("driftwood.api.relay")


class RelayStream:
    """An open upstream response. Call ``aclose`` once the body is consumed."""

    def __init__(self, response: httpx.Response, client: httpx.AsyncClient):
        self.response = response
        self.client = client

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def content_type(self) -> Optional[str]:
        return self.response.headers.get("content-type")

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self.response.aiter_bytes():
            yield chunk

    async def aread(self) -> bytes:
        try:
            return await self.response.aread()
        finally:
            await self.aclose()

    async def aclose(self):
        await self.response.aclose()
        await self.client.aclose()


class UpstreamRelay:
    def __init__(self, settings: Settings, *,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport
        self.gateway = None
        if settings.gateway:
            self.gateway = ProxyGateway(settings.gateway, blocked_hosts=settings.blocked_hosts,
                                        block_markers=settings.block_markers)
        self.key_hosts = HostMatcher(settings.key_blocked_hosts)

    def _redact(self, text: str) -> str:
        return self.gateway.redact(text) if self.gateway else text

    def _routes(self, url: str, scope: str) -> bool:
        if self.gateway is None:
            return False
        if scope == "key" and self.key_hosts.matches(url):
            return True
        return self.gateway.should_route(url)

    def channel_key_url(self, channel: str) -> str:
        template = self.settings.key_url_template
        if not template:
            raise InvalidRequest("channel keys are not configured")
        return template.format(channel=channel)

    async def open(self, url: str, *, scope: str = "segment", referer: Optional[str] = None,
                   channel: Optional[str] = None) -> RelayStream:
        via_gateway = self._routes(url, scope)
        if via_gateway:
            fetch_url = self.gateway.build_url(url, scope=scope, referer=referer, channel=channel)
            headers = {"User-Agent": DEFAULT_UA}
        else:
            fetch_url = url
            headers = {"User-Agent": DEFAULT_UA, **referer_headers(referer)}

        client = httpx.AsyncClient(timeout=self.settings.fetch_timeout, follow_redirects=True,
                                   transport=self.transport)
        req = client.build_request("GET", fetch_url, headers=headers)
        try:
            r = await client.send(req, stream=True)
        except httpx.TimeoutException:
            await client.aclose()
            raise ExtractionTimeout(f"timed out fetching {url}")
        except httpx.RequestError as e:
            await client.aclose()
            message = self._redact(f"could not reach {'gateway' if via_gateway else url}: {e}")
            if via_gateway:
                raise ProxyFailure(message, status=502)
            raise UpstreamUnavailable(message, status=502)

        if r.status_code >= 400:
            body = await r.aread()
            await r.aclose()
            await client.aclose()
            if via_gateway:
                self.gateway.raise_for_status(r.status_code, body, url)
            log.warning("Upstream %s returned %d", httpx.URL(url).host, r.status_code)
            raise UpstreamUnavailable(f"upstream returned {r.status_code}", status=r.status_code)

        return RelayStream(r, client)

    async def fetch(self, url: str, **kwargs) -> bytes:
        return await self.read(await self.open(url, **kwargs), url)

    async def read(self, stream: RelayStream, url: str) -> bytes:
        try:
            return await stream.aread()
        except httpx.TimeoutException:
            raise ExtractionTimeout(f"timed out reading {url}")
        except httpx.RequestError as e:
            raise UpstreamUnavailable(self._redact(f"connection dropped reading {url}: {e}"),
                                      status=502)
