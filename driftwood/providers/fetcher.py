"""
HTTP fetcher for provider adapters. Wraps aiohttp with common defaults,
header templates, a mandatory timeout, and optional proxy gateway routing.

Every failure leaves as one of NetworkError / Upstream4xx / Upstream5xx /
FetchTimeout, or ProxyFailure when the gateway could not be reached or refused.
"""
from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urljoin, urlencode, urlparse

import aiohttp

from ..errors import (
    DecodeError, FetchTimeout, NetworkError, ProxyFailure, Upstream4xx, Upstream5xx,
)
from .gateway import ProxyGateway

log = logging.getLogger("driftwood.providers.fetcher")

DEFAULT_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

BASE_HEADERS = {
    "User-Agent": DEFAULT_UA,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}" if parsed.scheme and parsed.netloc else ""


def referer_headers(referer: Optional[str], *, origin: bool = True) -> dict[str, str]:
    """Referer plus the matching Origin, the pair most embed hosts check."""
    if not referer:
        return {}
    headers = {"Referer": referer}
    if origin and origin_of(referer):
        headers["Origin"] = origin_of(referer)
    return headers


@dataclass
class FetchResponse:
    status: int
    url: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    via_gateway: bool = False

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", self.headers.get("content-type", ""))

    def text(self) -> str:
        return self.body.decode("utf-8", "replace")

    def json(self) -> Any:
        try:
            return json.loads(self.body)
        except ValueError as e:
            raise DecodeError(f"invalid JSON from {self.url}: {e}")


class Fetcher:
    def __init__(
        self,
        *,
        timeout: float = 10,
        gateway: Optional[ProxyGateway] = None,
        headers: Optional[dict[str, str]] = None,
        follow_redirects: bool = True,
    ):
        if not timeout or timeout <= 0:
            raise ValueError("Fetcher timeout must be a positive number of seconds")
        self.timeout = timeout
        self.gateway = gateway
        self.base_headers = {**BASE_HEADERS, **(headers or {})}
        self.follow_redirects = follow_redirects
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout, connect=min(4, self.timeout)),
                headers=self.base_headers,
                connector=aiohttp.TCPConnector(ssl=False),
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    # ── core request ──────────────────

    async def request(
        self,
        method: str,
        url: str,
        *,
        base_url: str | None = None,
        headers: dict | None = None,
        params: dict | None = None,
        data: dict | str | None = None,
        json_body: dict | None = None,
        follow_redirects: bool | None = None,
        timeout: float | None = None,
        via_gateway: bool | None = None,
        scope: str = "proxy",
    ) -> FetchResponse:
        full = urljoin(base_url, url) if base_url else url
        if params:
            full = f"{full}{'&' if '?' in full else '?'}{urlencode(params)}"
        headers = headers or {}
        redirects = self.follow_redirects if follow_redirects is None else follow_redirects

        gateway = self.gateway if method.upper() == "GET" else None
        if gateway and (via_gateway or (via_gateway is None and gateway.should_route(full))):
            return await self._send_via_gateway(full, headers, timeout, scope)

        resp = await self._send(method, full, headers=headers, data=data, json_body=json_body,
                                follow_redirects=redirects, timeout=timeout)
        if gateway and via_gateway is not False and gateway.is_block_signature(resp.status, resp.text()):
            log.info("Direct fetch of %s blocked, retrying through gateway", urlparse(full).hostname)
            return await self._send_via_gateway(full, headers, timeout, scope)

        self._raise_for_status(resp)
        return resp

    async def _send(self, method, url, *, headers, data=None, json_body=None,
                    follow_redirects=True, timeout=None) -> FetchResponse:
        session = await self._get_session()
        kwargs: dict[str, Any] = {"headers": headers, "allow_redirects": follow_redirects}
        if data is not None:
            kwargs["data"] = data
        if json_body is not None:
            kwargs["json"] = json_body
        if timeout:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)
        try:
            async with session.request(method, url, **kwargs) as resp:
                body = await resp.read()
                return FetchResponse(
                    status=resp.status,
                    url=str(resp.url),
                    body=body,
                    headers=dict(resp.headers),
                )
        except asyncio.TimeoutError:
            raise FetchTimeout(f"timed out fetching {url}", url=url)
        except aiohttp.ClientError as e:
            raise NetworkError(f"network error fetching {url}: {e}", url=url)

    async def _send_via_gateway(self, target, headers, timeout, scope) -> FetchResponse:
        gateway = self.gateway
        gw_url = gateway.build_url(target, scope=scope, referer=headers.get("Referer"))
        try:
            resp = await self._send("GET", gw_url, headers={}, timeout=timeout)
        except FetchTimeout:
            raise FetchTimeout(f"timed out fetching {target} through gateway", url=target)
        except NetworkError as e:
            raise ProxyFailure(gateway.redact(f"could not reach gateway for {target}: {e}"),
                               status=502)
        gateway.raise_for_status(resp.status, resp.body, target)
        resp.url = target
        resp.via_gateway = True
        return resp

    @staticmethod
    def _raise_for_status(resp: FetchResponse):
        if resp.status < 400:
            return
        snippet = resp.body[:300].decode("utf-8", "replace")
        if resp.status >= 500:
            raise Upstream5xx(f"{resp.url} returned {resp.status}", url=resp.url,
                              status=resp.status, body=snippet)
        raise Upstream4xx(f"{resp.url} returned {resp.status}", url=resp.url,
                          status=resp.status, body=snippet)

    # ── convenience methods ──────────────────

    async def get(self, url: str, **kwargs) -> str:
        resp = await self.request("GET", url, **kwargs)
        return resp.text()

    async def get_json(self, url: str, **kwargs) -> dict | list:
        resp = await self.request("GET", url, **kwargs)
        return resp.json()

    async def get_bytes(self, url: str, **kwargs) -> FetchResponse:
        return await self.request("GET", url, **kwargs)
