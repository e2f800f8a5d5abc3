"""
Proxy gateway client.

Some CDNs refuse datacenter address ranges. The gateway is a relay we run on
an allowed network; we hand it a target URL and it streams the bytes back:

  GET {endpoint}/{scope}?key={auth_key}&url={target}[&referer=...][&channel=...]

The relay itself lives elsewhere. This module only builds requests for it,
decides when to use it and interprets its errors.
"""
from __future__ import annotations
import json
import logging
from typing import Iterable, Optional
from urllib.parse import urlencode, urlparse

from ..errors import ProxyFailure
from .base import ProxyCredential

log = logging.getLogger("driftwood.providers.gateway")


class HostMatcher:
    """Suffix match of a URL's host against a list of domains."""

    def __init__(self, domains: Iterable[str] = ()):
        self.domains = tuple(d.strip().lower().lstrip(".") for d in domains if d and d.strip())

    def __bool__(self):
        return bool(self.domains)

    def matches(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        if not host:
            return False
        return any(host == d or host.endswith("." + d) for d in self.domains)


class ProxyGateway:
    def __init__(
        self,
        credential: ProxyCredential,
        *,
        blocked_hosts: Iterable[str] = (),
        block_markers: Iterable[str] = (),
    ):
        self.credential = credential
        self.blocked = HostMatcher(blocked_hosts)
        self.block_markers = tuple(m.lower() for m in block_markers if m)

    def build_url(
        self,
        target: str,
        *,
        scope: str = "proxy",
        referer: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> str:
        params = {"key": self.credential.auth_key, "url": target}
        if referer:
            params["referer"] = referer
        if channel:
            params["channel"] = channel
        return f"{self.credential.endpoint}/{scope.strip('/')}?{urlencode(params)}"

    def should_route(self, url: str) -> bool:
        return self.blocked.matches(url)

    def is_block_signature(self, status: int, body: str) -> bool:
        """A direct attempt that came back as the CDN's anti-datacenter 403."""
        if status != 403:
            return False
        lowered = body[:4096].lower()
        return any(marker in lowered for marker in self.block_markers)

    def redact(self, text: str) -> str:
        return text.replace(self.credential.auth_key, "***") if text else text

    def raise_for_status(self, status: int, body: bytes, target: str) -> None:
        if 200 <= status < 300:
            return
        detail = body[:512].decode("utf-8", "replace")
        try:
            parsed = json.loads(detail)
            if isinstance(parsed, dict) and parsed.get("error"):
                detail = str(parsed["error"])
        except ValueError:
            pass
        message = self.redact(f"gateway returned {status} for {target}: {detail}")
        log.warning(message)
        raise ProxyFailure(message, status=status)
