import asyncio
from urllib.parse import parse_qs, urlparse

import pytest

from driftwood.errors import FetchTimeout, NetworkError, ProxyFailure, Upstream4xx, Upstream5xx
from driftwood.providers.base import ProxyCredential
from driftwood.providers.fetcher import Fetcher, FetchResponse
from driftwood.providers.gateway import HostMatcher, ProxyGateway

CRED = ProxyCredential(endpoint="https://gw.example", auth_key="sekret-key")
MARKERS = ("cf-error-code", "access denied")


def make_gateway(blocked=("blocked.example",)):
    return ProxyGateway(CRED, blocked_hosts=blocked, block_markers=MARKERS)


def test_host_matcher_suffix():
    m = HostMatcher(["blocked.example", ".other.example"])
    assert m.matches("https://blocked.example/a")
    assert m.matches("https://cdn.blocked.example/a")
    assert m.matches("https://x.other.example/")
    assert not m.matches("https://notblocked.example/a")
    assert not m.matches("not a url")


def test_build_url():
    url = make_gateway().build_url("https://cdn.blocked.example/seg.ts?x=1", scope="segment",
                                   referer="https://embed.example/")
    parsed = urlparse(url)
    q = parse_qs(parsed.query)
    assert parsed.netloc == "gw.example"
    assert parsed.path == "/segment"
    assert q["key"] == ["sekret-key"]
    assert q["url"] == ["https://cdn.blocked.example/seg.ts?x=1"]
    assert q["referer"] == ["https://embed.example/"]


def test_block_signature():
    gw = make_gateway()
    assert gw.is_block_signature(403, "<html>Error 1020 Access denied</html>")
    assert not gw.is_block_signature(403, "forbidden")
    assert not gw.is_block_signature(200, "access denied")


def test_gateway_errors_are_redacted():
    gw = make_gateway()
    with pytest.raises(ProxyFailure) as exc:
        gw.raise_for_status(401, b'{"error": "bad key sekret-key"}', "https://cdn.example/a")
    assert "sekret-key" not in str(exc.value)
    assert exc.value.status == 401


def test_credential_repr_hides_key():
    assert "sekret-key" not in repr(CRED)


# ── Fetcher routing ──────────────────

class FakeSend:
    def __init__(self, responses):
        self.responses = list(responses)
        self.urls = []

    async def __call__(self, method, url, **kwargs):
        self.urls.append(url)
        status, body = self.responses.pop(0)
        return FetchResponse(status=status, url=url, body=body)


def test_blocked_host_goes_through_gateway():
    fetcher = Fetcher(timeout=5, gateway=make_gateway())
    send = fetcher._send = FakeSend([(200, b"#EXTM3U")])
    text = asyncio.run(fetcher.get("https://cdn.blocked.example/list.m3u8"))
    assert text == "#EXTM3U"
    assert send.urls[0].startswith("https://gw.example/proxy?")


def test_direct_block_retries_through_gateway():
    fetcher = Fetcher(timeout=5, gateway=make_gateway(blocked=()))
    send = fetcher._send = FakeSend([(403, b"cf-error-code: 1020"), (200, b"ok")])
    resp = asyncio.run(fetcher.request("GET", "https://cdn.example/a"))
    assert resp.via_gateway
    assert resp.url == "https://cdn.example/a"
    assert send.urls[0] == "https://cdn.example/a"
    assert send.urls[1].startswith("https://gw.example/")


def test_status_mapping():
    fetcher = Fetcher(timeout=5)
    fetcher._send = FakeSend([(503, b"down"), (404, b"missing")])
    with pytest.raises(Upstream5xx):
        asyncio.run(fetcher.get("https://a.example/"))
    with pytest.raises(Upstream4xx) as exc:
        asyncio.run(fetcher.get("https://a.example/"))
    assert exc.value.status == 404


def test_gateway_timeout_keeps_timeout_kind():
    fetcher = Fetcher(timeout=5, gateway=make_gateway())

    async def slow(method, url, **kwargs):
        raise FetchTimeout("timed out", url=url)

    fetcher._send = slow
    with pytest.raises(FetchTimeout) as exc:
        asyncio.run(fetcher.get("https://cdn.blocked.example/a"))
    assert exc.value.kind == "Timeout"
    assert "sekret-key" not in str(exc.value)


def test_unreachable_gateway_is_proxy_failure():
    fetcher = Fetcher(timeout=5, gateway=make_gateway())

    async def refused(method, url, **kwargs):
        raise NetworkError(f"connection refused for {url}", url=url)

    fetcher._send = refused
    with pytest.raises(ProxyFailure) as exc:
        asyncio.run(fetcher.get("https://cdn.blocked.example/x.m3u8"))
    assert exc.value.kind == "ProxyFailure"
    assert exc.value.status == 502
    assert "sekret-key" not in exc.value.message


def test_fetcher_requires_timeout():
    with pytest.raises(ValueError):
        Fetcher(timeout=0)
