"""
Embed chain: embed page → relay iframe → player page → hidden div payload.

Flow:
  1. {base}/embed/{type}/{id}          → HTML with an iframe to /rcp/{hash}
  2. /rcp/{hash}                       → HTML pointing at /prorcp/ or /srcrcp/
  3. /prorcp/{hash}                    → hidden <div id=... style="display:none;">
  4. Hidden div text                   → one of the profile's decode chains
  5. Decoded text                      → manifest URLs with {vN} host placeholders

The relay page sometimes serves a Turnstile challenge instead of the player
link; we do not solve it, the provider is reported unavailable.
"""
from __future__ import annotations
import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from ...errors import DecodeSchemeChanged, UpstreamUnavailable
from ..adapter import AdapterOutput, AdapterRun, ProviderAdapter
from ..base import ContentReference, StreamSource
from ..fetcher import origin_of
from ..runner import register_provider
from ..subtitles import tracks_from_text

log = logging.getLogger("driftwood.providers.embedchain")

IFRAME_RE = re.compile(r'<iframe[^>]*src=["\']([^"\']*/rcp/[^"\']+)["\']', re.IGNORECASE)
HIDDEN_DIV_RE = re.compile(r'<div id="([A-Za-z0-9]+)" style="display:none;">([^<]+)</div>')


def _player_path_patterns(kinds):
    for kind in kinds:
        yield re.compile(r"src:\s*['\"](/" + kind + r"/[^'\"]+)['\"]", re.IGNORECASE)
    for kind in kinds:
        yield re.compile(r"['\"](/" + kind + r"/[A-Za-z0-9+/=_-]+)['\"]", re.IGNORECASE)


@register_provider
class EmbedChain(ProviderAdapter):
    id = "embedchain"
    name = "Embed Chain"
    rank = 400
    profile_name = "embedchain"

    def embed_url(self, ref: ContentReference) -> Optional[str]:
        p = self.profile
        if ref.media_type == "tv":
            path = p.literal("episode_path").format(id=ref.id, season=ref.season, episode=ref.episode)
        else:
            path = p.literal("embed_path").format(type=ref.media_type, id=ref.id)
        return p.base_url + path

    async def scrape(self, ref: ContentReference, run: AdapterRun) -> AdapterOutput:
        p = self.profile
        embed_url = self.embed_url(ref)

        # ── Step 1: embed page → relay iframe ──
        html = await run.fetch_embed(embed_url, referer=p.base_url + "/")
        m = IFRAME_RE.search(html)
        if not m:
            raise DecodeSchemeChanged("no relay iframe in embed page")
        src = m.group(1)
        rcp_url = "https:" + src if src.startswith("//") else urljoin(embed_url, src)

        # ── Step 2: relay page → player page path ──
        rcp_html = await run.hop(rcp_url, referer=embed_url)
        if any(marker in rcp_html for marker in p.literal("challenge_markers", ())):
            raise UpstreamUnavailable("relay page served a bot challenge")
        player_path = None
        for pattern in _player_path_patterns(p.literal("player_kinds", ())):
            found = pattern.search(rcp_html)
            if found:
                player_path = found.group(1)
                break
        if not player_path:
            raise DecodeSchemeChanged("no player path in relay page")
        player_url = urljoin(rcp_url, player_path)

        # ── Step 3: player page → hidden payload ──
        player_html = await run.hop(player_url, referer=rcp_url)
        div = HIDDEN_DIV_RE.search(player_html)
        if not div:
            raise DecodeSchemeChanged("no hidden payload div in player page")
        div_id, payload = div.group(1), div.group(2).strip()
        log.debug("[%s] Payload div %s (%d chars)", self.id, div_id, len(payload))

        # ── Step 4: decode ──
        urls = run.decode(p.chains, payload, placeholders=p.placeholders)
        skip = p.literal("skip_hosts", ())
        urls = [u for u in urls if not (urlparse(u).hostname or "").startswith(skip)]
        if not urls:
            raise DecodeSchemeChanged("decoded URLs only point at dead hosts")

        referer = origin_of(player_url) + "/"
        sources = [
            StreamSource(url=u, quality="auto", stream_type="hls", referer=referer,
                         title=f"{self.name} #{i + 1}")
            for i, u in enumerate(urls)
        ]
        return AdapterOutput(sources=sources, subtitles=tracks_from_text(player_html))
