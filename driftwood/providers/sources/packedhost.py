"""
Packed script host.

The embed page carries its player config inside an obfuscated script, either
Dean Edwards' p,a,c,k,e,d packer or the numeral-script variant
eval(function(h,u,n,t,e,r){...}("ENCODED",u,"ALPHABET",offset,base,r)).
Both unpack to JS containing file:"...m3u8" and, optionally, a sub.info URL
pointing at a JSON subtitle list.
"""
from __future__ import annotations
import logging
import re
from typing import Optional
from urllib.parse import unquote

from ...errors import DecodeSchemeChanged, ProxyFailure, UpstreamUnavailable
from .. import unpacker
from ..adapter import AdapterOutput, AdapterRun, ProviderAdapter
from ..base import ContentReference, DecodeChain, DecodeStage, StreamSource
from ..fetcher import origin_of
from ..runner import register_provider
from ..stages import chain
from ..subtitles import tracks_from_json, tracks_from_text

log = logging.getLogger("driftwood.providers.packedhost")

NUMERAL_SCRIPT_RE = re.compile(
    r'eval\(function\(h,u,n,t,e,r\).*?\}\("((?:[^"\\]|\\.)*)",\s*\w+,\s*"([^"]+)",\s*(\d+),\s*(\d+),\s*\w+\)\)',
    re.DOTALL,
)
SUB_INFO_RE = re.compile(r'sub\.info=([^"\'&\s]+)')


def packed_payload(html: str, version: str) -> tuple[list[DecodeChain], str]:
    """Chains and payload for whatever packed script the page carries."""
    if unpacker.detect(html):
        return [chain("packer", DecodeStage.of("unpack"), version=version)], html
    m = NUMERAL_SCRIPT_RE.search(html)
    if m:
        encoded, alphabet, offset, base = m.groups()
        numeral = chain(
            "numeral-script",
            DecodeStage.of("numeral_script", alphabet=alphabet, offset=int(offset), base=int(base)),
            version=version,
        )
        return [numeral], encoded
    return [], html


@register_provider
class PackedHost(ProviderAdapter):
    id = "packedhost"
    name = "Packed Host"
    rank = 300
    profile_name = "packedhost"

    def embed_url(self, ref: ContentReference) -> Optional[str]:
        p = self.profile
        if ref.media_type == "tv":
            path = p.literal("episode_path").format(id=ref.id, season=ref.season, episode=ref.episode)
        else:
            path = p.literal("embed_path").format(id=ref.id)
        return p.base_url + path

    async def scrape(self, ref: ContentReference, run: AdapterRun) -> AdapterOutput:
        p = self.profile
        url = self.embed_url(ref)
        html = await run.fetch_embed(url, referer=p.base_url + "/")

        chains, payload = packed_payload(html, p.version)
        if not chains:
            raise DecodeSchemeChanged("no packed player script in embed page")

        file_re = re.compile(p.literal("file_pattern"))
        unpacked = {}

        def check(text: str) -> list[str]:
            found = [f for f in file_re.findall(text) if f.startswith(("http://", "https://"))]
            found = [f for f in found if ".m3u8" in f or f.split("?", 1)[0].endswith(".mp4")]
            if found:
                unpacked["text"] = text
            return found

        files = run.decode(chains, payload, validator=check)

        referer = origin_of(url) + "/"
        sources = [
            StreamSource(url=f, quality="auto",
                         stream_type="hls" if ".m3u8" in f else "mp4",
                         referer=referer, title=self.name)
            for f in files
        ]
        subtitles = tracks_from_text(unpacked["text"])
        subtitles += await self._sub_info(run, unpacked["text"] + html, referer)
        return AdapterOutput(sources=sources, subtitles=subtitles)

    async def _sub_info(self, run: AdapterRun, text: str, referer: str):
        m = SUB_INFO_RE.search(text)
        if not m:
            return []
        try:
            data = await run.fetcher.get_json(unquote(m.group(1)), headers={"Referer": referer})
        except (UpstreamUnavailable, DecodeSchemeChanged, ProxyFailure) as e:
            # subtitles are optional; the stream already validated
            log.debug("[%s] sub.info fetch failed: %s", self.id, e)
            return []
        return tracks_from_json(data if isinstance(data, list) else [])
