"""
XOR keystream API.

  GET {base}/api/source/{type}/{id}  → {"result": "<custom base64>", "ts": 1735...}

The result is custom-alphabet base64 of JSON XORed with a keystream derived
from (ts, fingerprint). The fingerprint is the base-36 hash of the browser
environment the player reports, which we replay from the profile.
"""
from __future__ import annotations
import logging

from ...errors import DecodeSchemeChanged
from ..adapter import AdapterOutput, AdapterRun, JsonSources, ProviderAdapter
from ..base import ContentReference, DecodeChain, DecodeStage
from ..decoders import fingerprint_hash
from ..profiles import SchemeProfile
from ..runner import register_provider
from ..stages import chain
from ..subtitles import tracks_from_json

log = logging.getLogger("driftwood.providers.keystream")


def keystream_chain(profile: SchemeProfile, timestamp) -> DecodeChain:
    fingerprint = fingerprint_hash(profile.literal("fingerprint_fields", ()))
    return chain(
        "alphabet-xor",
        DecodeStage.of("alphabet_base64", alphabet=profile.literal("alphabet")),
        DecodeStage.of("xor_keystream", timestamp=str(timestamp), fingerprint=fingerprint,
                       length=int(profile.literal("keystream_length", 32)),
                       rounds=int(profile.literal("hash_rounds", 1))),
        version=profile.version,
    )


@register_provider
class Keystream(ProviderAdapter):
    id = "keystream"
    name = "Keystream API"
    rank = 350
    profile_name = "keystream"

    def api_url(self, ref: ContentReference) -> str:
        p = self.profile
        if ref.media_type == "tv":
            path = p.literal("episode_path").format(id=ref.id, season=ref.season, episode=ref.episode)
        else:
            path = p.literal("source_path").format(type=ref.media_type, id=ref.id)
        return p.base_url + path

    async def scrape(self, ref: ContentReference, run: AdapterRun) -> AdapterOutput:
        p = self.profile
        data = await run.fetch_embed_json(self.api_url(ref), referer=p.base_url + "/")
        if not isinstance(data, dict) or not data.get("result") or data.get("ts") is None:
            raise DecodeSchemeChanged("source API response lacks result/ts")

        sources = JsonSources()
        run.decode([keystream_chain(p, data["ts"])], str(data["result"]), validator=sources)
        return AdapterOutput(
            sources=sources.stream_sources(referer=p.base_url + "/"),
            subtitles=tracks_from_json(sources.tracks()),
        )
