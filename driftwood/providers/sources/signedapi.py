"""
Signed API with an opaque decrypt routine.

  1. GET {base}/api/time                      → {"timestamp": ...}   (clock sync)
  2. GET {base}/api/{type}/{id}/images        → {"data": "<ciphertext>"}
     with X-Api-Key / X-Request-Timestamp / X-Request-Nonce / X-Request-Signature
  3. ciphertext → decrypt delegate            → JSON {"sources": [...], "tracks": [...]}

The provider's decrypt routine ships as a compiled blob. We only speak its
call contract; an operator-run service (DRIFTWOOD_DECRYPT_SERVICE) hosts it.
Without one configured the adapter is disabled.
"""
from __future__ import annotations
import logging

from ...errors import DecodeSchemeChanged
from ..adapter import AdapterOutput, AdapterRun, JsonSources, ProviderAdapter, Stage
from ..base import ContentReference
from ..fetcher import Fetcher, referer_headers
from ..opaque import DecryptDelegate, RemoteDecryptDelegate, ServerClock, signed_headers
from ..runner import register_provider
from ..subtitles import tracks_from_json

log = logging.getLogger("driftwood.providers.signedapi")


@register_provider
class SignedApi(ProviderAdapter):
    id = "signedapi"
    name = "Signed API"
    rank = 250
    profile_name = "signedapi"

    @property
    def disabled(self) -> bool:
        return not (self.settings.decrypt_service and self.settings.decrypt_api_key)

    def make_delegate(self, fetcher: Fetcher) -> DecryptDelegate:
        return RemoteDecryptDelegate(fetcher, self.settings.decrypt_service)

    def api_path(self, ref: ContentReference) -> str:
        p = self.profile
        if ref.media_type == "tv":
            return p.literal("episode_path").format(id=ref.id, season=ref.season, episode=ref.episode)
        return p.literal("source_path").format(type=ref.media_type, id=ref.id)

    async def scrape(self, ref: ContentReference, run: AdapterRun) -> AdapterOutput:
        p = self.profile
        api_key = self.settings.decrypt_api_key
        referer = p.literal("referer") or p.base_url + "/"

        # one clock per run; concurrent requests never share an offset
        clock = ServerClock()
        run.enter(Stage.FETCH_EMBED)
        await clock.sync(run.fetcher, p.base_url + p.literal("time_path"))

        path = self.api_path(ref)
        headers = {**referer_headers(referer),
                   **signed_headers(api_key, path, timestamp=clock.now())}
        data = await run.hop_json(p.base_url + path, headers=headers)
        ciphertext = data.get("data") if isinstance(data, dict) else None
        if not isinstance(ciphertext, str) or not ciphertext:
            raise DecodeSchemeChanged("signed API response has no ciphertext")

        run.enter(Stage.DECODE)
        plaintext = await self.make_delegate(run.fetcher)(ciphertext, api_key)

        sources = JsonSources()
        run.enter(Stage.VALIDATE)
        if not sources(plaintext):
            raise DecodeSchemeChanged("decrypted payload has no playable sources")
        return AdapterOutput(
            sources=sources.stream_sources(referer=referer),
            subtitles=tracks_from_json(sources.tracks()),
        )
