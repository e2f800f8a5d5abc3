"""
Provider adapter base class and the per-run stage machine.

    START -> FETCH_EMBED -> FETCH_INTERMEDIATE* -> DECODE -> VALIDATE -> SUCCESS | FAIL

An adapter subclass only writes ``scrape``; it moves through the stages by
calling the AdapterRun helpers. ``extract`` wraps a run and always returns an
ExtractionResult, recording which stage failed and why.
"""
from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional

from ..config import Settings
from ..errors import (
    DecodeSchemeChanged, ExtractionError, ExtractionTimeout, UpstreamUnavailable,
)
from .base import (
    ContentReference, DecodeChain, ExtractionResult, StreamSource, SubtitleTrack,
)
from .fetcher import Fetcher, referer_headers
from .profiles import SchemeProfile, get_profile
from .stages import Validator, decode_with_hypotheses, find_manifest_urls

if TYPE_CHECKING:
    from .browser import BrowserCapture

log = logging.getLogger("driftwood.providers")


class Stage(str, Enum):
    START = "START"
    FETCH_EMBED = "FETCH_EMBED"
    FETCH_INTERMEDIATE = "FETCH_INTERMEDIATE"
    DECODE = "DECODE"
    VALIDATE = "VALIDATE"
    SUCCESS = "SUCCESS"
    FAIL = "FAIL"


_FETCH_STAGES = (Stage.START, Stage.FETCH_EMBED, Stage.FETCH_INTERMEDIATE)


@dataclass
class AdapterOutput:
    sources: list[StreamSource] = field(default_factory=list)
    subtitles: list[SubtitleTrack] = field(default_factory=list)


class AdapterRun:
    """State for one adapter run. Stages only move forward."""

    def __init__(self, provider: str, fetcher: Fetcher):
        self.provider = provider
        self.fetcher = fetcher
        self.stage = Stage.START
        self.hops = 0
        self.chain: Optional[DecodeChain] = None

    def enter(self, stage: Stage):
        log.debug("[%s] %s -> %s", self.provider, self.stage.value, stage.value)
        self.stage = stage

    def _headers(self, referer: Optional[str], extra: Optional[dict]) -> dict[str, str]:
        return {**referer_headers(referer), **(extra or {})}

    async def fetch_embed(self, url: str, *, referer: Optional[str] = None,
                          headers: Optional[dict] = None, **kwargs) -> str:
        self.enter(Stage.FETCH_EMBED)
        log.info("[%s] Fetching embed page", self.provider)
        return await self.fetcher.get(url, headers=self._headers(referer, headers), **kwargs)

    async def fetch_embed_json(self, url: str, *, referer: Optional[str] = None,
                               headers: Optional[dict] = None, **kwargs):
        self.enter(Stage.FETCH_EMBED)
        log.info("[%s] Fetching source API", self.provider)
        return await self.fetcher.get_json(url, headers=self._headers(referer, headers), **kwargs)

    async def hop(self, url: str, *, referer: Optional[str] = None,
                  headers: Optional[dict] = None, **kwargs) -> str:
        self.enter(Stage.FETCH_INTERMEDIATE)
        self.hops += 1
        log.info("[%s] Intermediate hop %d", self.provider, self.hops)
        return await self.fetcher.get(url, headers=self._headers(referer, headers), **kwargs)

    async def hop_json(self, url: str, *, referer: Optional[str] = None,
                       headers: Optional[dict] = None, **kwargs):
        self.enter(Stage.FETCH_INTERMEDIATE)
        self.hops += 1
        return await self.fetcher.get_json(url, headers=self._headers(referer, headers), **kwargs)

    def decode(self, chains: Iterable[DecodeChain], payload: str, *,
               validator: Optional[Validator] = None,
               placeholders: tuple[str, ...] = ()) -> list[str]:
        """Run hypothesis chains and return the validated manifest URLs."""
        self.enter(Stage.DECODE)
        check = validator or (lambda text: find_manifest_urls(text, placeholders=placeholders))
        self.chain, found = decode_with_hypotheses(chains, payload, check)
        self.enter(Stage.VALIDATE)
        return found

    def validate(self, text: str, *, placeholders: tuple[str, ...] = (),
                 allow_mp4: bool = False) -> list[str]:
        self.enter(Stage.VALIDATE)
        urls = find_manifest_urls(text, placeholders=placeholders, allow_mp4=allow_mp4)
        if not urls:
            raise DecodeSchemeChanged("decoded payload has no manifest URL")
        return urls

    async def check_manifests(self, sources: list[StreamSource]) -> list[StreamSource]:
        """Keep the sources whose HLS manifest answers with a playlist.

        A decoded URL proves nothing about the CDN behind it. MP4 sources pass
        unchecked. When nothing answers the provider is down, not drifted.
        """
        self.enter(Stage.VALIDATE)

        async def alive(source: StreamSource) -> bool:
            if source.stream_type != "hls":
                return True
            try:
                body = await self.fetcher.get(source.url, headers=referer_headers(source.referer))
            except ExtractionError as e:
                log.info("[%s] Manifest check failed: %s", self.provider, e.message)
                return False
            return "#EXTM3U" in body

        checks = await asyncio.gather(*(alive(s) for s in sources))
        live = [s for s, ok in zip(sources, checks) if ok]
        if not live:
            raise UpstreamUnavailable(f"none of {len(sources)} source(s) served a playlist")
        return live


def classify(exc: BaseException, stage: Stage) -> tuple[str, str]:
    """(kind, message) for an exception raised during ``stage``."""
    if isinstance(exc, ExtractionError):
        return exc.kind, exc.message
    if isinstance(exc, asyncio.TimeoutError):
        return ExtractionTimeout.kind, "timed out"
    if stage in _FETCH_STAGES:
        return UpstreamUnavailable.kind, f"{type(exc).__name__}: {exc}"
    return DecodeSchemeChanged.kind, f"{type(exc).__name__}: {exc}"


class JsonSources:
    """Validator for decoded JSON payloads that carry a ``sources`` list.

    Keeps the parsed payload so the adapter can read tracks afterwards.
    """

    def __init__(self):
        self.payload: dict = {}
        self.items: list[dict] = []

    @staticmethod
    def _url(item: dict) -> str:
        url = item.get("file") or item.get("url") or ""
        return url if isinstance(url, str) and url.startswith(("http://", "https://")) else ""

    @staticmethod
    def _type(item: dict, url: str) -> Optional[str]:
        declared = str(item.get("type") or "").lower()
        if declared in ("hls", "mp4"):
            return declared
        path = url.split("?", 1)[0].lower()
        if ".m3u8" in path:
            return "hls"
        if path.endswith(".mp4"):
            return "mp4"
        return None

    def __call__(self, text: str) -> list[str]:
        try:
            payload = json.loads(text)
        except ValueError:
            return []
        if not isinstance(payload, dict):
            return []
        items = [i for i in payload.get("sources") or []
                 if isinstance(i, dict) and self._url(i) and self._type(i, self._url(i))]
        self.payload, self.items = payload, items
        return [self._url(i) for i in items]

    def stream_sources(self, referer: str = "") -> list[StreamSource]:
        out = []
        for item in self.items:
            url = self._url(item)
            out.append(StreamSource(
                url=url,
                quality=str(item.get("quality") or "auto"),
                stream_type=self._type(item, url),
                referer=referer,
                title=str(item.get("label") or item.get("title") or ""),
            ))
        return out

    def tracks(self) -> list:
        return self.payload.get("tracks") or self.payload.get("subtitles") or []


class ProviderAdapter:
    id: str
    name: str
    rank: int = 0
    media_types: tuple[str, ...] = ("movie", "tv")
    profile_name: Optional[str] = None

    def __init__(self, settings: Optional[Settings] = None, *,
                 browser: Optional["BrowserCapture"] = None):
        self.settings = settings or Settings()
        self.browser = browser

    @property
    def disabled(self) -> bool:
        return False

    @property
    def profile(self) -> SchemeProfile:
        return get_profile(self.profile_name, self.settings.provider_bases)

    def supports(self, ref: ContentReference) -> bool:
        return ref.media_type in self.media_types

    def embed_url(self, ref: ContentReference) -> Optional[str]:
        """Player page a browser would open; enables the browser fallback."""
        return None

    async def scrape(self, ref: ContentReference, run: AdapterRun) -> AdapterOutput:
        raise NotImplementedError

    async def extract(self, ref: ContentReference, fetcher: Fetcher) -> ExtractionResult:
        run = AdapterRun(self.id, fetcher)
        try:
            if not self.supports(ref):
                raise UpstreamUnavailable(f"{self.name} does not serve {ref.media_type}")
            out = await self.scrape(ref, run)
            if not out.sources:
                raise DecodeSchemeChanged("adapter finished without sources")
            if self.settings.verify_manifests:
                out.sources = await run.check_manifests(out.sources)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            kind, message = classify(e, run.stage)
            if kind == DecodeSchemeChanged.kind and self.browser and self.embed_url(ref):
                return await self._browser_fallback(ref, run, message)
            log.warning("[%s] Failed at %s: %s (%s)", self.id, run.stage.value, message, kind)
            if not isinstance(e, ExtractionError):
                log.debug("[%s] Unexpected error", self.id, exc_info=True)
            failed_stage = run.stage.value
            run.enter(Stage.FAIL)
            return ExtractionResult.fail(kind, message, provider=self.id, stage=failed_stage)

        run.enter(Stage.SUCCESS)
        log.info("[%s] Resolved %d source(s)%s", self.id, len(out.sources),
                 f" via {run.chain.label}" if run.chain else "")
        return ExtractionResult.ok(self.id, out.sources, out.subtitles)

    async def _browser_fallback(self, ref: ContentReference, run: AdapterRun,
                                reason: str) -> ExtractionResult:
        failed_stage = run.stage.value
        log.warning("[%s] Static decode failed (%s), trying browser capture", self.id, reason)
        url = self.embed_url(ref)
        try:
            source = await self.browser.capture(url)
        except Exception as e:
            kind, message = classify(e, Stage.FETCH_EMBED)
            run.enter(Stage.FAIL)
            return ExtractionResult.fail(
                DecodeSchemeChanged.kind,
                f"{reason}; browser fallback failed: {message} ({kind})",
                provider=self.id, stage=failed_stage)
        run.enter(Stage.SUCCESS)
        return ExtractionResult.ok(self.id, [source])
