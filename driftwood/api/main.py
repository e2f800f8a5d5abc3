from __future__ import annotations
import logging
import re
from contextlib import asynccontextmanager
from typing import List, Optional
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask

from ..config import get_settings
from ..errors import (
    AllProvidersExhausted, DecodeSchemeChanged, ExtractionError, ExtractionTimeout,
    InvalidRequest, ProxyFailure, UpstreamUnavailable,
)
from ..providers.base import ContentReference, ExtractionRequest, ExtractionResult
from ..providers.hls import KEY_SIZE, is_playlist, rewrite_playlist
from ..providers.runner import ProviderEngine
from .relay import UpstreamRelay

log = logging.getLogger("driftwood.api")

STATUS_BY_KIND = {
    InvalidRequest.kind: 400,
    UpstreamUnavailable.kind: 502,
    DecodeSchemeChanged.kind: 502,
    ProxyFailure.kind: 502,
    AllProvidersExhausted.kind: 502,
    ExtractionTimeout.kind: 504,
}

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}
SEGMENT_CACHE = "public, max-age=300"
SUBTITLE_CACHE = "public, max-age=86400"
PLAYLIST_TYPE = "application/vnd.apple.mpegurl"


class ProviderInfo(BaseModel):
    id: str
    name: str
    rank: int
    mediaTypes: List[str]
    disabled: bool


class ProvidersResponse(BaseModel):
    providers: List[ProviderInfo]


_engine: Optional[ProviderEngine] = None
_relay: Optional[UpstreamRelay] = None


def get_engine() -> ProviderEngine:
    global _engine
    if _engine is None:
        _engine = ProviderEngine(get_settings())
    return _engine


def get_relay() -> UpstreamRelay:
    global _relay
    if _relay is None:
        _relay = UpstreamRelay(get_settings())
    return _relay


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _engine is not None:
        await _engine.close()


app = FastAPI(title="driftwood", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    status = exc.status or STATUS_BY_KIND.get(exc.kind, 502)
    if status < 400:
        status = 502
    log.warning("%s %s -> %d %s", request.method, request.url.path, status, exc.kind)
    return JSONResponse({"error": exc.message, "kind": exc.kind},
                        status_code=status, headers=CORS_HEADERS)


# ── helpers ──────────────────

def _positive_int(name: str, raw: Optional[str]) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        value = int(raw)
    except ValueError:
        raise InvalidRequest(f"{name} must be an integer")
    if value < 1:
        raise InvalidRequest(f"{name} must be positive")
    return value


def _require_url(url: Optional[str]) -> str:
    if not url:
        raise InvalidRequest("url is required")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidRequest("url must be an absolute http(s) URL")
    return url


_SRT_TIME_RE = re.compile(r"(\d{2}:\d{2}:\d{2}),(\d{3})")


def srt_to_vtt(text: str) -> str:
    """Players only take WebVTT; SRT differs by header and decimal comma."""
    if text.lstrip("\ufeff").startswith("WEBVTT"):
        return text
    return "WEBVTT\n\n" + _SRT_TIME_RE.sub(r"\1.\2", text.lstrip("\ufeff").replace("\r\n", "\n"))


# ── extraction ──────────────────

@app.get("/extract")
async def extract(
    id: Optional[str] = None,
    type: Optional[str] = None,
    season: Optional[str] = None,
    episode: Optional[str] = None,
    provider: Optional[str] = None,
    idSystem: str = "tmdb",
    engine: ProviderEngine = Depends(get_engine),
):
    try:
        if not id or not type:
            raise InvalidRequest("id and type are required")
        ref = ContentReference(
            id=id,
            media_type=type,
            season=_positive_int("season", season),
            episode=_positive_int("episode", episode),
            id_system=idSystem,
        ).validate()
    except InvalidRequest as e:
        return JSONResponse(ExtractionResult.fail(e.kind, e.message).to_dict(), status_code=400)

    hint = None if provider in (None, "", "auto") else provider
    result = await engine.extract(ExtractionRequest(ref=ref, provider_hint=hint))
    status = 200 if result.success else STATUS_BY_KIND.get(result.error_kind, 502)
    return JSONResponse(result.to_dict(), status_code=status)


@app.get("/providers", response_model=ProvidersResponse)
def list_providers(engine: ProviderEngine = Depends(get_engine)):
    return {"providers": engine.list_providers()}


@app.get("/health")
def health():
    return {"status": "ok"}


# ── proxy endpoints ──────────────────

@app.get("/segment")
async def proxy_segment(request: Request, url: Optional[str] = None,
                        referer: Optional[str] = None,
                        relay: UpstreamRelay = Depends(get_relay)):
    target = _require_url(url)
    stream = await relay.open(target, scope="segment", referer=referer)
    if is_playlist(target, stream.content_type):
        manifest = (await relay.read(stream, target)).decode("utf-8", "replace")
        origin = str(request.base_url).rstrip("/")
        return Response(content=rewrite_playlist(manifest, target, origin, referer),
                        media_type=PLAYLIST_TYPE,
                        headers={**CORS_HEADERS, "Cache-Control": "no-cache"})
    return StreamingResponse(
        stream.aiter_bytes(),
        media_type=stream.content_type or "video/mp2t",
        headers={**CORS_HEADERS, "Cache-Control": SEGMENT_CACHE},
        background=BackgroundTask(stream.aclose),
    )


@app.get("/key")
async def proxy_key(url: Optional[str] = None, channel: Optional[str] = None,
                    referer: Optional[str] = None,
                    relay: UpstreamRelay = Depends(get_relay)):
    if url and channel:
        raise InvalidRequest("pass either url or channel, not both")
    if channel:
        if not re.fullmatch(r"[A-Za-z0-9_-]+", channel):
            raise InvalidRequest("channel must be alphanumeric")
        target = relay.channel_key_url(channel)
    else:
        target = _require_url(url)

    data = await relay.fetch(target, scope="key", referer=referer, channel=channel)
    if len(data) != KEY_SIZE:
        log.warning("Key from %s is %d bytes", urlparse(target).hostname, len(data))
        return JSONResponse({"error": "Invalid key data", "size": len(data), "expected": KEY_SIZE},
                            status_code=502, headers=CORS_HEADERS)
    return Response(content=data, media_type="application/octet-stream",
                    headers={**CORS_HEADERS, "Cache-Control": "no-store"})


@app.get("/subtitle")
async def proxy_subtitle(url: Optional[str] = None, referer: Optional[str] = None,
                         relay: UpstreamRelay = Depends(get_relay)):
    target = _require_url(url)
    data = await relay.fetch(target, scope="subtitle", referer=referer)
    text = srt_to_vtt(data.decode("utf-8", "replace"))
    return Response(content=text, media_type="text/vtt; charset=utf-8",
                    headers={**CORS_HEADERS, "Cache-Control": SUBTITLE_CACHE})
