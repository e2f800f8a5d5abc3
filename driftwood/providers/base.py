"""
Core types for the driftwood provider system.

Everything here is request-scoped: a ContentReference comes in, an
ExtractionResult goes out, nothing is persisted.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional

from ..errors import InvalidRequest

MEDIA_TYPES = ("movie", "tv")
STREAM_TYPES = ("hls", "mp4")

# Language tags in priority order (see normalizer)
ENGLISH_QUALITY = "english-quality"
ENGLISH = "english"
FOREIGN = "foreign"
LANGUAGE_PRIORITY = (ENGLISH_QUALITY, ENGLISH, FOREIGN)


# ──────────────────────────────
#  What to resolve
# ──────────────────────────────
@dataclass(frozen=True)
class ContentReference:
    id: str
    media_type: str = "movie"         # "movie" | "tv"
    season: Optional[int] = None
    episode: Optional[int] = None
    id_system: str = "tmdb"

    def __post_init__(self):
        # Accept both "show" and "tv", store "tv"
        if self.media_type == "show":
            object.__setattr__(self, "media_type", "tv")
        object.__setattr__(self, "id", str(self.id).strip())

    def validate(self) -> "ContentReference":
        if not self.id:
            raise InvalidRequest("id is required")
        if self.media_type not in MEDIA_TYPES:
            raise InvalidRequest(f"type must be one of {', '.join(MEDIA_TYPES)}")
        if self.media_type == "tv":
            if not self.season or not self.episode:
                raise InvalidRequest("season and episode are required for tv")
            if self.season < 1 or self.episode < 1:
                raise InvalidRequest("season and episode must be positive")
        return self

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"idSystem": self.id_system, "id": self.id, "type": self.media_type}
        if self.media_type == "tv":
            d["season"] = self.season
            d["episode"] = self.episode
        return d


@dataclass(frozen=True)
class ExtractionRequest:
    ref: ContentReference
    provider_hint: Optional[str] = None


# ──────────────────────────────
#  Decode chain definitions
# ──────────────────────────────
@dataclass(frozen=True)
class DecodeStage:
    kind: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, kind: str, **params) -> "DecodeStage":
        return cls(kind=kind, params=tuple(sorted(params.items())))

    def param(self, name: str, default: Any = None) -> Any:
        return dict(self.params).get(name, default)

    def __str__(self):
        if not self.params:
            return self.kind
        args = ",".join(f"{k}={v!r}" for k, v in self.params)
        return f"{self.kind}{{{args}}}"


@dataclass(frozen=True)
class DecodeChain:
    name: str
    stages: tuple[DecodeStage, ...]
    version: str = "1"
    prefix: Optional[str] = None      # only tried when the payload starts with this

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version}"


# ──────────────────────────────
#  Output types
# ──────────────────────────────
@dataclass
class StreamSource:
    url: str
    quality: str = "auto"
    stream_type: str = "hls"          # "hls" | "mp4"
    language: str = ""                # english-quality | english | foreign
    referer: str = ""
    title: str = ""
    requires_segment_proxy: bool = False
    requires_key_proxy: bool = False

    def __post_init__(self):
        if not self.url:
            raise ValueError("StreamSource.url must not be empty")
        if self.stream_type not in STREAM_TYPES:
            raise ValueError(f"unknown stream type {self.stream_type!r}")

    def to_dict(self):
        d = {
            "url": self.url,
            "quality": self.quality,
            "type": self.stream_type,
            "language": self.language,
            "referer": self.referer,
            "requiresSegmentProxy": self.requires_segment_proxy,
            "requiresKeyProxy": self.requires_key_proxy,
        }
        if self.title:
            d["title"] = self.title
        return d


@dataclass
class SubtitleTrack:
    url: str
    label: str = ""
    language: str = ""

    def to_dict(self):
        return {"label": self.label, "language": self.language, "url": self.url}


@dataclass(frozen=True)
class FailureRecord:
    provider: str
    kind: str
    stage: Optional[str]
    message: str

    def to_dict(self):
        return {"provider": self.provider, "kind": self.kind,
                "stage": self.stage, "message": self.message}


@dataclass
class ExtractionResult:
    success: bool
    sources: list[StreamSource] = field(default_factory=list)
    subtitles: list[SubtitleTrack] = field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    failed_provider: Optional[str] = None
    provider: Optional[str] = None
    failures: list[FailureRecord] = field(default_factory=list)

    def __post_init__(self):
        if self.success and not self.sources:
            raise ValueError("a successful result needs at least one source")

    @classmethod
    def ok(cls, provider: str, sources: list[StreamSource],
           subtitles: Optional[list[SubtitleTrack]] = None) -> "ExtractionResult":
        return cls(success=True, sources=list(sources),
                   subtitles=list(subtitles or []), provider=provider)

    @classmethod
    def fail(cls, kind: str, message: str, *, provider: Optional[str] = None,
             stage: Optional[str] = None,
             failures: Optional[list[FailureRecord]] = None) -> "ExtractionResult":
        if failures is None:
            failures = [FailureRecord(provider or "", kind, stage, message)] if provider else []
        return cls(success=False, error=message, error_kind=kind,
                   failed_provider=provider, failures=failures)

    def to_dict(self):
        d: dict[str, Any] = {
            "success": self.success,
            "sources": [s.to_dict() for s in self.sources],
            "subtitles": [t.to_dict() for t in self.subtitles],
        }
        if self.provider:
            d["provider"] = self.provider
        if not self.success:
            d["error"] = self.error
            d["errorKind"] = self.error_kind
            if self.failed_provider:
                d["failedProvider"] = self.failed_provider
            if self.failures:
                d["failures"] = [f.to_dict() for f in self.failures]
        return d


# ──────────────────────────────
#  Proxy gateway credential
# ──────────────────────────────
@dataclass(frozen=True)
class ProxyCredential:
    endpoint: str
    auth_key: str = field(repr=False)

    def __repr__(self):
        return f"ProxyCredential(endpoint={self.endpoint!r}, auth_key='***')"
