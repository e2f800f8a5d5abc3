"""
Result normalizer: dedupe, language tagging, ordering, proxy flags.
"""
from __future__ import annotations
import re
from dataclasses import replace
from typing import Iterable

from .base import (
    ENGLISH, ENGLISH_QUALITY, FOREIGN, LANGUAGE_PRIORITY,
    ExtractionResult, StreamSource, SubtitleTrack,
)
from .gateway import HostMatcher

FOREIGN_RE = re.compile(
    r"\b(hindi|tamil|telugu|spanish|espa[ñn]ol|latino|castellano|french|fran[cç]ais|"
    r"german|deutsch|italian|italiano|portuguese|portugu[eê]s|russian|turkish|"
    r"arabic|korean|japanese|dub|dubbed|vostfr|vf)\b",
    re.IGNORECASE,
)
ENGLISH_RE = re.compile(r"\b(english|eng|en)\b", re.IGNORECASE)
QUALITY_RE = re.compile(
    r"\b(2160p?|4k|uhd|1080p?|fhd|blu-?ray|web-?dl|remux|original)\b", re.IGNORECASE)

_EMPTY_QUALITY = ("", "auto", "unknown")


def classify_language(text: str) -> str:
    """english-quality | english | foreign, from free text (title, url)."""
    foreign = bool(FOREIGN_RE.search(text))
    english = bool(ENGLISH_RE.search(text))
    if foreign and not english:
        return FOREIGN
    if QUALITY_RE.search(text):
        return ENGLISH_QUALITY
    return ENGLISH


def sort_by_language(sources: list[StreamSource]) -> list[StreamSource]:
    # sorted() is stable: equal tags keep adapter order
    rank = {tag: i for i, tag in enumerate(LANGUAGE_PRIORITY)}
    return sorted(sources, key=lambda s: rank.get(s.language, len(rank)))


def _merge(a: StreamSource, b: StreamSource) -> StreamSource:
    quality = a.quality if a.quality not in _EMPTY_QUALITY else (b.quality or a.quality)
    return replace(
        a,
        quality=quality,
        language=a.language or b.language,
        referer=a.referer or b.referer,
        title=a.title or b.title,
        requires_segment_proxy=a.requires_segment_proxy or b.requires_segment_proxy,
        requires_key_proxy=a.requires_key_proxy or b.requires_key_proxy,
    )


def dedupe_sources(sources: Iterable[StreamSource]) -> list[StreamSource]:
    merged: dict[str, StreamSource] = {}
    for source in sources:
        if source.url in merged:
            merged[source.url] = _merge(merged[source.url], source)
        else:
            merged[source.url] = source
    return list(merged.values())


def dedupe_subtitles(tracks: Iterable[SubtitleTrack]) -> list[SubtitleTrack]:
    seen: dict[str, SubtitleTrack] = {}
    for track in tracks:
        if not track.url:
            continue
        if track.url in seen:
            prev = seen[track.url]
            seen[track.url] = replace(prev, label=prev.label or track.label,
                                      language=prev.language or track.language)
        else:
            seen[track.url] = track
    return list(seen.values())


class Normalizer:
    def __init__(self, *, blocked_hosts: Iterable[str] = (),
                 key_blocked_hosts: Iterable[str] = ()):
        self.segment_hosts = HostMatcher(blocked_hosts)
        self.key_hosts = HostMatcher(key_blocked_hosts)

    def tag(self, source: StreamSource) -> StreamSource:
        language = source.language or classify_language(f"{source.title} {source.url}")
        return replace(
            source,
            language=language,
            requires_segment_proxy=self.segment_hosts.matches(source.url),
            requires_key_proxy=source.requires_key_proxy or self.key_hosts.matches(source.url),
        )

    def normalize(self, result: ExtractionResult) -> ExtractionResult:
        if not result.success:
            return result
        sources = sort_by_language([self.tag(s) for s in dedupe_sources(result.sources)])
        return replace(result, sources=sources, subtitles=dedupe_subtitles(result.subtitles))
