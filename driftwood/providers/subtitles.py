"""
Subtitle track discovery shared by adapters.
"""
from __future__ import annotations
import re
from typing import Iterable

from .base import SubtitleTrack

# Language label -> ISO 639-1
LANG_MAP = {
    "english": "en", "spanish": "es", "portuguese": "pt",
    "french": "fr", "german": "de", "italian": "it",
    "dutch": "nl", "russian": "ru", "japanese": "ja",
    "korean": "ko", "chinese": "zh", "arabic": "ar",
    "turkish": "tr", "greek": "el", "polish": "pl",
    "swedish": "sv", "hindi": "hi", "vietnamese": "vi",
}

_TRACK_BLOCK_RE = re.compile(
    r'\{[^}]*?["\']?(?:src|file|url)["\']?\s*:\s*["\']'
    r'(https?://[^\s"\']+\.(?:vtt|srt)[^\s"\']*)["\']'
    r'[^}]*?["\']?(?:label|srclang|lang)["\']?\s*:\s*["\']([^"\']+)["\']'
    r'[^}]*?\}',
)
_BARE_VTT_RE = re.compile(r'(https?://[^\s"\']+\.vtt[^\s"\']*)')
_SUFFIX_LANG_RE = re.compile(r'[_.]([a-z]{2})\.vtt')


def label_to_lang(label: str) -> str:
    """'English' or 'English (CC)' -> 'en'."""
    first = label.strip().lower().split()[0] if label.strip() else ""
    return LANG_MAP.get(first, first[:2] if len(first) >= 2 else "en")


def _skip(url: str, label: str = "") -> bool:
    return "thumb" in url or "thumb" in label.lower() or "sprite" in url


def tracks_from_text(text: str) -> list[SubtitleTrack]:
    """Track objects ({file, label}) first, bare .vtt URLs as a fallback."""
    tracks = []
    for url, label in _TRACK_BLOCK_RE.findall(text):
        if _skip(url, label):
            continue
        tracks.append(SubtitleTrack(url=url, label=label, language=label_to_lang(label)))
    if tracks:
        return tracks

    for url in _BARE_VTT_RE.findall(text):
        if _skip(url):
            continue
        m = _SUFFIX_LANG_RE.search(url)
        tracks.append(SubtitleTrack(url=url, label="", language=m.group(1) if m else "en"))
    return tracks


def tracks_from_json(items: Iterable) -> list[SubtitleTrack]:
    tracks = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        url = item.get("file") or item.get("url") or item.get("src")
        if not url or _skip(url):
            continue
        label = str(item.get("label") or item.get("lang") or "")
        tracks.append(SubtitleTrack(url=url, label=label, language=label_to_lang(label)))
    return tracks
