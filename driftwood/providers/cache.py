"""
Short-TTL cache of successful extraction results.

Resolved URLs are signed and expire. An entry never outlives the earliest
expiry embedded in any of its source URLs, so a hit can't hand out a dead
link.
"""
from __future__ import annotations
import logging
import time
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from .base import ContentReference, ExtractionResult

log = logging.getLogger("driftwood.providers.cache")

_EXPIRY_PARAMS = ("expires", "expire", "exp", "e")

# Expiries are unix seconds; anything below this is not a timestamp.
_MIN_TIMESTAMP = 1_000_000_000


def _as_epoch(raw: str) -> Optional[float]:
    try:
        value = float(raw)
    except ValueError:
        return None
    if value > 1e12:       # milliseconds
        value /= 1000
    return value if value >= _MIN_TIMESTAMP else None


def url_expiry(url: str) -> Optional[float]:
    """Expiry (unix seconds) embedded in a signed URL, if any."""
    query = parse_qs(urlparse(url).query)
    for name in _EXPIRY_PARAMS:
        for raw in query.get(name, []):
            value = _as_epoch(raw)
            if value:
                return value
    # token=<hash>.<timestamp>.<...>
    for raw in query.get("token", []):
        parts = raw.split(".")
        if len(parts) >= 2:
            value = _as_epoch(parts[1])
            if value:
                return value
    return None


class ResultCache:
    def __init__(self, ttl: float, *, margin: float = 30, max_entries: int = 1024,
                 clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.margin = margin
        self.max_entries = max_entries
        self.clock = clock
        self._entries: dict[tuple[str, ContentReference], tuple[float, ExtractionResult]] = {}

    def __len__(self):
        return len(self._entries)

    def effective_ttl(self, result: ExtractionResult) -> float:
        ttl = self.ttl
        now = self.clock()
        for source in result.sources:
            expiry = url_expiry(source.url)
            if expiry is not None:
                ttl = min(ttl, expiry - now - self.margin)
        return ttl

    def get(self, provider: str, ref: ContentReference) -> Optional[ExtractionResult]:
        entry = self._entries.get((provider, ref))
        if entry is None:
            return None
        expires_at, result = entry
        if self.clock() >= expires_at:
            del self._entries[(provider, ref)]
            return None
        return result

    def put(self, provider: str, ref: ContentReference, result: ExtractionResult) -> bool:
        if not result.success:
            return False
        ttl = self.effective_ttl(result)
        if ttl <= 0:
            log.debug("[%s] Not caching, signed URL expires too soon", provider)
            return False
        now = self.clock()
        self._entries.pop((provider, ref), None)
        self._prune(now)
        self._entries[(provider, ref)] = (now + ttl, result)
        return True

    def _prune(self, now: float):
        """Drop expired entries, then the soonest-expiring ones above the size cap."""
        for key in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[key]
        overflow = len(self._entries) - self.max_entries + 1
        if overflow > 0:
            by_expiry = sorted(self._entries, key=lambda k: self._entries[k][0])
            for key in by_expiry[:overflow]:
                del self._entries[key]

    def clear(self):
        self._entries.clear()
