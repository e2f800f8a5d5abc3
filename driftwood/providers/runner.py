"""
Provider engine: registry of adapters, fallback order, racing, deadlines.

Usage:
    engine = ProviderEngine()
    result = await engine.extract(ExtractionRequest(ContentReference("550")))
    print(result.to_dict())
    await engine.close()
"""
from __future__ import annotations
import asyncio
import logging
from typing import Optional

from ..config import Settings, get_settings
from ..errors import AllProvidersExhausted, ExtractionTimeout, InvalidRequest
from .adapter import ProviderAdapter
from .base import ContentReference, ExtractionRequest, ExtractionResult, FailureRecord
from .cache import ResultCache
from .fetcher import Fetcher
from .gateway import ProxyGateway
from .normalizer import Normalizer

log = logging.getLogger("driftwood.providers")


# ──────────────────────────────
#  Registry
# ──────────────────────────────
# Populated when adapter modules are imported
_PROVIDERS: dict[str, type[ProviderAdapter]] = {}


def register_provider(adapter_cls):
    """Decorator to register an adapter class under its id."""
    _PROVIDERS[adapter_cls.id] = adapter_cls
    return adapter_cls


def registered_providers() -> dict[str, type[ProviderAdapter]]:
    return dict(_PROVIDERS)


# ──────────────────────────────
#  Engine
# ──────────────────────────────
class ProviderEngine:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        fetcher: Optional[Fetcher] = None,
        adapters: Optional[list[ProviderAdapter]] = None,
        cache: Optional[ResultCache] = None,
        normalizer: Optional[Normalizer] = None,
        browser=None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        if fetcher is None:
            gateway = None
            if s.gateway:
                gateway = ProxyGateway(s.gateway, blocked_hosts=s.blocked_hosts,
                                       block_markers=s.block_markers)
            fetcher = Fetcher(timeout=s.fetch_timeout, gateway=gateway)
        self.fetcher = fetcher

        if browser is None and s.browser_fallback:
            from .browser import BrowserCapture
            browser = BrowserCapture()

        if adapters is None:
            adapters = [cls(s, browser=browser) for cls in _PROVIDERS.values()]
        self.adapters: dict[str, ProviderAdapter] = {a.id: a for a in adapters}

        if cache is None and s.cache_ttl > 0:
            cache = ResultCache(s.cache_ttl)
        self.cache = cache

        if normalizer is None:
            proxy_hosts = list(s.blocked_hosts)
            for adapter in adapters:
                if adapter.profile_name:
                    proxy_hosts += adapter.profile.literal("proxy_hosts", ())
            normalizer = Normalizer(blocked_hosts=proxy_hosts,
                                    key_blocked_hosts=s.key_blocked_hosts)
        self.normalizer = normalizer

    async def close(self):
        await self.fetcher.close()

    def list_providers(self):
        return [{"id": a.id, "name": a.name, "rank": a.rank,
                 "mediaTypes": list(a.media_types), "disabled": a.disabled}
                for a in self.fallback_order()]

    def fallback_order(self) -> list[ProviderAdapter]:
        """Configured order first, then the rest by rank (highest first)."""
        by_rank = sorted(self.adapters.values(), key=lambda a: a.rank, reverse=True)
        configured = [self.adapters[p] for p in self.settings.provider_order if p in self.adapters]
        if configured:
            return configured
        return by_rank

    # ── extraction ──────────────────

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        """Resolve a reference. Never raises; every failure is a typed result."""
        ref = request.ref
        try:
            ref.validate()
            candidates = self._candidates(request)
        except InvalidRequest as e:
            return ExtractionResult.fail(InvalidRequest.kind, e.message)

        failures: list[FailureRecord] = []
        try:
            result = await asyncio.wait_for(
                self._run(ref, candidates, failures), timeout=self.settings.request_deadline)
        except asyncio.TimeoutError:
            log.warning(f"Request deadline ({self.settings.request_deadline:.0f}s) hit for {ref.id}")
            return ExtractionResult.fail(
                ExtractionTimeout.kind, "request deadline exceeded",
                provider=failures[-1].provider if failures else None,
                failures=list(failures))

        if result is not None:
            return result

        # a hinted provider reports its own failure; any fallback run is exhaustion
        if request.provider_hint and failures:
            only = failures[0]
            return ExtractionResult.fail(only.kind, only.message, provider=only.provider,
                                         stage=only.stage, failures=list(failures))

        log.warning(f"All providers exhausted for {ref.media_type} {ref.id}")
        summary = ", ".join(f"{f.provider}: {f.kind}" for f in failures)
        return ExtractionResult.fail(
            AllProvidersExhausted.kind, f"all providers failed ({summary})",
            provider=failures[-1].provider if failures else None,
            failures=list(failures))

    def _candidates(self, request: ExtractionRequest) -> list[ProviderAdapter]:
        if request.provider_hint:
            adapter = self.adapters.get(request.provider_hint.lower())
            if adapter is None:
                raise InvalidRequest(f"unknown provider {request.provider_hint!r}")
            if adapter.disabled:
                raise InvalidRequest(f"provider {adapter.id} is not configured")
            return [adapter]
        candidates = [a for a in self.fallback_order()
                      if not a.disabled and a.supports(request.ref)]
        if not candidates:
            raise InvalidRequest(f"no provider serves {request.ref.media_type}")
        return candidates

    async def _run(self, ref: ContentReference, candidates: list[ProviderAdapter],
                   failures: list[FailureRecord]) -> Optional[ExtractionResult]:
        if self.settings.race_providers and len(candidates) > 1:
            return await self._race(ref, candidates, failures)

        for adapter in candidates:
            result = await self._attempt(adapter, ref)
            if result.success:
                return result
            failures.extend(result.failures)
        return None

    async def _race(self, ref: ContentReference, candidates: list[ProviderAdapter],
                    failures: list[FailureRecord]) -> Optional[ExtractionResult]:
        """Start every candidate; first success wins, the rest are cancelled."""
        pending = {asyncio.create_task(self._attempt(a, ref), name=a.id) for a in candidates}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    result = task.result()
                    if result.success:
                        if pending:
                            log.info(f"[{result.provider}] Won the race, cancelling {len(pending)} sibling(s)")
                        return result
                    failures.extend(result.failures)
            return None
        finally:
            for task in pending:
                task.cancel()

    async def _attempt(self, adapter: ProviderAdapter, ref: ContentReference) -> ExtractionResult:
        if self.cache is not None:
            cached = self.cache.get(adapter.id, ref)
            if cached is not None:
                log.info(f"[{adapter.id}] Cache hit for {ref.id}")
                return cached

        log.info(f"[{adapter.id}] Trying provider...")
        try:
            result = await asyncio.wait_for(adapter.extract(ref, self.fetcher),
                                            timeout=self.settings.provider_timeout)
        except asyncio.TimeoutError:
            log.warning(f"[{adapter.id}] Timed out after {self.settings.provider_timeout:.0f}s")
            return ExtractionResult.fail(
                ExtractionTimeout.kind,
                f"provider timed out after {self.settings.provider_timeout:g}s",
                provider=adapter.id)

        if not result.success:
            if not result.failures:
                result.failures = [FailureRecord(adapter.id, result.error_kind or "",
                                                 None, result.error or "")]
            return result

        result = self.normalizer.normalize(result)
        if self.cache is not None:
            self.cache.put(adapter.id, ref, result)
        return result


# ──────────────────────────────
#  Auto-import adapter modules
# ──────────────────────────────
def _load_scrapers():
    """Import all adapter modules so their decorators fire."""
    from .sources import embedchain, keystream, packedhost, signedapi  # noqa: F401


_load_scrapers()
