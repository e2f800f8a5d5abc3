import asyncio

from driftwood.config import Settings
from driftwood.errors import DecodeSchemeChanged, ProxyFailure, UpstreamUnavailable
from driftwood.providers.base import ContentReference, ExtractionRequest
from driftwood.providers.cache import ResultCache
from driftwood.providers.runner import ProviderEngine, registered_providers

MOVIE = ContentReference("550")


def extract(engine, ref=MOVIE, hint=None):
    return asyncio.run(engine.extract(ExtractionRequest(ref=ref, provider_hint=hint)))


def make_engine(fetcher, adapters, **settings):
    return ProviderEngine(Settings(**settings), fetcher=fetcher, adapters=adapters)


def test_registry_has_builtin_adapters():
    assert {"embedchain", "packedhost", "keystream", "signedapi"} <= set(registered_providers())


def test_falls_back_to_first_success(fetcher, stub_adapter):
    p1 = stub_adapter("p1", UpstreamUnavailable("down"))
    p2 = stub_adapter("p2", DecodeSchemeChanged("new alphabet"))
    p3 = stub_adapter("p3", "https://cdn.example/p3.m3u8")
    p4 = stub_adapter("p4", "https://cdn.example/p4.m3u8")
    engine = make_engine(fetcher, [p1, p2, p3, p4], provider_order=("p1", "p2", "p3", "p4"))

    result = extract(engine)
    assert result.success
    assert result.provider == "p3"
    assert result.sources[0].url == "https://cdn.example/p3.m3u8"
    assert (p1.calls, p2.calls, p3.calls, p4.calls) == (1, 1, 1, 0)


def test_all_providers_exhausted_keeps_each_failure(fetcher, stub_adapter):
    adapters = [
        stub_adapter("p1", UpstreamUnavailable("down")),
        stub_adapter("p2", DecodeSchemeChanged("new alphabet")),
        stub_adapter("p3", ProxyFailure("gateway said no")),
    ]
    result = extract(make_engine(fetcher, adapters, provider_order=("p1", "p2", "p3")))
    assert not result.success
    assert result.error_kind == "AllProvidersExhausted"
    assert [f.provider for f in result.failures] == ["p1", "p2", "p3"]
    assert [f.kind for f in result.failures] == [
        "UpstreamUnavailable", "DecodeSchemeChanged", "ProxyFailure"]
    body = result.to_dict()
    assert body["success"] is False
    assert len(body["failures"]) == 3


def test_single_fallback_provider_failing_is_exhaustion(fetcher, stub_adapter):
    only = stub_adapter("p1", UpstreamUnavailable("down"))
    result = extract(make_engine(fetcher, [only], provider_order=("p1",)))
    assert result.error_kind == "AllProvidersExhausted"
    assert [(f.provider, f.kind) for f in result.failures] == [("p1", "UpstreamUnavailable")]


def test_dead_manifest_moves_on_to_next_provider(fetcher, stub_adapter):
    fetcher.add("https://dead.example/list.m3u8", "<html>origin down</html>")
    fetcher.add("https://live.example/list.m3u8", "#EXTM3U\n#EXT-X-ENDLIST\n")
    dead = stub_adapter("dead", "https://dead.example/list.m3u8", verify=True)
    live = stub_adapter("live", "https://live.example/list.m3u8", verify=True)

    result = extract(make_engine(fetcher, [dead, live], provider_order=("dead", "live")))
    assert result.provider == "live"
    assert dead.calls == 1


def test_engine_logs_each_attempt(fetcher, stub_adapter, caplog):
    caplog.set_level("INFO", logger="driftwood.providers")
    extract(make_engine(fetcher, [stub_adapter("p1", "https://a.example/x.m3u8")]))
    assert "[p1] Trying provider..." in caplog.messages


def test_default_order_is_by_rank(fetcher, stub_adapter):
    low = stub_adapter("low", "https://cdn.example/low.m3u8", rank=1)
    high = stub_adapter("high", "https://cdn.example/high.m3u8", rank=9)
    assert extract(make_engine(fetcher, [low, high])).provider == "high"
    assert low.calls == 0


def test_hint_runs_only_that_provider(fetcher, stub_adapter):
    p1 = stub_adapter("p1", "https://cdn.example/p1.m3u8", rank=9)
    p2 = stub_adapter("p2", DecodeSchemeChanged("changed"))
    result = extract(make_engine(fetcher, [p1, p2]), hint="p2")
    assert p1.calls == 0
    assert result.error_kind == "DecodeSchemeChanged"
    assert result.failed_provider == "p2"


def test_unknown_hint_is_invalid(fetcher, stub_adapter):
    result = extract(make_engine(fetcher, [stub_adapter("p1", "https://a.example/x.m3u8")]),
                     hint="nope")
    assert result.error_kind == "InvalidRequest"


def test_invalid_reference_never_reaches_providers(fetcher, stub_adapter):
    p1 = stub_adapter("p1", "https://a.example/x.m3u8")
    result = extract(make_engine(fetcher, [p1]), ref=ContentReference("1399", "tv"))
    assert result.error_kind == "InvalidRequest"
    assert p1.calls == 0


def test_media_type_filter(fetcher, stub_adapter):
    movies_only = stub_adapter("m", "https://a.example/m.m3u8", rank=9, media_types=("movie",))
    both = stub_adapter("b", "https://a.example/b.m3u8", rank=1)
    result = extract(make_engine(fetcher, [movies_only, both]),
                     ref=ContentReference("1399", "tv", season=1, episode=1))
    assert result.provider == "b"
    assert movies_only.calls == 0


def test_race_first_success_wins_and_cancels_siblings(fetcher, stub_adapter):
    slow = stub_adapter("slow", "https://a.example/slow.m3u8", rank=9, delay=5)
    failing = stub_adapter("failing", UpstreamUnavailable("down"), rank=5)
    fast = stub_adapter("fast", "https://a.example/fast.m3u8", rank=1, delay=0.01)
    engine = make_engine(fetcher, [slow, failing, fast], race_providers=True)

    result = extract(engine)
    assert result.provider == "fast"
    assert slow.calls == 1
    assert not slow.finished


def test_slow_provider_times_out_and_next_is_tried(fetcher, stub_adapter):
    slow = stub_adapter("slow", "https://a.example/slow.m3u8", rank=9, delay=2)
    ok = stub_adapter("ok", "https://a.example/ok.m3u8", rank=1)
    result = extract(make_engine(fetcher, [slow, ok], provider_timeout=0.05))
    assert result.provider == "ok"


def test_overall_deadline_yields_timeout(fetcher, stub_adapter):
    slow = stub_adapter("slow", "https://a.example/slow.m3u8", delay=2)
    result = extract(make_engine(fetcher, [slow], provider_timeout=5, request_deadline=0.05))
    assert not result.success
    assert result.error_kind == "Timeout"


def test_results_are_normalized(fetcher, stub_adapter):
    blocked = stub_adapter("b", "https://edge.blocked.example/x.m3u8")
    result = extract(make_engine(fetcher, [blocked], blocked_hosts=("blocked.example",)))
    assert result.sources[0].requires_segment_proxy
    assert result.sources[0].language == "english"

    open_ = stub_adapter("o", "https://open.example/x.m3u8")
    result = extract(make_engine(fetcher, [open_], blocked_hosts=("blocked.example",)))
    assert not result.sources[0].requires_segment_proxy


def test_cache_skips_second_run(fetcher, stub_adapter):
    p1 = stub_adapter("p1", "https://a.example/x.m3u8")
    engine = ProviderEngine(Settings(), fetcher=fetcher, adapters=[p1], cache=ResultCache(60))
    assert extract(engine).success
    assert extract(engine).success
    assert p1.calls == 1


def test_list_providers(fetcher, stub_adapter):
    engine = make_engine(fetcher, [stub_adapter("a", "https://x.example/a.m3u8", rank=2)])
    assert engine.list_providers() == [
        {"id": "a", "name": "a", "rank": 2, "mediaTypes": ["movie", "tv"], "disabled": False}]
