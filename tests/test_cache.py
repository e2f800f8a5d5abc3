from driftwood.providers.base import ContentReference, ExtractionResult, StreamSource
from driftwood.providers.cache import ResultCache, url_expiry

NOW = 1_800_000_000
REF = ContentReference("550")


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def result_for(url):
    return ExtractionResult.ok("p", [StreamSource(url=url)])


def test_url_expiry_params():
    assert url_expiry("https://a.example/x.m3u8?expires=1800000600") == 1800000600
    assert url_expiry("https://a.example/x.m3u8?e=1800000600000") == 1800000600
    assert url_expiry("https://a.example/x.m3u8?token=abc.1800000600.sig") == 1800000600
    assert url_expiry("https://a.example/x.m3u8?e=5") is None
    assert url_expiry("https://a.example/x.m3u8") is None


def test_hit_within_ttl_then_expires():
    clock = Clock(NOW)
    cache = ResultCache(60, clock=clock)
    assert cache.put("p", REF, result_for("https://a.example/x.m3u8"))
    assert cache.get("p", REF) is not None
    assert cache.get("other", REF) is None
    clock.now += 61
    assert cache.get("p", REF) is None


def test_ttl_capped_by_signed_url_expiry():
    clock = Clock(NOW)
    cache = ResultCache(600, margin=30, clock=clock)
    cache.put("p", REF, result_for(f"https://a.example/x.m3u8?expires={NOW + 100}"))
    clock.now += 71
    assert cache.get("p", REF) is None


def test_already_expired_urls_are_not_stored():
    cache = ResultCache(600, clock=Clock(NOW))
    assert not cache.put("p", REF, result_for(f"https://a.example/x.m3u8?exp={NOW - 5}"))
    assert len(cache) == 0


def test_failures_are_not_cached():
    cache = ResultCache(600)
    assert not cache.put("p", REF, ExtractionResult.fail("Timeout", "slow", provider="p"))


def test_expired_entries_are_dropped_on_write():
    clock = Clock(NOW)
    cache = ResultCache(10, clock=clock)
    for i in range(1000):
        cache.put("p", ContentReference(str(i)), result_for("https://a.example/x.m3u8"))
    assert len(cache) == 1000
    clock.now += 10_000
    cache.put("p", REF, result_for("https://a.example/x.m3u8"))
    assert len(cache) == 1


def test_size_cap_evicts_soonest_expiring():
    clock = Clock(NOW)
    cache = ResultCache(60, max_entries=2, clock=clock)
    cache.put("p", ContentReference("1"), result_for("https://a.example/1.m3u8"))
    clock.now += 5
    cache.put("p", ContentReference("2"), result_for("https://a.example/2.m3u8"))
    cache.put("p", ContentReference("3"), result_for("https://a.example/3.m3u8"))
    assert len(cache) == 2
    assert cache.get("p", ContentReference("1")) is None
    assert cache.get("p", ContentReference("3")) is not None
