from driftwood.providers.base import ExtractionResult, StreamSource, SubtitleTrack
from driftwood.providers.normalizer import Normalizer, classify_language, dedupe_sources


def test_classify_language():
    assert classify_language("Movie 1080p WEB-DL") == "english-quality"
    assert classify_language("Server 2") == "english"
    assert classify_language("Hindi Dubbed") == "foreign"
    assert classify_language("English / Spanish") == "english"


def test_priority_order_is_stable():
    result = ExtractionResult.ok("p", [
        StreamSource(url="https://a.example/1.m3u8", title="Latino"),
        StreamSource(url="https://a.example/2.m3u8", title="Server A"),
        StreamSource(url="https://a.example/3.m3u8", title="1080p"),
        StreamSource(url="https://a.example/4.m3u8", title="Server B"),
    ])
    out = Normalizer().normalize(result)
    assert [s.url[-6:] for s in out.sources] == ["3.m3u8", "2.m3u8", "4.m3u8", "1.m3u8"]
    assert [s.language for s in out.sources] == ["english-quality", "english", "english", "foreign"]


def test_dedupe_unions_metadata():
    merged = dedupe_sources([
        StreamSource(url="https://a.example/x.m3u8"),
        StreamSource(url="https://a.example/x.m3u8", quality="1080p", referer="https://e.example/"),
    ])
    assert len(merged) == 1
    assert merged[0].quality == "1080p"
    assert merged[0].referer == "https://e.example/"


def test_subtitles_deduped_by_url():
    result = ExtractionResult.ok("p", [StreamSource(url="https://a.example/x.m3u8")], [
        SubtitleTrack(url="https://s.example/en.vtt", label=""),
        SubtitleTrack(url="https://s.example/en.vtt", label="English", language="en"),
    ])
    out = Normalizer().normalize(result)
    assert len(out.subtitles) == 1
    assert out.subtitles[0].label == "English"


def test_proxy_flag_follows_block_list():
    normalizer = Normalizer(blocked_hosts=["blocked.example"], key_blocked_hosts=["keys.example"])
    result = ExtractionResult.ok("p", [
        StreamSource(url="https://cdn.blocked.example/a.m3u8"),
        StreamSource(url="https://open.example/b.m3u8"),
        StreamSource(url="https://keys.example/c.m3u8"),
    ])
    flags = {s.url: (s.requires_segment_proxy, s.requires_key_proxy)
             for s in normalizer.normalize(result).sources}
    assert flags["https://cdn.blocked.example/a.m3u8"] == (True, False)
    assert flags["https://open.example/b.m3u8"] == (False, False)
    assert flags["https://keys.example/c.m3u8"] == (False, True)


def test_failures_pass_through():
    failed = ExtractionResult.fail("UpstreamUnavailable", "down", provider="p")
    assert Normalizer().normalize(failed) is failed
