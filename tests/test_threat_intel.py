import threading
import time

import pytest
import requests

from guardiao.app import threat_intel
from guardiao.app.scanner import scan_text
from guardiao.app.threat_intel import (
    MAX_LOOKUP_WORKERS, OpenPhishProvider, SafeBrowsingProvider, StubProvider, aggregate,
    build_providers, run_lookups, run_lookups_many,
)
from guardiao.config import Settings
from guardiao.models import ScoreResult

URL = "http://bit.ly/abc"


class FakeResponse:
    def __init__(self, payload=None, text=""):
        self._payload = payload
        self.text = text

    def raise_for_status(self):
        return None

    def json(self):
        return self._payload


def test_unconfigured_providers_are_stubs():
    providers = build_providers(Settings())
    assert all(isinstance(p, StubProvider) for p in providers)
    sources = [p.check_url(URL).source for p in providers]
    assert sources == ["safe_browsing:stub", "openphish:stub"]
    assert not any(p.check_url(URL).hit for p in providers)


def test_configured_providers():
    providers = build_providers(Settings(safe_browsing_key="k", openphish_feed_url="https://feed.example/feed.txt",
                                         safe_browsing_floor=85, openphish_floor=99))
    assert isinstance(providers[0], SafeBrowsingProvider)
    assert isinstance(providers[1], OpenPhishProvider)
    assert [p.floor for p in providers] == [85, 99]


def test_aggregate_without_hits_keeps_local_score():
    local = ScoreResult(score=35, reasons=["url_shortener", "no_https"])
    merged = aggregate(URL, local, build_providers(Settings()))
    assert merged.score == 35
    assert merged.reasons == ["url_shortener", "no_https"]
    assert merged.sources == ["local"]


def test_hit_floors_score(fake_provider):
    sb = fake_provider("safe_browsing", 90, hits={URL})
    merged = aggregate(URL, ScoreResult(score=35, reasons=["url_shortener"]), [sb])
    assert merged.score == 90
    assert merged.reasons == ["url_shortener", "safe_browsing_match"]
    assert merged.sources == ["local", "safe_browsing"]
    assert sb.calls == [URL]


def test_floors_are_not_additive(fake_provider):
    providers = [fake_provider("safe_browsing", 90, hits={URL}), fake_provider("openphish", 95, hits={URL})]
    merged = aggregate(URL, ScoreResult(score=10), providers)
    assert merged.score == 95
    assert merged.reasons == ["safe_browsing_match", "openphish_match"]
    assert merged.sources == ["local", "safe_browsing", "openphish"]


@pytest.mark.parametrize("local_score", [0, 35, 89, 90, 97])
def test_hit_never_below_floor(fake_provider, local_score):
    merged = aggregate(URL, ScoreResult(score=local_score), [fake_provider("safe_browsing", 90, hits={URL})])
    assert merged.score == max(local_score, 90)


def test_failing_provider_fails_open(fake_provider):
    class Broken(fake_provider):
        def _lookup(self, url):
            raise requests.exceptions.ConnectionError("down")

    broken = Broken("safe_browsing", 90)
    result = broken.check_url(URL)
    assert not result.hit
    assert result.source == "safe_browsing:error"

    merged = aggregate(URL, ScoreResult(score=20), [broken, fake_provider("openphish", 95, hits={URL})])
    assert merged.score == 95
    assert merged.sources == ["local", "openphish"]


def test_slow_provider_times_out(fake_provider):
    release = threading.Event()

    class Slow(fake_provider):
        def _lookup(self, url):
            release.wait(5)
            return True

    slow = Slow("safe_browsing", 90)
    fast = fake_provider("openphish", 95)
    try:
        results = run_lookups(URL, [slow, fast], timeout=0.1)
    finally:
        release.set()
    assert results[slow].source == "safe_browsing:error"
    assert not results[slow].hit
    assert results[fast].source == "openphish"


def test_safe_browsing_match(monkeypatch):
    calls = []

    def fake_post(url, params=None, json=None, timeout=None):
        calls.append((url, params, json, timeout))
        return FakeResponse({"matches": [{"threatType": "SOCIAL_ENGINEERING"}]})

    monkeypatch.setattr(threat_intel.requests, "post", fake_post)
    provider = SafeBrowsingProvider("secret", timeout=2)
    result = provider.check_url(URL)
    assert result.hit
    assert result.source == "safe_browsing"
    endpoint, params, body, timeout = calls[0]
    assert params == {"key": "secret"}
    assert body["threatInfo"]["threatEntries"] == [{"url": URL}]
    assert timeout == 2


def test_safe_browsing_no_match(monkeypatch):
    monkeypatch.setattr(threat_intel.requests, "post", lambda *a, **kw: FakeResponse({}))
    assert not SafeBrowsingProvider("secret").check_url(URL).hit


def test_openphish_membership_and_cache(monkeypatch):
    downloads = []
    feed = "http://evil.example/login?utm_source=a\nhttps://Other.example/x#frag\n\nnot a url\n"

    def fake_get(url, timeout=None):
        downloads.append(url)
        return FakeResponse(text=feed)

    monkeypatch.setattr(threat_intel.requests, "get", fake_get)
    provider = OpenPhishProvider("https://feed.example/feed.txt", cache_ttl=300)
    assert provider.check_url("http://evil.example/login").hit
    assert provider.check_url("https://other.example/x").hit
    assert not provider.check_url("https://example.com/").hit
    assert downloads == ["https://feed.example/feed.txt"]


def test_openphish_download_error(monkeypatch):
    def fake_get(url, timeout=None):
        raise requests.exceptions.Timeout("slow feed")

    monkeypatch.setattr(threat_intel.requests, "get", fake_get)
    result = OpenPhishProvider("https://feed.example/feed.txt").check_url(URL)
    assert not result.hit
    assert result.source == "openphish:error"


def _reputation_threads():
    return [t for t in threading.enumerate() if t.name.startswith("reputation")]


def test_hanging_feed_keeps_thread_count_bounded(monkeypatch):
    release = threading.Event()
    downloads = []

    def hanging_get(url, timeout=None):
        downloads.append(url)
        release.wait(5)
        return FakeResponse(text=URL)

    monkeypatch.setattr(threat_intel.requests, "get", hanging_get)
    provider = OpenPhishProvider("https://feed.example/feed.txt")
    try:
        for _ in range(20):
            results = run_lookups(URL, [provider], timeout=0.05)
            assert results[provider].source == "openphish:error"
            assert len(_reputation_threads()) <= MAX_LOOKUP_WORKERS
    finally:
        release.set()
    assert downloads == ["https://feed.example/feed.txt"]


def test_stale_feed_answers_while_refreshing(monkeypatch):
    started = threading.Event()
    release = threading.Event()

    def slow_get(url, timeout=None):
        started.set()
        release.wait(5)
        return FakeResponse(text="https://fresh.example/\n")

    monkeypatch.setattr(threat_intel.requests, "get", slow_get)
    provider = OpenPhishProvider("https://feed.example/feed.txt", cache_ttl=300)
    provider._index = {URL}
    provider._loaded_at = time.monotonic() - 301

    refresher = threading.Thread(target=provider.check_url, args=(URL,))
    refresher.start()
    try:
        assert started.wait(5)
        result = provider.check_url(URL)
        assert result.hit
        assert result.source == "openphish"
    finally:
        release.set()
        refresher.join(5)
    assert provider.check_url("https://fresh.example/").hit


def test_failed_download_is_not_retried_right_away(monkeypatch):
    downloads = []

    def failing_get(url, timeout=None):
        downloads.append(url)
        raise requests.exceptions.ConnectionError("feed down")

    monkeypatch.setattr(threat_intel.requests, "get", failing_get)
    provider = OpenPhishProvider("https://feed.example/feed.txt", retry_after=60)
    assert provider.check_url(URL).source == "openphish:error"
    assert provider.check_url(URL).source == "openphish:error"
    assert len(downloads) == 1

    provider._failed_at = time.monotonic() - 61
    provider.check_url(URL)
    assert len(downloads) == 2


def test_many_urls_share_one_timeout(fake_provider):
    release = threading.Event()

    class Slow(fake_provider):
        def _lookup(self, url):
            release.wait(5)
            return True

    slow = Slow("safe_browsing", 90)
    urls = [f"https://site{i}.example/" for i in range(4)]
    started = time.monotonic()
    try:
        results = run_lookups_many(urls, [slow], timeout=0.3)
    finally:
        release.set()
    assert time.monotonic() - started < 1.0
    assert sorted(results) == urls
    assert all(results[u][slow].source == "safe_browsing:error" for u in urls)


def test_scan_text_looks_up_all_links_at_once(fake_provider):
    release = threading.Event()

    class Slow(fake_provider):
        def _lookup(self, url):
            release.wait(5)
            return True

    settings = Settings(lookup_timeout=0.3)
    text = " ".join(f"https://site{i}.example/" for i in range(4))
    started = time.monotonic()
    try:
        analysis = scan_text(text, settings, [Slow("safe_browsing", 90)])
    finally:
        release.set()
    assert time.monotonic() - started < 1.0
    assert len(analysis.per_url) == 4
    assert all(item["sources"] == ["local"] for item in analysis.per_url)
