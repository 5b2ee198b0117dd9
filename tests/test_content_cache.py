"""Tests for the content cache: TTL, retries, fallback defaults, invalidation."""

import threading

import pytest

from content_cache import DEFAULT_CONTENT, ContentCache, ContentInvalidated


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class CountingFetcher:
    def __init__(self, documents=None):
        self.documents = documents or {}
        self.calls = []

    def __call__(self, section):
        self.calls.append(section)
        return self.documents.get(section, {"section": section, "version": len(self.calls)})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_cache(clock, sleeps):
    caches = []

    def factory(fetcher, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", sleeps.append)
        cache = ContentCache(fetcher, **kwargs)
        caches.append(cache)
        return cache

    yield factory
    for cache in caches:
        cache.shutdown()


class TestTTL:
    def test_fresh_entry_served_without_fetch(self, make_cache, clock):
        fetcher = CountingFetcher()
        cache = make_cache(fetcher)
        first = cache.get("home")
        clock.advance(29)
        assert cache.get("home") is first
        assert fetcher.calls == ["home"]

    def test_expired_entry_refetched(self, make_cache, clock):
        fetcher = CountingFetcher()
        cache = make_cache(fetcher)
        cache.get("home")
        clock.advance(31)
        cache.get("home")
        assert fetcher.calls == ["home", "home"]

    def test_sections_cached_independently(self, make_cache):
        fetcher = CountingFetcher()
        cache = make_cache(fetcher)
        cache.get("home")
        cache.get("footer")
        cache.get("home")
        assert fetcher.calls == ["home", "footer"]


class TestRetries:
    def test_persistent_failure_caches_default(self, make_cache, sleeps, clock):
        calls = []

        def failing(section):
            calls.append(section)
            raise ConnectionError("database unreachable")

        cache = make_cache(failing)
        assert cache.get("home") == DEFAULT_CONTENT["home"]
        assert len(calls) == 4
        assert sleeps == [1.5, 3.0, 4.5]
        assert cache.peek("home").is_default is True

        # The fallback is cached like a normal entry
        clock.advance(10)
        assert cache.get("home") == DEFAULT_CONTENT["home"]
        assert len(calls) == 4

    def test_recovers_after_transient_failures(self, make_cache, sleeps):
        attempts = []

        def flaky(section):
            attempts.append(section)
            if len(attempts) < 3:
                raise TimeoutError("slow")
            return {"hero_title": "Live"}

        cache = make_cache(flaky)
        assert cache.get("home") == {"hero_title": "Live"}
        assert sleeps == [1.5, 3.0]
        assert cache.peek("home").is_default is False

    def test_missing_row_uses_default_without_retry(self, make_cache, sleeps):
        cache = make_cache(lambda section: None)
        assert cache.get("footer") == DEFAULT_CONTENT["footer"]
        assert sleeps == []

    def test_unknown_section_defaults_to_empty(self, make_cache):
        cache = make_cache(lambda section: None)
        assert cache.get("sponsors") == {}

    def test_timeout_counts_as_failure(self, make_cache, sleeps):
        release = threading.Event()

        def blocking(section):
            release.wait(5)
            return {"late": True}

        cache = make_cache(blocking, timeout=0.05, max_retries=1)
        try:
            assert cache.get("about") == DEFAULT_CONTENT["about"]
            assert sleeps == [1.5]
        finally:
            release.set()

    def test_stalled_section_does_not_block_others(self, make_cache):
        release = threading.Event()

        def fetcher(section):
            if section == "home":
                release.wait(5)
            return {"section": section}

        cache = make_cache(fetcher, timeout=0.2, max_retries=0)
        try:
            assert cache.get("home") == DEFAULT_CONTENT["home"]
            assert cache.get("footer") == {"section": "footer"}
            assert cache.peek("footer").is_default is False
        finally:
            release.set()


class TestInvalidation:
    def test_invalidate_one_section(self, make_cache):
        fetcher = CountingFetcher()
        cache = make_cache(fetcher)
        cache.get("home")
        cache.get("footer")
        cache.invalidate("footer")
        cache.get("home")
        cache.get("footer")
        assert fetcher.calls == ["home", "footer", "footer"]

    def test_invalidate_all(self, make_cache):
        fetcher = CountingFetcher()
        cache = make_cache(fetcher)
        cache.get("home")
        cache.get("footer")
        cache.invalidate()
        cache.get("home")
        cache.get("footer")
        assert fetcher.calls.count("home") == 2
        assert fetcher.calls.count("footer") == 2

    def test_generation_increases(self, make_cache):
        cache = make_cache(CountingFetcher())
        before = cache.generation("home")
        cache.invalidate("home")
        assert cache.generation("home") == before + 1
        assert cache.generation("footer") == 0
        cache.invalidate()
        assert cache.generation("footer") == 1

    def test_fetch_invalidated_in_flight_is_discarded(self, make_cache):
        versions = iter(["stale", "fresh"])
        cache = None

        def fetcher(section):
            version = next(versions)
            if version == "stale":
                # An edit lands while this fetch is in flight
                cache.invalidate(section)
            return {"version": version}

        cache = make_cache(fetcher)
        assert cache.get("home") == {"version": "fresh"}
        assert cache.peek("home").document == {"version": "fresh"}

    def test_older_fetch_does_not_overwrite_newer_one(self, make_cache):
        fetcher = CountingFetcher()
        cache = None

        def overlapping(section):
            result = fetcher(section)
            if len(fetcher.calls) == 1:
                # A second request for the same section starts and finishes first
                cache.get(section)
            return result

        cache = make_cache(overlapping)
        cache.get("home")

        assert fetcher.calls == ["home", "home"]
        assert cache.peek("home").document == {"section": "home", "version": 2}
        assert cache.get("home") == {"section": "home", "version": 2}
        assert len(fetcher.calls) == 2


class TestSubscribers:
    def test_section_and_global_listeners(self, make_cache):
        cache = make_cache(CountingFetcher())
        footer_events, all_events = [], []
        cache.subscribe(footer_events.append, section="footer")
        cache.subscribe(all_events.append)

        cache.invalidate("home")
        assert footer_events == []
        assert [e.section for e in all_events] == ["home"]

        cache.invalidate("footer")
        assert len(footer_events) == 1
        assert isinstance(footer_events[0], ContentInvalidated)
        assert footer_events[0].section == "footer"

        cache.invalidate()
        assert len(footer_events) == 2
        assert footer_events[1].section is None

    def test_unsubscribe(self, make_cache):
        cache = make_cache(CountingFetcher())
        events = []
        unsubscribe = cache.subscribe(events.append)
        unsubscribe()
        cache.invalidate("home")
        assert events == []

    def test_failing_listener_does_not_block_others(self, make_cache):
        cache = make_cache(CountingFetcher())
        events = []

        def broken(event):
            raise RuntimeError("listener bug")

        cache.subscribe(broken)
        cache.subscribe(events.append)
        cache.invalidate("about")
        assert len(events) == 1
