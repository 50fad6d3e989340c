"""Threat intelligence lookups used by the scanner.

Each provider answers ``check_url(url) -> LookupResult``. Providers fail open:
an unconfigured provider answers "no hit" tagged ``<name>:stub`` and a provider
that errors or times out answers "no hit" tagged ``<name>:error``.

aggregate() runs all providers concurrently and escalates the local score to
the floor of every provider that reports a hit.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence, Set

import requests

from guardiao.config import Settings
from guardiao.models import LookupResult, ScoreResult
from .normalize import InvalidURL, normalize_url

logger = logging.getLogger(__name__)

SAFE_BROWSING_ENDPOINT = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
THREAT_TYPES = ["MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE",
                "POTENTIALLY_HARMFUL_APPLICATION"]

# lookups from all requests share this pool
MAX_LOOKUP_WORKERS = 8
_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


class LookupFailed(RuntimeError):
    """A provider has no data to answer with right now."""


class ReputationProvider:
    """Base class for reputation lookups.

    Subclasses implement ``_lookup(url) -> bool``; ``check_url`` wraps it so
    that request failures degrade to a tagged "no hit".
    """

    name = "provider"
    reason = "reputation_match"

    def __init__(self, floor: int, timeout: float = 4.0):
        self.floor = floor
        self.timeout = timeout

    def _lookup(self, url: str) -> bool:
        raise NotImplementedError

    def error_result(self) -> LookupResult:
        return LookupResult(hit=False, source=f"{self.name}:error")

    def check_url(self, url: str) -> LookupResult:
        try:
            hit = self._lookup(url)
        except (requests.exceptions.RequestException, ValueError, LookupFailed) as e:
            logger.warning("%s lookup failed for %s: %s", self.name, url, e)
            return self.error_result()
        return LookupResult(hit=bool(hit), source=self.name)


class StubProvider(ReputationProvider):
    """Stands in for a provider that has no credentials or feed configured."""

    def __init__(self, name: str, reason: str, floor: int):
        super().__init__(floor)
        self.name = name
        self.reason = reason

    def check_url(self, url: str) -> LookupResult:
        return LookupResult(hit=False, source=f"{self.name}:stub")


class SafeBrowsingProvider(ReputationProvider):
    name = "safe_browsing"
    reason = "safe_browsing_match"

    def __init__(self, api_key: str, floor: int = 90, timeout: float = 4.0,
                 endpoint: str = SAFE_BROWSING_ENDPOINT):
        super().__init__(floor, timeout)
        self.api_key = api_key
        self.endpoint = endpoint

    def _lookup(self, url: str) -> bool:
        body = {
            "client": {"clientId": "guardiao", "clientVersion": "1.0"},
            "threatInfo": {
                "threatTypes": THREAT_TYPES,
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": url}],
            },
        }
        resp = requests.post(self.endpoint, params={"key": self.api_key}, json=body,
                             timeout=self.timeout)
        resp.raise_for_status()
        data = resp.json() or {}
        return bool(data.get("matches"))


class OpenPhishProvider(ReputationProvider):
    """Membership check against a downloaded OpenPhish feed (one URL per line).

    The parsed feed is kept for ``cache_ttl`` seconds. Only one thread downloads
    at a time; the others answer from the previous copy of the feed, or fail
    the lookup when there is none yet. After a failed download no new attempt
    is made for ``retry_after`` seconds.
    """

    name = "openphish"
    reason = "openphish_match"

    def __init__(self, feed_url: str, floor: int = 95, timeout: float = 4.0,
                 cache_ttl: int = 300, retry_after: int = 60):
        super().__init__(floor, timeout)
        self.feed_url = feed_url
        self.cache_ttl = cache_ttl
        self.retry_after = retry_after
        self._index: Optional[Set[str]] = None
        self._loaded_at = 0.0
        self._failed_at: Optional[float] = None
        self._refreshing = False
        self._lock = threading.Lock()

    def _download(self) -> Set[str]:
        resp = requests.get(self.feed_url, timeout=self.timeout)
        resp.raise_for_status()
        index = set()
        for line in resp.text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                index.add(normalize_url(line))
            except InvalidURL:
                continue
        logger.info("OpenPhish feed loaded (entries=%d)", len(index))
        return index

    def _stale_or_fail(self, why: str) -> Set[str]:
        if self._index is not None:
            return self._index
        raise LookupFailed(f"feed not available ({why})")

    def _feed(self) -> Set[str]:
        now = time.monotonic()
        with self._lock:
            if self._index is not None and now - self._loaded_at < self.cache_ttl:
                return self._index
            if self._refreshing:
                return self._stale_or_fail("download in progress")
            if self._failed_at is not None and now - self._failed_at < self.retry_after:
                return self._stale_or_fail("last download failed")
            self._refreshing = True

        index = None
        try:
            index = self._download()
        finally:
            with self._lock:
                self._refreshing = False
                if index is None:
                    self._failed_at = time.monotonic()
                else:
                    self._index = index
                    self._loaded_at = time.monotonic()
                    self._failed_at = None
        return index

    def _lookup(self, url: str) -> bool:
        return url in self._feed()


def build_providers(settings: Settings) -> List[ReputationProvider]:
    """Providers in escalation order; unconfigured ones are stubbed."""
    providers: List[ReputationProvider] = []
    if settings.safe_browsing_key:
        providers.append(SafeBrowsingProvider(settings.safe_browsing_key,
                                              floor=settings.safe_browsing_floor,
                                              timeout=settings.lookup_timeout))
    else:
        providers.append(StubProvider("safe_browsing", "safe_browsing_match",
                                      settings.safe_browsing_floor))
    if settings.openphish_feed_url:
        providers.append(OpenPhishProvider(settings.openphish_feed_url,
                                           floor=settings.openphish_floor,
                                           timeout=settings.lookup_timeout,
                                           cache_ttl=settings.openphish_cache_ttl,
                                           retry_after=settings.openphish_retry_after))
    else:
        providers.append(StubProvider("openphish", "openphish_match",
                                      settings.openphish_floor))
    return providers


def _lookup_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=MAX_LOOKUP_WORKERS,
                                           thread_name_prefix="reputation")
        return _executor


def run_lookups_many(urls: Sequence[str], providers: Sequence[ReputationProvider],
                     timeout: float = 4.0) -> Dict[str, Dict[ReputationProvider, LookupResult]]:
    """Query every (url, provider) pair concurrently and join on all of them.

    The whole fan-out shares one ``timeout``; a lookup still pending or running
    after it is reported as an error. Work runs on a shared, bounded pool.
    """
    results: Dict[str, Dict[ReputationProvider, LookupResult]] = {url: {} for url in urls}
    if not urls or not providers:
        return results
    pool = _lookup_executor()
    futures = {}
    for url in results:
        for provider in providers:
            futures[pool.submit(provider.check_url, url)] = (url, provider)
    done, _ = wait(futures, timeout=timeout)
    for future, (url, provider) in futures.items():
        if future not in done:
            # a queued lookup never starts; a running one finishes in the background
            future.cancel()
            logger.warning("%s lookup timed out after %ss", provider.name, timeout)
            results[url][provider] = provider.error_result()
            continue
        try:
            results[url][provider] = future.result()
        except Exception:
            logger.exception("%s lookup raised", provider.name)
            results[url][provider] = provider.error_result()
    return results


def run_lookups(url: str, providers: Sequence[ReputationProvider],
                timeout: float = 4.0) -> Dict[ReputationProvider, LookupResult]:
    """Query every provider for one URL; see run_lookups_many()."""
    return run_lookups_many([url], providers, timeout)[url]


def merge_lookups(local: ScoreResult, providers: Sequence[ReputationProvider],
                  lookups: Dict[ReputationProvider, LookupResult]) -> ScoreResult:
    """Floor the local score for every provider that reported a hit."""
    merged = ScoreResult(score=local.score, reasons=list(local.reasons), sources=["local"])
    for provider in providers:
        outcome = lookups.get(provider)
        if outcome is None or not outcome.hit:
            continue
        merged.score = max(merged.score, provider.floor)
        merged.add_reason(provider.reason)
        merged.add_source(outcome.source)
    return merged.clamp()


def aggregate(url: str, local: ScoreResult, providers: Sequence[ReputationProvider],
              timeout: float = 4.0) -> ScoreResult:
    return merge_lookups(local, providers, run_lookups(url, providers, timeout))
