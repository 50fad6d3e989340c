import pytest

from guardiao.config import Settings
from guardiao.db import Store
from guardiao.app.threat_intel import ReputationProvider


class FakeProvider(ReputationProvider):
    """Provider answering from a fixed set of URLs, counting calls."""

    def __init__(self, name, floor, hits=(), reason=None):
        super().__init__(floor)
        self.name = name
        self.reason = reason or f"{name}_match"
        self.hits = set(hits)
        self.calls = []

    def _lookup(self, url):
        self.calls.append(url)
        return url in self.hits


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://")


@pytest.fixture
def store():
    s = Store("sqlite://")
    s.init_db()
    return s


@pytest.fixture
def fake_provider():
    return FakeProvider
