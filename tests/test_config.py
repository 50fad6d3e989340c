import pytest

from guardiao.api import create_app
from guardiao.config import ConfigError, Settings


def test_defaults():
    s = Settings()
    assert (s.score_medium_min, s.score_high_min) == (50, 80)
    assert (s.safe_browsing_floor, s.openphish_floor) == (90, 95)
    assert s.lookup_timeout == 4.0
    assert s.min_subdomain_dots == 2
    assert s.openphish_retry_after == 60
    assert "utm_source" in s.tracking_params


@pytest.mark.parametrize("kwargs", [
    {"score_medium_min": 90, "score_high_min": 80},
    {"score_medium_min": -1},
    {"score_high_min": 101},
    {"safe_browsing_floor": 150},
    {"lookup_timeout": 0},
    {"text_alert_min_hits": -1},
    {"openphish_retry_after": -1},
    {"min_subdomain_dots": 0},
])
def test_invalid_settings(kwargs):
    with pytest.raises(ConfigError):
        Settings(**kwargs)


def test_from_env(monkeypatch):
    monkeypatch.setenv("SCORE_MEDIUM_MIN", "40")
    monkeypatch.setenv("SCORE_HIGH_MIN", "70")
    monkeypatch.setenv("SAFE_BROWSING_KEY", "abc")
    monkeypatch.setenv("GUARDIAO_DB", "/tmp/guardiao-test.db")
    monkeypatch.setenv("LOOKUP_TIMEOUT", "2.5")
    monkeypatch.setenv("MIN_SUBDOMAIN_DOTS", "3")
    monkeypatch.delenv("GUARDIAO_DATABASE_URL", raising=False)
    s = Settings.from_env()
    assert (s.score_medium_min, s.score_high_min) == (40, 70)
    assert s.safe_browsing_key == "abc"
    assert s.database_url == "sqlite:////tmp/guardiao-test.db"
    assert s.lookup_timeout == 2.5
    assert s.min_subdomain_dots == 3


def test_bad_env_fails_at_startup(monkeypatch):
    monkeypatch.setenv("SCORE_MEDIUM_MIN", "90")
    monkeypatch.setenv("SCORE_HIGH_MIN", "80")
    with pytest.raises(ConfigError):
        create_app()


def test_non_numeric_env(monkeypatch):
    monkeypatch.setenv("SCORE_HIGH_MIN", "high")
    with pytest.raises(ConfigError):
        Settings.from_env()
