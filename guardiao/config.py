# config.py
"""
Runtime settings for Guardião.

Settings are read once from the environment at startup (``Settings.from_env()``)
and passed into the scorers, the reputation providers and the API factory.
Invalid thresholds raise ``ConfigError`` here, so a bad deployment fails before
serving any request.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple


class ConfigError(ValueError):
    """Raised when the process-wide settings are inconsistent."""


TRACKING_PARAMS = ("utm_source", "utm_medium", "utm_campaign", "utm_term",
                   "utm_content", "gclid", "fbclid")

SHORTENERS = ("bit.ly", "tinyurl.com", "t.co", "is.gd", "goo.gl", "cutt.ly",
              "ow.ly", "rebrand.ly")

UNCOMMON_TLDS = ("top", "xyz", "click", "link", "fit", "rest", "gq", "ml", "cf", "tk")

URL_KEYWORDS = ("pix", "premio", "brinde", "ganhou", "suporte", "senha", "bloqueio",
                "liberar", "cartão", "banco", "itau", "nubank", "correios", "receita",
                "fgts")

TEXT_KEYWORDS = ("pix", "senha", "urgente", "bloqueio", "bloqueada", "transferência",
                 "código", "premio", "prêmio", "ganhou", "cartão", "conta", "banco",
                 "clique", "boleto", "receita", "fgts")

REPORT_KEYWORDS = ("pix", "senha", "cobrança", "bloqueio", "link", "golpe", "phishing")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    api_key: Optional[str] = None
    database_url: str = "sqlite:///guardiao.db"
    log_level: str = "INFO"
    redis_url: Optional[str] = None
    rate_limit: str = "60 per minute"

    score_medium_min: int = 50
    score_high_min: int = 80

    safe_browsing_key: Optional[str] = None
    safe_browsing_floor: int = 90
    openphish_feed_url: Optional[str] = None
    openphish_floor: int = 95
    openphish_cache_ttl: int = 300
    openphish_retry_after: int = 60
    lookup_timeout: float = 4.0

    # many_subdomains fires when the host has at least this many dots (3+ labels)
    min_subdomain_dots: int = 2
    max_text_urls: int = 5
    text_alert_min_hits: int = 3

    tracking_params: Tuple[str, ...] = TRACKING_PARAMS
    shorteners: Tuple[str, ...] = SHORTENERS
    uncommon_tlds: Tuple[str, ...] = UNCOMMON_TLDS
    url_keywords: Tuple[str, ...] = URL_KEYWORDS
    text_keywords: Tuple[str, ...] = TEXT_KEYWORDS
    report_keywords: Tuple[str, ...] = REPORT_KEYWORDS

    # Weights for the text scorer (0-100 scale)
    text_keyword_points: int = 15
    text_many_keywords_points: int = 30
    text_many_keywords_min: int = 3
    text_url_points: int = 15

    def __post_init__(self):
        if not (0 <= self.score_medium_min <= self.score_high_min <= 100):
            raise ConfigError(
                "severity thresholds must satisfy 0 <= SCORE_MEDIUM_MIN <= SCORE_HIGH_MIN <= 100 "
                f"(got {self.score_medium_min}/{self.score_high_min})")
        for name in ("safe_browsing_floor", "openphish_floor"):
            value = getattr(self, name)
            if not (0 <= value <= 100):
                raise ConfigError(f"{name} must be within 0..100, got {value}")
        if self.lookup_timeout <= 0:
            raise ConfigError("LOOKUP_TIMEOUT must be positive")
        if self.text_alert_min_hits < 0:
            raise ConfigError("TEXT_ALERT_MIN_HITS must not be negative")
        if self.max_text_urls < 0:
            raise ConfigError("max_text_urls must not be negative")
        if self.openphish_cache_ttl < 0:
            raise ConfigError("OPENPHISH_CACHE_TTL must not be negative")
        if self.openphish_retry_after < 0:
            raise ConfigError("OPENPHISH_RETRY_AFTER must not be negative")
        if self.min_subdomain_dots < 1:
            raise ConfigError("MIN_SUBDOMAIN_DOTS must be at least 1")

    @classmethod
    def from_env(cls) -> "Settings":
        db_url = os.getenv("GUARDIAO_DATABASE_URL")
        if not db_url:
            db_url = f"sqlite:///{os.getenv('GUARDIAO_DB', 'guardiao.db')}"
        return cls(
            api_key=os.getenv("GUARDIAO_API_KEY") or None,
            database_url=db_url,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            redis_url=os.getenv("REDIS_URL") or None,
            rate_limit=os.getenv("RATE_LIMIT", "60 per minute"),
            score_medium_min=_env_int("SCORE_MEDIUM_MIN", 50),
            score_high_min=_env_int("SCORE_HIGH_MIN", 80),
            safe_browsing_key=os.getenv("SAFE_BROWSING_KEY") or None,
            safe_browsing_floor=_env_int("SAFE_BROWSING_FLOOR", 90),
            openphish_feed_url=os.getenv("OPENPHISH_FEED_URL") or None,
            openphish_floor=_env_int("OPENPHISH_FLOOR", 95),
            openphish_cache_ttl=_env_int("OPENPHISH_CACHE_TTL", 300),
            openphish_retry_after=_env_int("OPENPHISH_RETRY_AFTER", 60),
            lookup_timeout=_env_float("LOOKUP_TIMEOUT", 4.0),
            min_subdomain_dots=_env_int("MIN_SUBDOMAIN_DOTS", 2),
            text_alert_min_hits=_env_int("TEXT_ALERT_MIN_HITS", 3),
        )
