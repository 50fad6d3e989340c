"""Rule-based URL analyzer used by the scanner.

analyze_url() takes an already normalized URL and returns a ScoreResult with:
- score: int 0..100
- reasons: rule ids that triggered, in rule order
- sources: empty (the aggregator tags the local signal)

Weights for individual rules are defined as constants below for easy tuning.
"""

from urllib.parse import urlsplit

from guardiao.config import Settings
from guardiao.models import ScoreResult

# Tunable weights (0-100 scale)
WEIGHT_URL_SHORTENER = 25
WEIGHT_MANY_SUBDOMAINS = 10
WEIGHT_UNCOMMON_TLD = 15
WEIGHT_SUSPICIOUS_KEYWORD = 20
WEIGHT_NO_HTTPS = 10

DEFAULT_SETTINGS = Settings()


def _matches_domain(host: str, domain: str) -> bool:
	return host == domain or host.endswith("." + domain)


def analyze_url(url: str, settings: Settings = DEFAULT_SETTINGS) -> ScoreResult:
	parts = urlsplit(url)
	host = (parts.hostname or "").lower()

	result = ScoreResult()

	# link shorteners hide the real destination
	if any(_matches_domain(host, s) for s in settings.shorteners):
		result.add(WEIGHT_URL_SHORTENER, "url_shortener")

	# many subdomains
	if host.count(".") >= settings.min_subdomain_dots:
		result.add(WEIGHT_MANY_SUBDOMAINS, "many_subdomains")

	# disposable / uncommon TLD
	tld = host.rsplit(".", 1)[-1] if "." in host else ""
	if tld and tld in settings.uncommon_tlds:
		result.add(WEIGHT_UNCOMMON_TLD, "uncommon_tld")

	# suspicious keywords anywhere in the URL
	full = url.lower()
	if any(k in full for k in settings.url_keywords):
		result.add(WEIGHT_SUSPICIOUS_KEYWORD, "suspicious_keywords")

	if parts.scheme.lower() == "http":
		result.add(WEIGHT_NO_HTTPS, "no_https")

	return result.clamp()
