"""
Scoring pipeline: normalize -> heuristics -> reputation -> severity.
"""

import logging

from guardiao.config import Settings
from guardiao.models import ScoreResult, TextAnalysis, SEVERITY_LOW
from .heuristics import analyze_url
from .normalize import normalize_url
from .severity import severity_for
from .text_heuristics import analyze_text
from .threat_intel import aggregate, merge_lookups, run_lookups_many

logger = logging.getLogger(__name__)


def score_url(url: str, settings: Settings, providers) -> ScoreResult:
	"""Score an already normalized URL with local rules and external reputation."""
	local = analyze_url(url, settings)
	return aggregate(url, local, providers, settings.lookup_timeout)


def check_link(raw_url: str, settings: Settings, providers) -> dict:
	"""Classify a submitted link. Raises InvalidURL before any scoring."""
	url = normalize_url(raw_url, settings.tracking_params)
	merged = score_url(url, settings, providers)
	severity = severity_for(merged.score, settings)
	logger.info("link %s scored %d (%s) reasons=%s", url, merged.score, severity, merged.reasons)
	return {
		"url": url,
		"is_safe": severity == SEVERITY_LOW,
		"score": merged.score,
		"severity": severity,
		"reasons": merged.reasons,
		"sources": merged.sources,
	}


def scan_text(text: str, settings: Settings, providers) -> TextAnalysis:
	"""Classify free text. Raises EmptyInput before any scoring.

	Embedded links also go through the reputation providers; a provider hit on
	any of them floors the message score like it does for a link check.
	"""
	analysis = analyze_text(text, settings)

	merged = ScoreResult(score=analysis.score, reasons=list(analysis.reasons), sources=["local"])
	# one fan-out for every link, bounded by a single lookup timeout
	lookups = run_lookups_many([item["url"] for item in analysis.per_url], providers,
								 settings.lookup_timeout)
	for item in analysis.per_url:
		url_result = merge_lookups(ScoreResult(score=item["score"]), providers,
								   lookups.get(item["url"], {}))
		if url_result.score > item["score"]:
			item["score"] = url_result.score
		item["sources"] = url_result.sources
		merged.score = max(merged.score, url_result.score)
		for reason in url_result.reasons:
			merged.add_reason(reason)
			if reason not in item["reasons"]:
				item["reasons"].append(reason)
		for source in url_result.sources:
			merged.add_source(source)
	merged.clamp()

	analysis.score = merged.score
	analysis.reasons = merged.reasons
	analysis.sources = merged.sources
	analysis.severity = severity_for(merged.score, settings)
	logger.info("text scored %d (%s) keyword_hits=%d urls=%d", analysis.score,
				analysis.severity, analysis.keyword_hits, len(analysis.urls_found))
	return analysis
