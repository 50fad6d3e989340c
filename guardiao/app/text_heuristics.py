# text_heuristics.py
"""
Rule-based scoring of free text (SMS, chat messages, e-mail bodies).

The text score combines a tiered keyword bonus with a flat bonus for carrying
a link. Embedded links are normalized and scored with the URL heuristics; the
strongest link wins over weak text signals (``max(text, best_url)``).
"""

import re
from typing import List

from guardiao.config import Settings
from guardiao.models import ScoreResult, TextAnalysis
from .heuristics import analyze_url, DEFAULT_SETTINGS
from .normalize import InvalidInput, InvalidURL, normalize_url

URL_REGEX = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)


class EmptyInput(InvalidInput):
    code = "empty_text"


def extract_urls(text: str, limit: int = 5) -> List[str]:
    """Return the first ``limit`` http(s) substrings, trailing punctuation removed."""
    found = []
    for match in URL_REGEX.finditer(text):
        if len(found) >= limit:
            break
        found.append(match.group(0).rstrip(".,;:!?)]}"))
    return found


def count_keywords(text: str, keywords) -> int:
    lowered = text.casefold()
    return sum(1 for k in keywords if k.casefold() in lowered)


def analyze_text(text: str, settings: Settings = DEFAULT_SETTINGS) -> TextAnalysis:
    if text is None or not str(text).strip():
        raise EmptyInput("text must not be empty")
    text = str(text)

    result = ScoreResult()

    hits = count_keywords(text, settings.text_keywords)
    if hits >= 1:
        result.add(settings.text_keyword_points, "risky_keywords")
    if hits >= settings.text_many_keywords_min:
        result.add(settings.text_many_keywords_points, "many_risky_keywords")

    urls_found = []
    for raw in extract_urls(text, settings.max_text_urls):
        try:
            norm = normalize_url(raw, settings.tracking_params)
        except InvalidURL:
            continue
        if norm not in urls_found:
            urls_found.append(norm)

    if urls_found:
        result.add(settings.text_url_points, "contains_url")

    per_url = []
    best_url_score = 0
    for url in urls_found:
        url_result = analyze_url(url, settings)
        per_url.append({"url": url, "score": url_result.score, "reasons": list(url_result.reasons)})
        best_url_score = max(best_url_score, url_result.score)
        for reason in url_result.reasons:
            result.add_reason(reason)

    result.score = max(result.score, best_url_score)
    result.clamp()

    return TextAnalysis(
        score=result.score,
        reasons=result.reasons,
        keyword_hits=hits,
        urls_found=urls_found,
        per_url=per_url,
    )
