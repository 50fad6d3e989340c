"""Severity tiers derived from a 0..100 score."""

from guardiao.models import SEVERITY_HIGH, SEVERITY_LOW, SEVERITY_MEDIUM


def severity_from_score(score: int, medium_min: int = 50, high_min: int = 80) -> str:
    if score >= high_min:
        return SEVERITY_HIGH
    if score >= medium_min:
        return SEVERITY_MEDIUM
    return SEVERITY_LOW


def severity_for(score: int, settings) -> str:
    return severity_from_score(score, settings.score_medium_min, settings.score_high_min)
