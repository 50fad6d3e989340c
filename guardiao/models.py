"""Value types shared by the scorers, the reputation providers and the alert pipeline."""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any


SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITIES = (SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH)

STATUS_NEW = "new"
STATUS_ACK = "ack"
STATUSES = (STATUS_NEW, STATUS_ACK)

LINK_SUSPECT = "LINK_SUSPECT"
REPORT_SUSPECT = "REPORT_SUSPECT"
TEXT_ANALYSIS = "TEXT_ANALYSIS"
MANUAL_REPORT = "MANUAL_REPORT"
MANUAL_SAFE = "MANUAL_SAFE"
ALERT_TYPES = (LINK_SUSPECT, REPORT_SUSPECT, TEXT_ANALYSIS, MANUAL_REPORT, MANUAL_SAFE)


@dataclass
class ScoreResult:
    """Score in 0..100 plus the reason codes and signal sources behind it.

    ``reasons`` and ``sources`` keep first-seen order and never hold duplicates.
    """

    score: int = 0
    reasons: List[str] = field(default_factory=list)
    sources: List[str] = field(default_factory=list)

    def add(self, points: int, reason: str) -> None:
        self.score += points
        self.add_reason(reason)

    def add_reason(self, reason: str) -> None:
        if reason not in self.reasons:
            self.reasons.append(reason)

    def add_source(self, source: str) -> None:
        if source not in self.sources:
            self.sources.append(source)

    def clamp(self) -> "ScoreResult":
        self.score = int(max(0, min(100, round(self.score))))
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "reasons": list(self.reasons), "sources": list(self.sources)}


@dataclass
class LookupResult:
    """Answer from one reputation provider."""

    hit: bool
    source: str


@dataclass
class TextAnalysis:
    score: int
    reasons: List[str]
    keyword_hits: int
    urls_found: List[str]
    per_url: List[Dict[str, Any]]
    sources: List[str] = field(default_factory=list)
    severity: Optional[str] = None

    @property
    def best_url(self) -> Optional[str]:
        """URL with the highest score, first one wins ties."""
        best = None
        for item in self.per_url:
            if best is None or item["score"] > best["score"]:
                best = item
        return best["url"] if best else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "severity": self.severity,
            "reasons": list(self.reasons),
            "sources": list(self.sources),
            "keyword_hits": self.keyword_hits,
            "urls_found": list(self.urls_found),
            "per_url": [dict(item) for item in self.per_url],
        }
