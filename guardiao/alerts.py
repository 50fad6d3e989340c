# alerts.py
"""
Alert materialization and lifecycle.

The materialize_* functions decide, per kind of classification event, whether
an Alert is written and with which fields. Alerts are only ever appended here;
the lifecycle functions below are the only code that changes them
(new -> ack, one way).
"""

import csv
import io
import logging
from typing import Any, Dict, Iterable, List, Optional

from guardiao.config import Settings
from guardiao.db import Store
from guardiao.models import (
    LINK_SUSPECT, MANUAL_REPORT, MANUAL_SAFE, REPORT_SUSPECT, TEXT_ANALYSIS,
    SEVERITIES, SEVERITY_HIGH, SEVERITY_LOW, SEVERITY_MEDIUM, STATUSES, TextAnalysis,
)
from guardiao.app.severity import severity_for
from guardiao.app.text_heuristics import count_keywords

logger = logging.getLogger(__name__)

VERDICT_SCAM = "scam"
VERDICT_SAFE = "safe"

# verdict -> (type, severity, score, description)
MANUAL_OUTCOMES = {
    VERDICT_SCAM: (MANUAL_REPORT, SEVERITY_HIGH, 90, "Message marked as scam by a reviewer"),
    VERDICT_SAFE: (MANUAL_SAFE, SEVERITY_LOW, 10, "Message marked as safe by a reviewer"),
}

EXPORT_COLUMNS = ["id", "type", "status", "severity", "score", "url", "description",
                  "created_at", "ack_at", "link_check_id", "report_id", "message_id"]
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


class AlertNotFound(LookupError):
    """Raised when an alert id does not exist."""


def _created(alert: Dict[str, Any]) -> Dict[str, Any]:
    logger.info("alert %s created type=%s severity=%s score=%s", alert["id"], alert["type"],
                alert["severity"], alert["score"])
    return alert


# -------------------------------------
# Materializer
# -------------------------------------
def materialize_link_check(store: Store, check: Dict[str, Any],
                           link_check_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
    """LINK_SUSPECT whenever the link is not low severity."""
    if check["severity"] == SEVERITY_LOW:
        return None
    return _created(store.create_alert(
        type=LINK_SUSPECT,
        url=check["url"],
        description="Link shows signs of phishing",
        severity=check["severity"],
        score=check["score"],
        link_check_id=link_check_id,
    ))


def report_text_is_risky(description: Optional[str], settings: Settings) -> bool:
    return bool(description) and count_keywords(description, settings.report_keywords) > 0


def materialize_report(store: Store, settings: Settings, report: Dict[str, Any],
                       check: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """REPORT_SUSPECT when the reported URL is medium/high or the description looks risky.

    ``check`` is the link classification of the reported URL, if one was given.
    Text-only reports are recorded as medium with no score.
    """
    url_is_risky = check is not None and check["severity"] in (SEVERITY_MEDIUM, SEVERITY_HIGH)
    if not (url_is_risky or report_text_is_risky(report.get("description"), settings)):
        return None
    return _created(store.create_alert(
        type=REPORT_SUSPECT,
        url=check["url"] if check else None,
        description=report.get("description") or "Report received",
        severity=check["severity"] if check else SEVERITY_MEDIUM,
        score=check["score"] if check else None,
        report_id=report["id"],
    ))


def should_alert_text(analysis: TextAnalysis, settings: Settings) -> bool:
    """Medium/high severity, or enough risky keywords on their own."""
    if _text_severity(analysis, settings) in (SEVERITY_MEDIUM, SEVERITY_HIGH):
        return True
    return settings.text_alert_min_hits > 0 and analysis.keyword_hits >= settings.text_alert_min_hits


def _text_severity(analysis: TextAnalysis, settings: Settings) -> str:
    return analysis.severity or severity_for(analysis.score, settings)


def materialize_text_analysis(store: Store, settings: Settings, analysis: TextAnalysis,
                              message_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
    if not should_alert_text(analysis, settings):
        return None
    severity = _text_severity(analysis, settings)
    if severity == SEVERITY_LOW:
        # keyword density alone fired the alert
        severity = SEVERITY_MEDIUM
    return _created(store.create_alert(
        type=TEXT_ANALYSIS,
        url=analysis.best_url,
        description=f"Message with scam indicators ({', '.join(analysis.reasons)})",
        severity=severity,
        score=analysis.score,
        message_id=message_id,
    ))


def materialize_manual(store: Store, verdict: str, message_id: Optional[int] = None,
                       url: Optional[str] = None) -> Dict[str, Any]:
    """Reviewer judgment always produces an alert with a fixed severity and score."""
    try:
        alert_type, severity, score, description = MANUAL_OUTCOMES[verdict]
    except KeyError:
        raise ValueError(f"verdict must be one of {sorted(MANUAL_OUTCOMES)}, got {verdict!r}")
    return _created(store.create_alert(
        type=alert_type,
        url=url,
        description=description,
        severity=severity,
        score=score,
        message_id=message_id,
    ))


# -------------------------------------
# Lifecycle
# -------------------------------------
def get_alert(store: Store, alert_id: int) -> Dict[str, Any]:
    alert = store.get_alert(alert_id)
    if not alert:
        raise AlertNotFound(alert_id)
    return alert


def acknowledge(store: Store, alert_id: int) -> Dict[str, Any]:
    """new -> ack, stamping ack_at. Acknowledging twice keeps the first ack_at."""
    alert = store.mark_alert_ack(alert_id)
    if not alert:
        raise AlertNotFound(alert_id)
    logger.info("alert %s acknowledged at %s", alert_id, alert["ack_at"])
    return alert


def _check_filters(status: Optional[str], severity: Optional[str]) -> Optional[str]:
    if status in (None, "", "all"):
        status = None
    elif status not in STATUSES:
        raise ValueError(f"status must be one of new, ack, all; got {status!r}")
    if severity and severity not in SEVERITIES:
        raise ValueError(f"severity must be one of {', '.join(SEVERITIES)}; got {severity!r}")
    return status


def list_alerts(store: Store, status: Optional[str] = "new", severity: Optional[str] = None,
                q: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
    """Alerts newest first. ``status`` is new, ack or all."""
    status = _check_filters(status, severity)
    return store.list_alerts(status=status, severity=severity or None, q=q or None,
                             limit=limit, offset=offset)


def _csv_cell(value: Any) -> Any:
    """Empty for None; text that a spreadsheet would run as a formula gets a leading quote."""
    if value is None:
        return ""
    if isinstance(value, str) and value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


def write_alerts_csv(alerts: Iterable[Dict[str, Any]], fh) -> int:
    writer = csv.DictWriter(fh, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    count = 0
    for alert in alerts:
        writer.writerow({k: _csv_cell(alert.get(k)) for k in EXPORT_COLUMNS})
        count += 1
    return count


def export_alerts_csv(store: Store, status: Optional[str] = "all", severity: Optional[str] = None,
                      q: Optional[str] = None) -> str:
    """Delimited dump of every alert matching the list filters."""
    status = _check_filters(status, severity)
    rows = store.list_alerts(status=status, severity=severity or None, q=q or None, limit=None)
    buf = io.StringIO()
    write_alerts_csv(rows, buf)
    return buf.getvalue()
