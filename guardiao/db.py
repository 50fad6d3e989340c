# db.py
"""
Database module using SQLAlchemy (SQLite by default).
Stores link checks, reports, messages and the alerts they trigger.
"""

import json
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from sqlalchemy import create_engine, Column, Integer, Text, DateTime, Boolean, ForeignKey, or_
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _loads(value: Optional[str]):
    return json.loads(value) if value else None


def like_pattern(text: str) -> str:
    """Substring LIKE pattern with the wildcards in ``text`` taken literally (escape char ``\\``)."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class LinkCheck(Base):
    __tablename__ = "link_checks"
    id = Column(Integer, primary_key=True, index=True)
    url = Column(Text, index=True)
    is_safe = Column(Boolean)
    score = Column(Integer)
    severity = Column(Text)
    reasons_json = Column(Text)
    sources_json = Column(Text)
    created_at = Column(DateTime, default=utcnow)


class Report(Base):
    __tablename__ = "reports"
    id = Column(Integer, primary_key=True, index=True)
    url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    reporter_hash = Column(Text, nullable=True)
    evidence_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class Message(Base):
    __tablename__ = "messages"
    id = Column(Integer, primary_key=True, index=True)
    sender = Column(Text, nullable=True)
    body = Column(Text)
    processed = Column(Boolean, default=False)
    received_at = Column(DateTime, default=utcnow)


class Alert(Base):
    __tablename__ = "alerts"
    id = Column(Integer, primary_key=True, index=True)
    type = Column(Text, index=True)
    url = Column(Text, nullable=True)
    description = Column(Text)
    severity = Column(Text, index=True)
    score = Column(Integer, nullable=True)
    status = Column(Text, index=True, default="new")
    link_check_id = Column(Integer, ForeignKey("link_checks.id"), nullable=True)
    report_id = Column(Integer, ForeignKey("reports.id"), nullable=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    ack_at = Column(DateTime, nullable=True)


def link_check_to_dict(row: LinkCheck) -> Dict[str, Any]:
    return {
        "id": row.id,
        "url": row.url,
        "is_safe": row.is_safe,
        "score": row.score,
        "severity": row.severity,
        "reasons": _loads(row.reasons_json) or [],
        "sources": _loads(row.sources_json) or [],
        "created_at": _iso(row.created_at),
    }


def report_to_dict(row: Report) -> Dict[str, Any]:
    return {
        "id": row.id,
        "url": row.url,
        "description": row.description,
        "reporter_hash": row.reporter_hash,
        "evidence": _loads(row.evidence_json),
        "created_at": _iso(row.created_at),
    }


def message_to_dict(row: Message) -> Dict[str, Any]:
    return {
        "id": row.id,
        "sender": row.sender,
        "body": row.body,
        "processed": bool(row.processed),
        "received_at": _iso(row.received_at),
    }


def alert_to_dict(row: Alert) -> Dict[str, Any]:
    return {
        "id": row.id,
        "type": row.type,
        "url": row.url,
        "description": row.description,
        "severity": row.severity,
        "score": row.score,
        "status": row.status,
        "link_check_id": row.link_check_id,
        "report_id": row.report_id,
        "message_id": row.message_id,
        "created_at": _iso(row.created_at),
        "ack_at": _iso(row.ack_at),
    }


class Store:
    """Persistence for the pipeline's records.

    Every method opens its own session; records are independent so concurrent
    requests need no application-level locking.
    """

    def __init__(self, database_url: str = "sqlite:///guardiao.db"):
        kwargs = {}
        if database_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        self.database_url = database_url
        self.engine = create_engine(database_url, **kwargs)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def _add(self, row):
        with self.Session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
        return row

    # -------------------------------------
    # link checks
    # -------------------------------------
    def save_link_check(self, url: str, is_safe: bool, score: int, severity: str,
                        reasons: List[str], sources: List[str]) -> Dict[str, Any]:
        row = self._add(LinkCheck(
            url=url,
            is_safe=is_safe,
            score=score,
            severity=severity,
            reasons_json=json.dumps(reasons),
            sources_json=json.dumps(sources),
        ))
        return link_check_to_dict(row)

    # -------------------------------------
    # reports
    # -------------------------------------
    def save_report(self, url: Optional[str], description: Optional[str],
                    reporter_hash: Optional[str] = None,
                    evidence: Optional[List[Any]] = None) -> Dict[str, Any]:
        row = self._add(Report(
            url=url,
            description=description,
            reporter_hash=reporter_hash,
            evidence_json=json.dumps(evidence) if evidence is not None else None,
        ))
        return report_to_dict(row)

    def get_report(self, report_id: int) -> Optional[Dict[str, Any]]:
        with self.Session() as session:
            row = session.get(Report, report_id)
            return report_to_dict(row) if row else None

    # -------------------------------------
    # messages
    # -------------------------------------
    def save_message(self, body: str, sender: Optional[str] = None) -> Dict[str, Any]:
        return message_to_dict(self._add(Message(sender=sender, body=body, processed=False)))

    def get_message(self, message_id: int) -> Optional[Dict[str, Any]]:
        with self.Session() as session:
            row = session.get(Message, message_id)
            return message_to_dict(row) if row else None

    def list_messages(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        with self.Session() as session:
            rows = (session.query(Message)
                    .order_by(Message.received_at.desc(), Message.id.desc())
                    .offset(offset).limit(limit).all())
            return [message_to_dict(r) for r in rows]

    def mark_message_processed(self, message_id: int) -> bool:
        with self.Session() as session:
            row = session.get(Message, message_id)
            if not row:
                return False
            row.processed = True
            session.commit()
            return True

    # -------------------------------------
    # alerts
    # -------------------------------------
    def create_alert(self, type: str, description: str, severity: str,
                     score: Optional[int] = None, url: Optional[str] = None,
                     link_check_id: Optional[int] = None, report_id: Optional[int] = None,
                     message_id: Optional[int] = None) -> Dict[str, Any]:
        row = self._add(Alert(
            type=type,
            url=url,
            description=description,
            severity=severity,
            score=score,
            status="new",
            link_check_id=link_check_id,
            report_id=report_id,
            message_id=message_id,
        ))
        return alert_to_dict(row)

    def get_alert(self, alert_id: int) -> Optional[Dict[str, Any]]:
        with self.Session() as session:
            row = session.get(Alert, alert_id)
            return alert_to_dict(row) if row else None

    def mark_alert_ack(self, alert_id: int, when: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        """Move a new alert to ack. Already acknowledged alerts are returned untouched.

        The transition is a single conditional UPDATE, so concurrent acks cannot
        overwrite the first ``ack_at``.
        """
        with self.Session() as session:
            (session.query(Alert)
             .filter(Alert.id == alert_id, Alert.status != "ack")
             .update({Alert.status: "ack", Alert.ack_at: when or utcnow()},
                     synchronize_session=False))
            session.commit()
            row = session.get(Alert, alert_id)
            return alert_to_dict(row) if row else None

    def list_alerts(self, status: Optional[str] = None, severity: Optional[str] = None,
                    q: Optional[str] = None, limit: Optional[int] = 50,
                    offset: int = 0) -> List[Dict[str, Any]]:
        with self.Session() as session:
            query = session.query(Alert)
            if status:
                query = query.filter(Alert.status == status)
            if severity:
                query = query.filter(Alert.severity == severity)
            if q:
                pattern = like_pattern(q)
                query = query.filter(or_(Alert.description.ilike(pattern, escape="\\"),
                                         Alert.url.ilike(pattern, escape="\\")))
            query = query.order_by(Alert.created_at.desc(), Alert.id.desc())
            if offset:
                query = query.offset(offset)
            if limit is not None:
                query = query.limit(limit)
            return [alert_to_dict(r) for r in query.all()]
