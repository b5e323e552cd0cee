"""Business-signal detectors feeding agenda synthesis."""

from __future__ import annotations

from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Sequence

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from config import AgendaConfig, settings
from models import AnomalyDetection, BankTransaction, Filing, IngestionLogEntry
from time_utils import to_utc

logger = logging.getLogger(__name__)

CLOSED_FILING_STATUSES = ("submitted", "filed", "accepted")


@dataclass(frozen=True)
class Signal:
    """Observed business condition that warrants a task."""

    signal_type: str
    source: str
    priority: str
    count: int = 1
    evidence: dict[str, Any] = field(default_factory=dict)


Detector = Callable[[Session, str, datetime, AgendaConfig], list[Signal]]


def detect_ingestion_backlog(
    session: Session, tenant_id: str, now: datetime, config: AgendaConfig
) -> list[Signal]:
    """Pending ingestion rows in the lookback window above the backlog threshold."""
    since = to_utc(now) - timedelta(hours=config.ingestion_lookback_hours)
    pending = (
        session.query(func.count(IngestionLogEntry.id))
        .filter(
            IngestionLogEntry.tenant_id == tenant_id,
            IngestionLogEntry.processing_status == "pending",
            IngestionLogEntry.ingested_at >= since,
        )
        .scalar()
        or 0
    )
    if pending <= config.ingestion_backlog_threshold:
        return []
    priority = "high" if pending > config.ingestion_high_priority_threshold else "medium"
    return [
        Signal(
            signal_type="ingestion",
            source="ingestion_log",
            priority=priority,
            count=pending,
            evidence={"pendingCount": pending},
        )
    ]


def detect_deadline_risk(
    session: Session, tenant_id: str, now: datetime, config: AgendaConfig
) -> list[Signal]:
    """One signal per open filing due in the window with low readiness."""
    current = to_utc(now)
    horizon = current + timedelta(days=config.deadline_window_days)
    filings = (
        session.query(Filing)
        .filter(
            Filing.tenant_id == tenant_id,
            Filing.due_date <= horizon,
            Filing.readiness_score < config.deadline_readiness_threshold,
            Filing.status.notin_(CLOSED_FILING_STATUSES),
        )
        .order_by(Filing.due_date.asc(), Filing.id.asc())
        .all()
    )
    signals = []
    for filing in filings:
        due = to_utc(filing.due_date)
        signals.append(
            Signal(
                signal_type="deadline",
                source="filings",
                priority="urgent" if due < current else "high",
                evidence={
                    "obligationId": str(filing.id),
                    "filingType": filing.filing_type,
                    "dueDate": due.isoformat(),
                    "readinessScore": filing.readiness_score,
                },
            )
        )
    return signals


def detect_reconciliation_gap(
    session: Session, tenant_id: str, now: datetime, config: AgendaConfig
) -> list[Signal]:
    """Unreconciled bank transactions older than the staleness window."""
    cutoff = to_utc(now) - timedelta(days=config.reconciliation_stale_days)
    stale = count_stale_transactions(session, tenant_id, cutoff)
    if stale <= 0:
        return []
    priority = "high" if stale > config.reconciliation_high_priority_threshold else "medium"
    return [
        Signal(
            signal_type="reconciliation",
            source="bank_transactions",
            priority=priority,
            count=stale,
            evidence={"staleCount": stale, "staleDays": config.reconciliation_stale_days},
        )
    ]


def detect_open_anomalies(
    session: Session, tenant_id: str, now: datetime, config: AgendaConfig
) -> list[Signal]:
    """Open anomalies detected in the lookback window."""
    since = to_utc(now) - timedelta(days=config.anomaly_lookback_days)
    open_count = (
        session.query(func.count(AnomalyDetection.id))
        .filter(
            AnomalyDetection.tenant_id == tenant_id,
            AnomalyDetection.status == "open",
            AnomalyDetection.detected_at >= since,
        )
        .scalar()
        or 0
    )
    if open_count <= 0:
        return []
    return [
        Signal(
            signal_type="anomaly",
            source="anomaly_detections",
            priority="high",
            count=open_count,
            evidence={"anomalyCount": open_count},
        )
    ]


def count_stale_transactions(session: Session, tenant_id: str, cutoff: datetime) -> int:
    """Count unreconciled transactions dated on or before the cutoff."""
    return int(
        session.query(func.count(BankTransaction.id))
        .filter(
            BankTransaction.tenant_id == tenant_id,
            or_(BankTransaction.reconciled.is_(False), BankTransaction.reconciled.is_(None)),
            BankTransaction.date <= cutoff,
        )
        .scalar()
        or 0
    )


DEFAULT_DETECTORS: tuple[Detector, ...] = (
    detect_ingestion_backlog,
    detect_deadline_risk,
    detect_reconciliation_gap,
    detect_open_anomalies,
)


class SignalCollector:
    """Run detectors in isolation; a failing detector contributes no signals."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        detectors: Sequence[Detector] = DEFAULT_DETECTORS,
        config: AgendaConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._detectors = tuple(detectors)
        self._config = config or settings.agenda

    def collect(self, tenant_id: str, now: datetime) -> list[Signal]:
        signals: list[Signal] = []
        for detector in self._detectors:
            name = getattr(detector, "__name__", repr(detector))
            try:
                with closing(self._session_factory()) as session:
                    found = detector(session, tenant_id, now, self._config)
            except Exception:
                logger.exception("Signal detector failed: detector=%s tenant=%s", name, tenant_id)
                continue
            signals.extend(found)
        logger.info("Signals collected: tenant=%s count=%s", tenant_id, len(signals))
        return signals


__all__ = [
    "DEFAULT_DETECTORS",
    "Detector",
    "Signal",
    "SignalCollector",
    "count_stale_transactions",
    "detect_deadline_risk",
    "detect_ingestion_backlog",
    "detect_open_anomalies",
    "detect_reconciliation_gap",
]
