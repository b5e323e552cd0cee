"""Template condition evaluators producing playbook matches."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from agenda.signals import count_stale_transactions
from models import BankTransaction, Filing
from time_utils import to_utc

OPEN_FILING_STATUSES = ("draft", "ready", "awaiting_submission")


@dataclass(frozen=True)
class PlaybookMatch:
    """One record that satisfied a template condition."""

    id: str
    reference: str
    amount: float | None = None
    date: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PlaybookMatch":
        return cls(
            id=str(data["id"]),
            reference=str(data.get("reference") or ""),
            amount=data.get("amount"),
            date=data.get("date"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class PlaybookEvaluation:
    """Matches plus summary metrics for one evaluation."""

    matches: tuple[PlaybookMatch, ...]
    summary: dict[str, Any]
    total: int | None = None

    @property
    def match_count(self) -> int:
        """Records satisfying the condition, including those past the match list."""
        return len(self.matches) if self.total is None else self.total

    def to_context(self, match_limit: int | None = None) -> dict[str, Any]:
        """Serialize to the run context shape, optionally truncating matches."""
        matches = self.matches if match_limit is None else self.matches[:match_limit]
        return {"summary": dict(self.summary), "matches": [m.to_dict() for m in matches]}

    @classmethod
    def from_context(cls, context: Mapping[str, Any] | None) -> "PlaybookEvaluation":
        """Re-hydrate an evaluation captured in a run context."""
        context = context or {}
        return cls(
            matches=tuple(PlaybookMatch.from_dict(m) for m in context.get("matches") or []),
            summary=dict(context.get("summary") or {}),
        )


Evaluator = Callable[[Session, str, Mapping[str, Any], datetime], PlaybookEvaluation]


def evaluate_reconciliation_backlog(
    session: Session, tenant_id: str, config: Mapping[str, Any], now: datetime
) -> PlaybookEvaluation:
    """Oldest stale unreconciled transactions, bounded by the review sample.

    ``total`` counts every stale transaction, so thresholds above the sample
    size can still trigger.
    """
    current = to_utc(now)
    max_age_days = int(config.get("maxAgeDays", 5))
    review_sample = int(config.get("reviewSample", 15))
    cutoff = current - timedelta(days=max_age_days)
    rows = (
        session.query(BankTransaction)
        .filter(
            BankTransaction.tenant_id == tenant_id,
            or_(BankTransaction.reconciled.is_(None), BankTransaction.reconciled.is_(False)),
            BankTransaction.date <= cutoff,
        )
        .order_by(BankTransaction.date.asc(), BankTransaction.id.asc())
        .limit(review_sample)
        .all()
    )
    pending = (
        session.query(func.count(BankTransaction.id))
        .filter(
            BankTransaction.tenant_id == tenant_id,
            or_(BankTransaction.reconciled.is_(None), BankTransaction.reconciled.is_(False)),
        )
        .scalar()
        or 0
    )
    matches = []
    for row in rows:
        txn_date = to_utc(row.date)
        matches.append(
            PlaybookMatch(
                id=str(row.id),
                reference=row.description or "Bank transaction",
                amount=float(row.amount) if row.amount is not None else None,
                date=txn_date.isoformat(),
                metadata={
                    "currency": row.currency,
                    "daysOld": int((current - txn_date).total_seconds() // 86400),
                },
            )
        )
    stale = count_stale_transactions(session, tenant_id, cutoff)
    return PlaybookEvaluation(
        matches=tuple(matches),
        summary={"pending": int(pending), "stale": stale, "maxAgeDays": max_age_days},
        total=stale,
    )


def evaluate_filing_deadline_guard(
    session: Session, tenant_id: str, config: Mapping[str, Any], now: datetime
) -> PlaybookEvaluation:
    """Open filings due inside the alert window, including overdue ones."""
    current = to_utc(now)
    days_ahead = int(config.get("daysAhead", 14))
    rows = (
        session.query(Filing)
        .filter(
            Filing.tenant_id == tenant_id,
            Filing.status.in_(OPEN_FILING_STATUSES),
            Filing.due_date <= current + timedelta(days=days_ahead),
        )
        .order_by(Filing.due_date.asc(), Filing.id.asc())
        .all()
    )
    matches = []
    for row in rows:
        due = to_utc(row.due_date)
        matches.append(
            PlaybookMatch(
                id=str(row.id),
                reference=row.filing_type,
                date=due.isoformat(),
                metadata={"status": row.status, "overdue": due < current},
            )
        )
    return PlaybookEvaluation(
        matches=tuple(matches),
        summary={
            "total": len(matches),
            "overdue": sum(1 for match in matches if match.metadata["overdue"]),
            "window": days_ahead,
        },
    )


EVALUATORS: dict[str, Evaluator] = {
    "reconciliation_backlog": evaluate_reconciliation_backlog,
    "filing_deadline_guard": evaluate_filing_deadline_guard,
}


__all__ = [
    "EVALUATORS",
    "Evaluator",
    "PlaybookEvaluation",
    "PlaybookMatch",
    "evaluate_filing_deadline_guard",
    "evaluate_reconciliation_backlog",
]
