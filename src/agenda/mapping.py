"""Pure mapping from signals to task fields."""

from __future__ import annotations

from datetime import datetime

from agenda.signals import Signal
from tasks.repository import TaskCreateInput

_RECOMMENDED_ACTIONS = {
    "ingestion": "Review and process pending documents in the ingestion queue.",
    "deadline": "Prepare filing draft and check data completeness.",
    "reconciliation": "Match stale transactions to documents or create exception entries.",
    "anomaly": "Review anomaly details and determine if correction is needed.",
}


def _due_label(evidence: dict) -> str:
    raw = evidence.get("dueDate")
    if not raw:
        return "unknown"
    try:
        return datetime.fromisoformat(str(raw)).date().isoformat()
    except ValueError:
        return str(raw)


def task_title(signal: Signal) -> str:
    data = signal.evidence
    if signal.signal_type == "ingestion":
        return f"Process {data.get('pendingCount')} Pending Documents"
    if signal.signal_type == "deadline":
        return f"Prepare {data.get('filingType')} Filing (Due {_due_label(data)})"
    if signal.signal_type == "reconciliation":
        return f"Reconcile {data.get('staleCount')} Stale Transactions"
    if signal.signal_type == "anomaly":
        return f"Review {data.get('anomalyCount')} Detected Anomalies"
    return "Review Required"


def task_description(signal: Signal) -> str:
    data = signal.evidence
    if signal.signal_type == "ingestion":
        return (
            f"{data.get('pendingCount')} documents are awaiting processing "
            "in the ingestion pipeline."
        )
    if signal.signal_type == "deadline":
        return (
            f"Filing due {_due_label(data)} with readiness score of "
            f"{data.get('readinessScore')}%."
        )
    if signal.signal_type == "reconciliation":
        return (
            f"{data.get('staleCount')} bank transactions are unreconciled and older "
            f"than {data.get('staleDays', 5)} days."
        )
    if signal.signal_type == "anomaly":
        return f"{data.get('anomalyCount')} anomalies have been detected and require review."
    return "Action required"


def recommended_action(signal: Signal) -> str:
    return _RECOMMENDED_ACTIONS.get(signal.signal_type, "Review and take appropriate action.")


def severity_for(priority: str) -> str:
    """Urgent and high signals produce critical tasks."""
    return "critical" if priority in ("urgent", "high") else "normal"


def build_task_input(signal: Signal, tenant_id: str, ai_summary: str | None) -> TaskCreateInput:
    """Build the task payload for a signal."""
    return TaskCreateInput(
        tenant_id=tenant_id,
        task_type=signal.signal_type,
        title=task_title(signal),
        description=task_description(signal),
        priority=signal.priority,
        severity=severity_for(signal.priority),
        ai_summary=ai_summary,
        source_evidence=signal.evidence,
        recommended_action=recommended_action(signal),
        created_by="autopilot_engine",
    )


__all__ = [
    "build_task_input",
    "recommended_action",
    "severity_for",
    "task_description",
    "task_title",
]
