"""Recording collaborators and seed helpers shared by autopilot tests."""

from __future__ import annotations

from contextlib import closing
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from models import (
    AnomalyDetection,
    BankTransaction,
    Filing,
    IngestionLogEntry,
    TenantContact,
)


class RecordingReviewTaskCreator:
    """Review-task creator that records every call."""

    def __init__(self, fail_after: int | None = None) -> None:
        self.calls: list[tuple[str, str, str, str]] = []
        self._fail_after = fail_after

    def create_review_task(
        self, tenant_id: str, entity_type: str, entity_id: str, priority: str
    ) -> None:
        if self._fail_after is not None and len(self.calls) >= self._fail_after:
            raise RuntimeError("review task store unavailable")
        self.calls.append((tenant_id, entity_type, str(entity_id), priority))


class RecordingEmailSender:
    """E-mail sender that records messages instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_email(self, address: str, subject: str, html_body: str) -> None:
        self.sent.append((address, subject, html_body))


class FailingEmailSender:
    """E-mail sender whose transport is always down."""

    def send_email(self, address: str, subject: str, html_body: str) -> None:
        raise RuntimeError("smtp relay down")


class RecordingLedgerPoster:
    """Ledger poster that records posted entries."""

    def __init__(self) -> None:
        self.entries: list[dict] = []

    def post_entry(self, tenant_id: str, **entry) -> None:
        self.entries.append({"tenant_id": tenant_id, **entry})


def add_transactions(
    session_factory,
    tenant_id: str,
    count: int,
    *,
    when: datetime,
    reconciled: bool = False,
    amount: str = "125.00",
) -> list[UUID]:
    """Insert bank transactions dated ``when`` and return their ids."""
    with closing(session_factory()) as session:
        rows = [
            BankTransaction(
                tenant_id=tenant_id,
                description=f"Payment {index}",
                amount=Decimal(amount),
                currency="GBP",
                date=when + timedelta(minutes=index),
                reconciled=reconciled,
            )
            for index in range(count)
        ]
        session.add_all(rows)
        session.commit()
        return [row.id for row in rows]


def add_filing(
    session_factory,
    tenant_id: str,
    *,
    due: datetime,
    status: str = "draft",
    readiness: float = 20.0,
    filing_type: str = "VAT",
) -> UUID:
    """Insert a filing obligation and return its id."""
    with closing(session_factory()) as session:
        filing = Filing(
            tenant_id=tenant_id,
            filing_type=filing_type,
            due_date=due,
            status=status,
            readiness_score=readiness,
        )
        session.add(filing)
        session.commit()
        return filing.id


def add_pending_ingestions(
    session_factory, tenant_id: str, count: int, *, when: datetime
) -> None:
    """Insert pending ingestion log rows."""
    with closing(session_factory()) as session:
        session.add_all(
            IngestionLogEntry(tenant_id=tenant_id, processing_status="pending", ingested_at=when)
            for _ in range(count)
        )
        session.commit()


def add_anomalies(session_factory, tenant_id: str, count: int, *, when: datetime) -> None:
    """Insert open anomaly detections."""
    with closing(session_factory()) as session:
        session.add_all(
            AnomalyDetection(tenant_id=tenant_id, status="open", detected_at=when)
            for _ in range(count)
        )
        session.commit()


def add_contact(
    session_factory,
    tenant_id: str,
    email: str,
    *,
    role: str = "client",
    created_at: datetime,
    name: str | None = None,
) -> None:
    """Insert a tenant contact."""
    with closing(session_factory()) as session:
        session.add(
            TenantContact(
                tenant_id=tenant_id,
                email=email,
                name=name,
                role=role,
                created_at=created_at,
            )
        )
        session.commit()
