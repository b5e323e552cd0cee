"""Unit tests for automation rule triggers and actions."""

from contextlib import closing
from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from autopilot_shared.errors import NotFoundError, ValidationError, codes
from helpers.autopilot_stubs import (
    RecordingEmailSender,
    RecordingLedgerPoster,
    RecordingReviewTaskCreator,
    add_contact,
    add_transactions,
)
from models import BankTransaction
from rules.engine import RuleEngine, js_weekday, trigger_matches
from rules.repository import RuleRepository, RuleUpdateInput


def _engine(session_factory, now, *, ledger_poster=None):
    review_tasks = RecordingReviewTaskCreator()
    email = RecordingEmailSender()
    engine = RuleEngine(
        session_factory,
        RuleRepository(session_factory),
        review_tasks,
        email,
        ledger_poster,
        now_provider=lambda: now,
    )
    return engine, review_tasks, email


def test_js_weekday_starts_on_sunday() -> None:
    """Weekday numbering uses Sunday as zero."""
    assert js_weekday(datetime(2026, 1, 1, tzinfo=timezone.utc)) == 4
    assert js_weekday(datetime(2026, 1, 4, tzinfo=timezone.utc)) == 0
    assert js_weekday(datetime(2026, 1, 3, tzinfo=timezone.utc)) == 6


def test_schedule_triggers() -> None:
    """Daily always fires; weekly and monthly compare the calendar."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    assert trigger_matches("schedule", {"schedule": "daily"}, {}, now) is True
    assert trigger_matches("schedule", {"schedule": "weekly", "dayOfWeek": 4}, {}, now) is True
    assert trigger_matches("schedule", {"schedule": "weekly", "dayOfWeek": 1}, {}, now) is False
    assert trigger_matches("schedule", {"schedule": "monthly", "dayOfMonth": 1}, {}, now) is True
    assert trigger_matches("schedule", {"schedule": "monthly"}, {}, now + timedelta(days=1)) is False
    assert trigger_matches("schedule", {"schedule": "hourly"}, {}, now) is False


def test_event_triggers_require_context_keys() -> None:
    """Transaction and document triggers need their identifying context."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    large = {"amount": {"operator": "gt", "value": 100}}

    assert trigger_matches("transaction", large, {}, now) is False
    assert trigger_matches("transaction", large, {"transactionId": "t1", "amount": 250}, now)
    assert not trigger_matches("transaction", large, {"transactionId": "t1", "amount": 50}, now)
    assert trigger_matches("document", {}, {"documentId": "d1"}, now) is True
    assert trigger_matches("document", {}, {}, now) is False
    assert trigger_matches("condition", {"vendor": "ACME"}, {"vendor": "ACME"}, now) is True
    assert trigger_matches("condition", {"vendor": "ACME"}, {"vendor": "Other"}, now) is False


def test_create_rule_validates_trigger_and_actions(sqlite_session_factory) -> None:
    """Unknown trigger types, bad schedules, and unknown actions are rejected."""
    engine, _, _ = _engine(sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc))

    with pytest.raises(ValidationError):
        engine.create_rule("tenant-a", "Bad", "webhook")
    with pytest.raises(ValidationError) as excinfo:
        engine.create_rule("tenant-a", "Bad", "schedule", {"schedule": "weekly", "dayOfWeek": 7})
    assert excinfo.value.code == codes.INVALID_CONDITION
    with pytest.raises(ValidationError):
        engine.create_rule("tenant-a", "Bad", "document", {}, [{"type": "teleport"}])
    with pytest.raises(ValidationError):
        engine.create_rule("tenant-a", "  ", "document")


def test_categorize_updates_transaction(sqlite_session_factory) -> None:
    """The categorize action writes the category onto the transaction."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    [txn_id] = add_transactions(sqlite_session_factory, "tenant-a", 1, when=now)
    engine, _, _ = _engine(sqlite_session_factory, now)
    rule = engine.create_rule(
        "tenant-a",
        "Tag software",
        "transaction",
        {"amount": {"operator": "gt", "value": 100}},
        [{"type": "categorize", "parameters": {"category": "software"}}],
    )

    result = engine.execute_rule(
        rule.id, "tenant-a", {"transactionId": str(txn_id), "amount": 125}
    )

    assert result.triggered is True
    assert result.executed_actions == ("categorize",)
    with closing(sqlite_session_factory()) as session:
        assert session.get(BankTransaction, txn_id).category == "software"


def test_failed_action_does_not_stop_later_actions(sqlite_session_factory) -> None:
    """Without a ledger poster, post_ledger fails and the next action still runs."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    engine, review_tasks, _ = _engine(sqlite_session_factory, now)
    rule = engine.create_rule(
        "tenant-a",
        "Post invoices",
        "document",
        {},
        [
            {"type": "post_ledger", "parameters": {"accountCode": "4000", "amount": 90}},
            {"type": "create_task", "parameters": {"priority": "high"}},
        ],
    )

    result = engine.execute_rule(rule.id, "tenant-a", {"documentId": "doc-1"})

    assert result.failed_actions == ("post_ledger",)
    assert result.executed_actions == ("create_task",)
    assert review_tasks.calls == [("tenant-a", "document", "doc-1", "high")]


def test_post_ledger_uses_poster(sqlite_session_factory) -> None:
    """Ledger postings carry the document, account, and amount."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    poster = RecordingLedgerPoster()
    engine, _, _ = _engine(sqlite_session_factory, now, ledger_poster=poster)
    rule = engine.create_rule(
        "tenant-a",
        "Post invoices",
        "document",
        {},
        [{"type": "post_ledger", "parameters": {"accountCode": "4000"}}],
    )

    result = engine.execute_rule(rule.id, "tenant-a", {"documentId": "doc-1", "amount": 42.5})

    assert result.executed_actions == ("post_ledger",)
    assert poster.entries == [
        {
            "tenant_id": "tenant-a",
            "document_id": "doc-1",
            "entry_type": "debit",
            "account_code": "4000",
            "account_name": "Account 4000",
            "amount": 42.5,
            "description": "Automated posting",
            "transaction_date": date(2026, 1, 1),
        }
    ]


def test_notification_falls_back_to_primary_contact(sqlite_session_factory) -> None:
    """Without an explicit address the tenant's primary contact is e-mailed."""
    now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    add_contact(sqlite_session_factory, "tenant-a", "first@example.com", created_at=now)
    add_contact(
        sqlite_session_factory,
        "tenant-a",
        "owner@example.com",
        role="owner",
        created_at=now + timedelta(days=1),
    )
    engine, _, email = _engine(sqlite_session_factory, now)
    rule = engine.create_rule(
        "tenant-a",
        "Daily digest",
        "schedule",
        {"schedule": "daily"},
        [{"type": "send_notification", "parameters": {"message": "Digest ready"}}],
    )

    result = engine.execute_rule(rule.id, "tenant-a")

    assert result.executed_actions == ("send_notification",)
    assert email.sent == [("owner@example.com", "Automation Notification", "<p>Digest ready</p>")]


def test_notification_without_recipient_fails(sqlite_session_factory) -> None:
    """A tenant with no contacts cannot be notified."""
    engine, _, email = _engine(sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc))
    rule = engine.create_rule(
        "tenant-a", "Digest", "schedule", {"schedule": "daily"}, [{"type": "send_notification"}]
    )

    result = engine.execute_rule(rule.id, "tenant-a")

    assert result.failed_actions == ("send_notification",)
    assert email.sent == []


def test_inactive_and_unmatched_rules_do_not_trigger(sqlite_session_factory) -> None:
    """Deactivated rules and non-matching triggers run nothing."""
    engine, review_tasks, _ = _engine(
        sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc)
    )
    rule = engine.create_rule(
        "tenant-a", "Review docs", "document", {}, [{"type": "create_task"}]
    )

    unmatched = engine.execute_rule(rule.id, "tenant-a", {})
    deleted = engine.delete_rule("tenant-a", rule.id)
    inactive = engine.execute_rule(rule.id, "tenant-a", {"documentId": "doc-1"})

    assert unmatched.triggered is False
    assert deleted.is_active is False
    assert inactive.triggered is False
    assert review_tasks.calls == []
    assert engine.list_rules("tenant-a", active_only=True) == []
    assert len(engine.list_rules("tenant-a")) == 1


def test_rules_are_tenant_scoped(sqlite_session_factory) -> None:
    """Rules of another tenant are not found."""
    engine, _, _ = _engine(sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc))
    rule = engine.create_rule("tenant-a", "Review docs", "document")

    with pytest.raises(NotFoundError) as excinfo:
        engine.execute_rule(rule.id, "tenant-b", {"documentId": "doc-1"})
    assert excinfo.value.code == codes.RULE_NOT_FOUND
    with pytest.raises(NotFoundError):
        engine.execute_rule(uuid4(), "tenant-a")


def test_update_rule_and_priority_ordering(sqlite_session_factory) -> None:
    """Updates revalidate triggers and listing orders by priority."""
    engine, _, _ = _engine(sqlite_session_factory, datetime(2026, 1, 1, tzinfo=timezone.utc))
    low = engine.create_rule("tenant-a", "Low", "document", priority=1)
    high = engine.create_rule("tenant-a", "High", "document", priority=5)

    updated = engine.update_rule(
        "tenant-a", low.id, RuleUpdateInput(priority=10, name="Now first")
    )
    with pytest.raises(ValidationError):
        engine.update_rule("tenant-a", high.id, RuleUpdateInput(trigger_type="schedule"))

    assert updated.name == "Now first"
    assert [rule.id for rule in engine.list_rules("tenant-a")] == [low.id, high.id]
