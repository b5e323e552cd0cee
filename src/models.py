"""Data models for the autopilot orchestration core."""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base

# SQLAlchemy base
Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Task enums
TASK_TYPES = (
    "ingestion",
    "deadline",
    "reconciliation",
    "anomaly",
    "posting",
    "filing",
    "journal_entry",
    "review",
)
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
TASK_STATUSES = ("pending", "in_progress", "completed", "failed", "cancelled")
TERMINAL_TASK_STATUSES = frozenset({"completed", "failed", "cancelled"})
ACTIVE_TASK_STATUSES = ("pending", "in_progress")
EXECUTION_METHODS = ("ai_autonomous", "ai_supervised", "human")
ASSIGNMENT_METHODS = ("auto", "round_robin", "skill_based", "ai_suggestion", "manual")
SLA_STATUSES = ("on_track", "at_risk", "breached")
POLICY_ACTIONS = ("auto", "require_review", "block")
POLICY_SCOPES = ("tenant", "role", "user", "playbook")
PLAYBOOK_STATUSES = ("draft", "active", "paused")
PLAYBOOK_RUN_STATUSES = ("success", "failed", "skipped", "awaiting_approval", "approving")
RULE_TRIGGER_TYPES = ("transaction", "document", "schedule", "condition")
RULE_ACTION_TYPES = ("categorize", "post_ledger", "send_notification", "create_task")

TaskTypeEnum = Enum(*TASK_TYPES, name="task_type", native_enum=False)
TaskPriorityEnum = Enum(*TASK_PRIORITIES, name="task_priority", native_enum=False)
TaskStatusEnum = Enum(*TASK_STATUSES, name="task_status", native_enum=False)
TaskSeverityEnum = Enum("normal", "warning", "critical", name="task_severity", native_enum=False)
ExecutionMethodEnum = Enum(*EXECUTION_METHODS, name="execution_method", native_enum=False)
AssignmentMethodEnum = Enum(*ASSIGNMENT_METHODS, name="assignment_method", native_enum=False)
HistoryActionEnum = Enum(
    "created",
    "assigned",
    "started",
    "completed",
    "failed",
    "cancelled",
    "rolled_back",
    name="history_action",
    native_enum=False,
)
SlaStatusEnum = Enum(*SLA_STATUSES, name="sla_status", native_enum=False)
PolicyActionEnum = Enum(*POLICY_ACTIONS, name="policy_action", native_enum=False)
PolicyScopeEnum = Enum(*POLICY_SCOPES, name="policy_scope", native_enum=False)
PlaybookStatusEnum = Enum(*PLAYBOOK_STATUSES, name="playbook_status", native_enum=False)
PlaybookRunStatusEnum = Enum(*PLAYBOOK_RUN_STATUSES, name="playbook_run_status", native_enum=False)
RuleTriggerEnum = Enum(*RULE_TRIGGER_TYPES, name="rule_trigger_type", native_enum=False)


# Orchestration tables
class AutopilotTask(Base):
    """Unit of operator or automated work synthesized from a signal."""

    __tablename__ = "autopilot_tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    task_type = Column(TaskTypeEnum, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    priority = Column(TaskPriorityEnum, nullable=False, default="medium")
    status = Column(TaskStatusEnum, nullable=False, default="pending")
    severity = Column(TaskSeverityEnum, nullable=False, default="normal")
    playbook_id = Column(Uuid(as_uuid=True), nullable=True)

    assigned_to = Column(String(64), nullable=True)
    assigned_by = Column(String(64), nullable=True)
    assignment_method = Column(AssignmentMethodEnum, nullable=True)
    auto_assigned = Column(Boolean, nullable=False, default=False)

    due_date = Column(DateTime(timezone=True), nullable=True)
    sla_hours = Column(Integer, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    escalated = Column(Boolean, nullable=False, default=False)

    ai_summary = Column(Text, nullable=True)
    source_evidence = Column(JSON, nullable=True)
    recommended_action = Column(Text, nullable=True)
    confidence_score = Column(Float, nullable=True)

    executed_by = Column(String(64), nullable=True)
    execution_method = Column(ExecutionMethodEnum, nullable=True)
    execution_result = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TaskExecutionHistory(Base):
    """Append-only audit trail of task lifecycle actions."""

    __tablename__ = "task_execution_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    task_id = Column(
        Uuid(as_uuid=True), ForeignKey("autopilot_tasks.id"), nullable=False, index=True
    )
    action_type = Column(HistoryActionEnum, nullable=False)
    action_by = Column(String(64), nullable=True)
    action_method = Column(String(50), nullable=True)
    action_timestamp = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    previous_status = Column(String(50), nullable=True)
    new_status = Column(String(50), nullable=True)
    changes = Column(JSON, nullable=True)
    reasoning = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    can_rollback = Column(Boolean, nullable=False, default=False)
    rollback_data = Column(JSON, nullable=True)


class AutopilotAgenda(Base):
    """Per-tenant, per-day snapshot of synthesized tasks."""

    __tablename__ = "autopilot_agenda"
    __table_args__ = (
        UniqueConstraint("tenant_id", "agenda_date", name="uq_autopilot_agenda_tenant_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False)
    agenda_date = Column(Date, nullable=False)
    generated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    total_tasks = Column(Integer, nullable=False, default=0)
    pending_tasks = Column(Integer, nullable=False, default=0)
    in_progress_tasks = Column(Integer, nullable=False, default=0)
    completed_tasks = Column(Integer, nullable=False, default=0)
    overdue_tasks = Column(Integer, nullable=False, default=0)

    urgent_count = Column(Integer, nullable=False, default=0)
    high_count = Column(Integer, nullable=False, default=0)
    medium_count = Column(Integer, nullable=False, default=0)
    low_count = Column(Integer, nullable=False, default=0)

    on_track_count = Column(Integer, nullable=False, default=0)
    at_risk_count = Column(Integer, nullable=False, default=0)
    breached_count = Column(Integer, nullable=False, default=0)

    task_ids = Column(JSON, nullable=False, default=list)


class SlaTracking(Base):
    """Timing contract for a single task."""

    __tablename__ = "sla_tracking"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    task_id = Column(
        Uuid(as_uuid=True), ForeignKey("autopilot_tasks.id"), nullable=False, unique=True
    )
    sla_type = Column(String(100), nullable=False, default="completion_time")
    sla_hours = Column(Integer, nullable=False)
    sla_start_time = Column(DateTime(timezone=True), nullable=False)
    sla_due_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(SlaStatusEnum, nullable=False, default="on_track")
    completed_at = Column(DateTime(timezone=True), nullable=True)
    actual_hours = Column(Float, nullable=True)
    escalation_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AutopilotPolicy(Base):
    """Scoped rule mapping an action and context to an approval decision."""

    __tablename__ = "autopilot_policies"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=True, index=True)
    policy_name = Column(String(255), nullable=False)
    policy_type = Column(String(100), nullable=False)
    scope = Column(PolicyScopeEnum, nullable=False)
    scope_id = Column(String(64), nullable=True)
    conditions = Column(JSON, nullable=False, default=dict)
    action = Column(PolicyActionEnum, nullable=False)
    risk_threshold = Column(Float, nullable=True)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class StaffMember(Base):
    """Worker eligible to receive task assignments for a client tenant."""

    __tablename__ = "staff_members"
    __table_args__ = (UniqueConstraint("tenant_id", "user_id", name="uq_staff_tenant_user"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    user_id = Column(String(64), nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="accountant")
    max_concurrent_tasks = Column(Integer, nullable=False, default=10)
    skill_tags = Column(JSON, nullable=False, default=list)
    tasks_completed = Column(Integer, nullable=False, default=0)
    average_completion_time = Column(Float, nullable=True)
    sla_adherence_rate = Column(Float, nullable=True)
    last_assigned_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AutomationPlaybook(Base):
    """Tenant-configured instance of a playbook template."""

    __tablename__ = "automation_playbooks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    template_key = Column(String(100), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(PlaybookStatusEnum, nullable=False, default="active")
    config = Column(JSON, nullable=False, default=dict)
    cadence_minutes = Column(Integer, nullable=False)
    confirmation_required = Column(Boolean, nullable=False, default=False)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
    last_run_status = Column(PlaybookRunStatusEnum, nullable=True)
    last_run_summary = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AutomationPlaybookRun(Base):
    """Append-only record of one playbook execution attempt."""

    __tablename__ = "automation_playbook_runs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    playbook_id = Column(
        Uuid(as_uuid=True), ForeignKey("automation_playbooks.id"), nullable=False, index=True
    )
    tenant_id = Column(String(64), nullable=False)
    status = Column(PlaybookRunStatusEnum, nullable=False)
    triggered_by = Column(String(128), nullable=False)
    context = Column(JSON, nullable=False, default=dict)
    action_summary = Column(JSON, nullable=False, default=dict)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class AutomationRule(Base):
    """Event- or schedule-triggered rule with an ordered action list."""

    __tablename__ = "automation_rules"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    trigger_type = Column(RuleTriggerEnum, nullable=False)
    trigger_conditions = Column(JSON, nullable=False, default=dict)
    actions = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


# Source tables read by detectors and playbook evaluators. Owned by other
# services; the core only reads them (bank transaction category aside).
class IngestionLogEntry(Base):
    """Document ingestion record."""

    __tablename__ = "ingestion_log"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    processing_status = Column(String(50), nullable=False, default="pending")
    ingested_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class BankTransaction(Base):
    """Imported bank feed transaction."""

    __tablename__ = "bank_transactions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=True)
    date = Column(DateTime(timezone=True), nullable=False)
    reconciled = Column(Boolean, nullable=True, default=False)
    category = Column(String(100), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)


class AnomalyDetection(Base):
    """Detected anomaly awaiting triage."""

    __tablename__ = "anomaly_detections"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    status = Column(String(50), nullable=False, default="open")
    detected_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Filing(Base):
    """Compliance filing obligation with a readiness score."""

    __tablename__ = "filings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    filing_type = Column(String(50), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(50), nullable=False, default="draft")
    readiness_score = Column(Float, nullable=False, default=0.0)


class TenantContact(Base):
    """Tenant user contact used for notifications."""

    __tablename__ = "tenant_contacts"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="client")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ReviewTask(Base):
    """Review work item written by the default review-task creator."""

    __tablename__ = "review_tasks"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    status = Column(String(50), nullable=False, default="pending")
    priority = Column(String(20), nullable=False, default="medium")
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
