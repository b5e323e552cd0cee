"""Autopilot orchestration schema.

Revision ID: 0001_autopilot_core
Revises:
Create Date: 2026-01-01 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

revision = "0001_autopilot_core"
down_revision = None
branch_labels = None
depends_on = None


def _id() -> sa.Column:
    return sa.Column("id", sa.Uuid(), primary_key=True)


def _tenant(nullable: bool = False) -> sa.Column:
    return sa.Column("tenant_id", sa.String(length=64), nullable=nullable)


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create orchestration tables."""
    op.create_table(
        "autopilot_tasks",
        _id(),
        _tenant(),
        sa.Column("task_type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("playbook_id", sa.Uuid(), nullable=True),
        sa.Column("assigned_to", sa.String(length=64), nullable=True),
        sa.Column("assigned_by", sa.String(length=64), nullable=True),
        sa.Column("assignment_method", sa.String(length=16), nullable=True),
        sa.Column("auto_assigned", sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp("due_date", nullable=True),
        sa.Column("sla_hours", sa.Integer(), nullable=True),
        _timestamp("started_at", nullable=True),
        _timestamp("completed_at", nullable=True),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ai_summary", sa.Text(), nullable=True),
        sa.Column("source_evidence", sa.JSON(), nullable=True),
        sa.Column("recommended_action", sa.Text(), nullable=True),
        sa.Column("confidence_score", sa.Float(), nullable=True),
        sa.Column("executed_by", sa.String(length=64), nullable=True),
        sa.Column("execution_method", sa.String(length=16), nullable=True),
        sa.Column("execution_result", sa.JSON(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_autopilot_tasks_tenant_id", "autopilot_tasks", ["tenant_id"])
    op.create_index(
        "ix_autopilot_tasks_status_assigned", "autopilot_tasks", ["status", "assigned_to"]
    )

    op.create_table(
        "task_execution_history",
        _id(),
        sa.Column("task_id", sa.Uuid(), sa.ForeignKey("autopilot_tasks.id"), nullable=False),
        sa.Column("action_type", sa.String(length=16), nullable=False),
        sa.Column("action_by", sa.String(length=64), nullable=True),
        sa.Column("action_method", sa.String(length=50), nullable=True),
        _timestamp("action_timestamp"),
        sa.Column("previous_status", sa.String(length=50), nullable=True),
        sa.Column("new_status", sa.String(length=50), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("can_rollback", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rollback_data", sa.JSON(), nullable=True),
    )
    op.create_index(
        "ix_task_execution_history_task_id", "task_execution_history", ["task_id"]
    )

    op.create_table(
        "autopilot_agenda",
        _id(),
        _tenant(),
        sa.Column("agenda_date", sa.Date(), nullable=False),
        _timestamp("generated_at"),
        *[
            sa.Column(name, sa.Integer(), nullable=False, server_default="0")
            for name in (
                "total_tasks",
                "pending_tasks",
                "in_progress_tasks",
                "completed_tasks",
                "overdue_tasks",
                "urgent_count",
                "high_count",
                "medium_count",
                "low_count",
                "on_track_count",
                "at_risk_count",
                "breached_count",
            )
        ],
        sa.Column("task_ids", sa.JSON(), nullable=False),
        sa.UniqueConstraint("tenant_id", "agenda_date", name="uq_autopilot_agenda_tenant_date"),
    )

    op.create_table(
        "sla_tracking",
        _id(),
        _tenant(),
        sa.Column(
            "task_id", sa.Uuid(), sa.ForeignKey("autopilot_tasks.id"), nullable=False, unique=True
        ),
        sa.Column("sla_type", sa.String(length=100), nullable=False),
        sa.Column("sla_hours", sa.Integer(), nullable=False),
        _timestamp("sla_start_time"),
        _timestamp("sla_due_time"),
        sa.Column("status", sa.String(length=16), nullable=False),
        _timestamp("completed_at", nullable=True),
        sa.Column("actual_hours", sa.Float(), nullable=True),
        sa.Column("escalation_count", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_sla_tracking_tenant_id", "sla_tracking", ["tenant_id"])

    op.create_table(
        "autopilot_policies",
        _id(),
        _tenant(nullable=True),
        sa.Column("policy_name", sa.String(length=255), nullable=False),
        sa.Column("policy_type", sa.String(length=100), nullable=False),
        sa.Column("scope", sa.String(length=16), nullable=False),
        sa.Column("scope_id", sa.String(length=64), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("risk_threshold", sa.Float(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_autopilot_policies_tenant_id", "autopilot_policies", ["tenant_id"])

    op.create_table(
        "staff_members",
        _id(),
        _tenant(),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("max_concurrent_tasks", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("skill_tags", sa.JSON(), nullable=False),
        sa.Column("tasks_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_completion_time", sa.Float(), nullable=True),
        sa.Column("sla_adherence_rate", sa.Float(), nullable=True),
        _timestamp("last_assigned_at", nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_staff_tenant_user"),
    )
    op.create_index("ix_staff_members_tenant_id", "staff_members", ["tenant_id"])

    op.create_table(
        "automation_playbooks",
        _id(),
        _tenant(),
        sa.Column("template_key", sa.String(length=100), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("cadence_minutes", sa.Integer(), nullable=False),
        sa.Column(
            "confirmation_required", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        _timestamp("last_run_at", nullable=True),
        sa.Column("last_run_status", sa.String(length=32), nullable=True),
        sa.Column("last_run_summary", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_automation_playbooks_tenant_id", "automation_playbooks", ["tenant_id"])

    op.create_table(
        "automation_playbook_runs",
        _id(),
        sa.Column(
            "playbook_id", sa.Uuid(), sa.ForeignKey("automation_playbooks.id"), nullable=False
        ),
        _tenant(),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("triggered_by", sa.String(length=128), nullable=False),
        sa.Column("context", sa.JSON(), nullable=False),
        sa.Column("action_summary", sa.JSON(), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("completed_at", nullable=True),
    )
    op.create_index(
        "ix_automation_playbook_runs_playbook_id", "automation_playbook_runs", ["playbook_id"]
    )

    op.create_table(
        "automation_rules",
        _id(),
        _tenant(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_type", sa.String(length=16), nullable=False),
        sa.Column("trigger_conditions", sa.JSON(), nullable=False),
        sa.Column("actions", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_automation_rules_tenant_id", "automation_rules", ["tenant_id"])


def downgrade() -> None:
    """Drop orchestration tables."""
    op.drop_table("automation_rules")
    op.drop_table("automation_playbook_runs")
    op.drop_table("automation_playbooks")
    op.drop_table("staff_members")
    op.drop_table("autopilot_policies")
    op.drop_table("sla_tracking")
    op.drop_table("autopilot_agenda")
    op.drop_table("task_execution_history")
    op.drop_table("autopilot_tasks")
