"""Built-in playbook templates and config validation."""

from __future__ import annotations

from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field

from autopilot_shared.errors import ValidationError, codes


class PlaybookTemplateField(BaseModel):
    """Tunable numeric config field exposed by a template."""

    key: str
    label: str
    type: Literal["number"] = "number"
    min: float | None = None
    max: float | None = None
    helper_text: str | None = None


class PlaybookTemplate(BaseModel):
    """Static definition of a playbook automation."""

    key: str
    name: str
    description: str
    category: Literal["cashflow", "compliance"]
    trigger_type: Literal["schedule", "event"] = "schedule"
    cadence_minutes: int
    default_config: dict[str, Any] = Field(default_factory=dict)
    config_fields: list[PlaybookTemplateField] = Field(default_factory=list)
    confirmation_required: bool = False
    metrics: list[str] = Field(default_factory=list)
    call_to_action: str = ""


PLAYBOOK_TEMPLATES: tuple[PlaybookTemplate, ...] = (
    PlaybookTemplate(
        key="reconciliation_backlog",
        name="Reconciliation Backlog Escalation",
        description=(
            "Monitor unreconciled transactions and auto-create review tasks when the "
            "backlog grows beyond your tolerance."
        ),
        category="cashflow",
        cadence_minutes=360,
        default_config={"threshold": 10, "maxAgeDays": 5, "reviewSample": 15, "maxActions": 5},
        config_fields=[
            PlaybookTemplateField(
                key="threshold",
                label="Minimum unreconciled items before alert",
                min=1,
                max=200,
                helper_text="Playbook only triggers when pending items exceed this number.",
            ),
            PlaybookTemplateField(
                key="maxAgeDays",
                label="Days before a transaction is considered stale",
                min=1,
                max=30,
            ),
            PlaybookTemplateField(
                key="maxActions",
                label="Max review tasks to create per run",
                min=1,
                max=25,
            ),
        ],
        metrics=["Pending bank transactions", "Average age of unreconciled items"],
        call_to_action=(
            "Creates review tasks for the oldest high-priority transactions and emails "
            "the finance owner."
        ),
    ),
    PlaybookTemplate(
        key="filing_deadline_guard",
        name="Filing Deadline Guard",
        description=(
            "Daily sweep for VAT/PAYE/CT filings due soon or overdue, with reminders "
            "and optional tasks."
        ),
        category="compliance",
        cadence_minutes=1440,
        default_config={"daysAhead": 14, "createTasksForOverdue": 1},
        config_fields=[
            PlaybookTemplateField(
                key="daysAhead",
                label="Alert window (days before due date)",
                min=1,
                max=60,
            ),
        ],
        confirmation_required=True,
        metrics=["Upcoming filings", "Overdue filings"],
        call_to_action=(
            "Emails the compliance owner with due filings and prepares review tasks for "
            "overdue items once approved."
        ),
    ),
)

_TEMPLATES_BY_KEY = {template.key: template for template in PLAYBOOK_TEMPLATES}


def list_templates() -> list[PlaybookTemplate]:
    return list(PLAYBOOK_TEMPLATES)


def get_template(key: str) -> PlaybookTemplate | None:
    return _TEMPLATES_BY_KEY.get(key)


def require_template(key: str) -> PlaybookTemplate:
    """Return a template or raise ValidationError for unknown keys."""
    template = get_template(key)
    if template is None:
        raise ValidationError(
            f"Unknown playbook template: {key}",
            code=codes.UNKNOWN_TEMPLATE,
            metadata={"template_key": key},
        )
    return template


def merge_config(template: PlaybookTemplate, *layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Overlay config layers on the template defaults, later layers winning."""
    merged = dict(template.default_config)
    for layer in layers:
        if layer:
            merged.update(layer)
    return merged


def validate_config(template: PlaybookTemplate, config: Mapping[str, Any]) -> None:
    """Raise ValidationError when a declared field is non-numeric or out of bounds."""
    for config_field in template.config_fields:
        if config_field.key not in config:
            continue
        value = config[config_field.key]
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(
                f"Config '{config_field.key}' must be a number.",
                code=codes.CONFIG_OUT_OF_RANGE,
                metadata={"field": config_field.key},
            )
        too_low = config_field.min is not None and value < config_field.min
        too_high = config_field.max is not None and value > config_field.max
        if too_low or too_high:
            raise ValidationError(
                f"Config '{config_field.key}' is out of range "
                f"[{config_field.min}, {config_field.max}].",
                code=codes.CONFIG_OUT_OF_RANGE,
                metadata={"field": config_field.key, "value": str(value)},
            )


__all__ = [
    "PLAYBOOK_TEMPLATES",
    "PlaybookTemplate",
    "PlaybookTemplateField",
    "get_template",
    "list_templates",
    "merge_config",
    "require_template",
    "validate_config",
]
