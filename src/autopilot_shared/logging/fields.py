"""Structured log field names."""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EXCEPTION = "exception"
EXCEPTION_TYPE = "exception_type"

SERVICE = "service"
ENVIRONMENT = "environment"

TENANT_ID = "tenant_id"
TASK_ID = "task_id"
PLAYBOOK_ID = "playbook_id"
RUN_ID = "run_id"
RULE_ID = "rule_id"
SWEEP = "sweep"
