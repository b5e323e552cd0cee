"""Stable error code constants.

Codes are machine-readable and never change meaning once published. Messages
may be reworded; codes may not.
"""

# Validation
VALIDATION_ERROR = "VALIDATION_ERROR"
INVALID_ARGUMENT = "INVALID_ARGUMENT"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
UNKNOWN_TEMPLATE = "UNKNOWN_TEMPLATE"
UNKNOWN_ASSIGNMENT_METHOD = "UNKNOWN_ASSIGNMENT_METHOD"
INVALID_CONDITION = "INVALID_CONDITION"
CONFIG_OUT_OF_RANGE = "CONFIG_OUT_OF_RANGE"
RUN_NOT_AWAITING_APPROVAL = "RUN_NOT_AWAITING_APPROVAL"
ROLLBACK_UNAVAILABLE = "ROLLBACK_UNAVAILABLE"
INVALID_TRANSITION = "INVALID_TRANSITION"

# Not found
NOT_FOUND = "NOT_FOUND"
TASK_NOT_FOUND = "TASK_NOT_FOUND"
AGENDA_NOT_FOUND = "AGENDA_NOT_FOUND"
PLAYBOOK_NOT_FOUND = "PLAYBOOK_NOT_FOUND"
RUN_NOT_FOUND = "RUN_NOT_FOUND"
POLICY_NOT_FOUND = "POLICY_NOT_FOUND"
RULE_NOT_FOUND = "RULE_NOT_FOUND"

# Policy
POLICY_VIOLATION = "POLICY_VIOLATION"
POLICY_BLOCKED = "POLICY_BLOCKED"
REVIEW_REQUIRED = "REVIEW_REQUIRED"

# Execution
EXECUTION_FAILED = "EXECUTION_FAILED"
UNKNOWN_TASK_TYPE = "UNKNOWN_TASK_TYPE"
ALREADY_CLAIMED = "ALREADY_CLAIMED"

# Dependency / external system
DEPENDENCY_FAILURE = "DEPENDENCY_FAILURE"
DEPENDENCY_TIMEOUT = "DEPENDENCY_TIMEOUT"
DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"

# Conflict
CONFLICT = "CONFLICT"

# Internal
INTERNAL_ERROR = "INTERNAL_ERROR"
UNEXPECTED_EXCEPTION = "UNEXPECTED_EXCEPTION"
