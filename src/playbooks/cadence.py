"""Cadence scheduling for active playbooks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from uuid import UUID

from models import AutomationPlaybookRun
from playbooks.engine import PlaybookEngine
from playbooks.repository import PlaybookRepository, PlaybookView
from playbooks.templates import get_template
from time_utils import to_utc

logger = logging.getLogger(__name__)


@dataclass
class CadenceResult:
    """Runs recorded and playbooks that failed during one cadence tick."""

    runs: list[AutomationPlaybookRun] = field(default_factory=list)
    failed: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)


def is_due(playbook: PlaybookView, now: datetime) -> bool:
    """Never-run playbooks are due; otherwise due once the cadence has elapsed."""
    if playbook.last_run_at is None:
        return True
    next_run = to_utc(playbook.last_run_at) + timedelta(minutes=playbook.cadence_minutes)
    return to_utc(now) >= next_run


class CadenceScheduler:
    """Select due playbooks and run each with isolated failure handling."""

    def __init__(self, repository: PlaybookRepository, engine: PlaybookEngine) -> None:
        self._repository = repository
        self._engine = engine

    def due_playbooks(self, now: datetime) -> list[PlaybookView]:
        return [playbook for playbook in self._repository.list_active() if is_due(playbook, now)]

    def run_due_playbooks(self, now: datetime) -> CadenceResult:
        result = CadenceResult()
        for playbook in self.due_playbooks(now):
            if get_template(playbook.template_key) is None:
                logger.warning(
                    "Skipping playbook without template metadata: playbook_id=%s", playbook.id
                )
                result.skipped.append(playbook.id)
                continue
            try:
                result.runs.append(self._engine.run_playbook(playbook, "scheduler"))
            except Exception:
                logger.exception("Scheduled playbook run failed: playbook_id=%s", playbook.id)
                result.failed.append(playbook.id)
        logger.info(
            "Playbook cadence tick: runs=%s failed=%s skipped=%s",
            len(result.runs),
            len(result.failed),
            len(result.skipped),
        )
        return result


__all__ = ["CadenceResult", "CadenceScheduler", "is_due"]
