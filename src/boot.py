"""Process-wide service wiring for workers and entry points."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable

from sqlalchemy.orm import Session

from agenda.signals import SignalCollector
from agenda.synthesizer import AgendaSynthesizer
from assignment.roster import StaffRepository
from assignment.service import AssignmentService
from autopilot_shared.logging import configure_logging
from config import settings
from execution.service import ExecutionService
from playbooks.actions import PlaybookActions
from playbooks.cadence import CadenceScheduler
from playbooks.engine import PlaybookEngine
from playbooks.repository import PlaybookRepository
from policies.engine import PolicyEngine
from policies.repository import PolicyRepository
from rules.engine import LedgerPoster, RuleEngine
from rules.repository import RuleRepository
from scheduler.sweeps import SweepRunner
from services.database import get_session_factory
from services.email import EmailSender, HttpEmailSender
from services.narrative import LlmNarrativeSummarizer, NarrativeSummarizer, TemplateNarrative
from services.review_tasks import ReviewTaskCreator, SqlReviewTaskCreator
from sla.tracker import SlaTracker
from tasks.history import TaskHistoryRepository
from tasks.repository import TaskRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Service bundle shared by sweeps and entry points."""

    tasks: TaskRepository
    history: TaskHistoryRepository
    staff: StaffRepository
    sla: SlaTracker
    policies: PolicyEngine
    assignment: AssignmentService
    execution: ExecutionService
    agenda: AgendaSynthesizer
    playbooks: PlaybookEngine
    cadence: CadenceScheduler
    rules: RuleEngine
    sweeps: SweepRunner


_services: Services | None = None


def build_services(
    session_factory: Callable[[], Session] | None = None,
    *,
    email_sender: EmailSender | None = None,
    review_tasks: ReviewTaskCreator | None = None,
    summarizer: NarrativeSummarizer | None = None,
    ledger_poster: LedgerPoster | None = None,
) -> Services:
    """Construct every service over one session factory."""
    factory = session_factory or get_session_factory()
    sender = email_sender or HttpEmailSender()
    creator = review_tasks or SqlReviewTaskCreator(factory)
    if summarizer is None:
        summarizer = LlmNarrativeSummarizer() if settings.llm.enabled else TemplateNarrative()

    tasks = TaskRepository(factory)
    sla = SlaTracker(factory)
    policies = PolicyEngine(PolicyRepository(factory))
    assignment = AssignmentService(factory)
    execution = ExecutionService(factory, policies)
    agenda = AgendaSynthesizer(factory, SignalCollector(factory), summarizer)
    playbook_repository = PlaybookRepository(factory)
    playbooks = PlaybookEngine(
        factory, playbook_repository, PlaybookActions(factory, creator, sender)
    )
    cadence = CadenceScheduler(playbook_repository, playbooks)
    rules = RuleEngine(factory, RuleRepository(factory), creator, sender, ledger_poster)
    sweeps = SweepRunner(
        factory,
        tasks=tasks,
        agenda=agenda,
        assignment=assignment,
        execution=execution,
        sla=sla,
        cadence=cadence,
    )
    return Services(
        tasks=tasks,
        history=TaskHistoryRepository(factory),
        staff=StaffRepository(factory),
        sla=sla,
        policies=policies,
        assignment=assignment,
        execution=execution,
        agenda=agenda,
        playbooks=playbooks,
        cadence=cadence,
        rules=rules,
        sweeps=sweeps,
    )


def set_services(services: Services | None) -> None:
    """Register the process service bundle (None clears it)."""
    global _services
    _services = services


def get_services() -> Services:
    """Return the process service bundle, building it on first use."""
    global _services
    if _services is None:
        configure_logging(
            level=settings.logging.level,
            json_output=settings.logging.json_output,
            service="autopilot",
            environment=settings.logging.environment,
        )
        _services = build_services()
        logger.info("Autopilot services initialized")
    return _services


__all__ = ["Services", "build_services", "get_services", "set_services"]
