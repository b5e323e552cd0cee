"""Review-task creation contract and its SQL implementation."""

from __future__ import annotations

from contextlib import closing
import logging
from typing import Callable, Protocol

from sqlalchemy.orm import Session

from models import ReviewTask
from time_utils import utc_now

logger = logging.getLogger(__name__)


class ReviewTaskCreator(Protocol):
    """Contract for opening a review work item against a business entity."""

    def create_review_task(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        priority: str,
    ) -> None:
        """Create one review task or raise on failure."""


class SqlReviewTaskCreator:
    """Insert review tasks into the ``review_tasks`` table."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create_review_task(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        priority: str,
    ) -> None:
        with closing(self._session_factory()) as session:
            try:
                session.add(
                    ReviewTask(
                        tenant_id=tenant_id,
                        entity_type=entity_type,
                        entity_id=str(entity_id),
                        priority=priority,
                        status="pending",
                        created_at=utc_now(),
                    )
                )
                session.commit()
            except Exception:
                session.rollback()
                raise
        logger.debug(
            "Review task created: tenant=%s entity=%s/%s", tenant_id, entity_type, entity_id
        )
