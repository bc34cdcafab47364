from __future__ import annotations

import logging
from datetime import date

from curated_corpus.core.registry import Registry
from curated_corpus.services.common import Clock, CorpusStore, format_day, require_surface, utc_now
from curated_corpus.services.events import CorpusEvent, EventEmitter, EventType, MutationResult
from curated_corpus.services.repository import (
    RepositoryAlreadyReviewedError,
    RepositoryUniqueViolationError,
    ScheduleReviewRecord,
)

logger = logging.getLogger(__name__)


def _already_reviewed_message(review: ScheduleReviewRecord) -> str:
    return (
        f"The {review.scheduled_surface_guid} surface has already been reviewed for "
        f"{format_day(review.scheduled_date)} by {review.reviewed_by} "
        f"on {review.reviewed_at.isoformat()}."
    )


class ScheduleReviewTracker:
    def __init__(
        self,
        store: CorpusStore,
        *,
        registry: Registry,
        emitter: EventEmitter,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry
        self.emitter = emitter
        self.clock = clock

    async def mark_reviewed(
        self,
        *,
        scheduled_surface_guid: str,
        scheduled_date: date,
        actor: str,
    ) -> MutationResult[ScheduleReviewRecord]:
        require_surface(self.registry, scheduled_surface_guid)
        record = ScheduleReviewRecord(
            scheduled_surface_guid=scheduled_surface_guid,
            scheduled_date=scheduled_date,
            reviewed_by=actor,
            reviewed_at=self.clock(),
        )

        async with self.store.transaction() as session:
            existing = await session.get_schedule_review(
                scheduled_surface_guid=scheduled_surface_guid,
                scheduled_date=scheduled_date,
            )
            if existing is not None:
                raise RepositoryAlreadyReviewedError(_already_reviewed_message(existing))
            try:
                record = await session.insert_schedule_review(record)
            except RepositoryUniqueViolationError as exc:
                raise RepositoryAlreadyReviewedError(
                    f"The {scheduled_surface_guid} surface has already been reviewed for "
                    f"{format_day(scheduled_date)}."
                ) from exc

        logger.info(
            "schedule reviewed surface=%s date=%s actor=%s",
            scheduled_surface_guid,
            scheduled_date.isoformat(),
            actor,
        )
        delivered = await self.emitter.emit(
            CorpusEvent(
                event_type=EventType.REVIEW_SCHEDULE,
                entity=record,
                actor=actor,
                timestamp=record.reviewed_at,
            )
        )
        return MutationResult(record=record, events_delivered=delivered)
