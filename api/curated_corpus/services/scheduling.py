from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any
from uuid import uuid4

from curated_corpus.core.auth import Principal
from curated_corpus.core.registry import ActivitySource, Registry, ScheduledSurface
from curated_corpus.services.common import (
    Clock,
    CorpusStore,
    coerce_choice,
    format_day,
    require_surface,
    truncate_text,
    utc_now,
)
from curated_corpus.services.domain_policy import DomainPolicy
from curated_corpus.services.events import CorpusEvent, EventEmitter, EventType, MutationResult
from curated_corpus.services.repository import (
    ApprovedItemRecord,
    RepositoryAlreadyScheduledError,
    RepositoryExcludedDomainError,
    RepositoryNotFoundError,
    RepositoryUniqueViolationError,
    RepositoryValidationError,
    ScheduledItemRecord,
    ScheduleReviewRecord,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ScheduledDay:
    scheduled_date: date
    total_count: int = 0
    collection_count: int = 0
    syndicated_count: int = 0
    items: list[ScheduledItemRecord] = field(default_factory=list)
    review: ScheduleReviewRecord | None = None


class SchedulingEngine:
    """Creates, deletes and reschedules slot assignments (item x surface x date).

    Slot uniqueness is owned by the store: a unique-index violation on insert is
    reported as :class:`RepositoryAlreadyScheduledError` exactly like the
    pre-insert lookup, so racing callers see the same error.
    """

    def __init__(
        self,
        store: CorpusStore,
        *,
        registry: Registry,
        domain_policy: DomainPolicy,
        emitter: EventEmitter,
        reason_max_length: int = 100,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry
        self.domain_policy = domain_policy
        self.emitter = emitter
        self.reason_max_length = reason_max_length
        self.clock = clock

    async def create_scheduled_item(
        self,
        *,
        approved_item_external_id: str,
        scheduled_surface_guid: str,
        scheduled_date: date,
        source: str,
        actor: str,
        reasons: str | None = None,
        comment: str | None = None,
    ) -> MutationResult[ScheduledItemRecord]:
        normalized_source = coerce_choice(source, ActivitySource, field_name="source")
        async with self.store.transaction() as session:
            approved_item = await session.get_approved_item_by_external_id(approved_item_external_id)
            if approved_item is None:
                raise RepositoryNotFoundError(
                    "Cannot create a scheduled entry: Approved Item with id "
                    f'"{approved_item_external_id}" does not exist.'
                )
            require_surface(self.registry, scheduled_surface_guid)
            record = await self.schedule_in_session(
                session,
                approved_item=approved_item,
                scheduled_surface_guid=scheduled_surface_guid,
                scheduled_date=scheduled_date,
                source=normalized_source,
                actor=actor,
            )

        delivered = await self.emitter.emit(
            CorpusEvent(
                event_type=EventType.ADD_SCHEDULE,
                entity=record,
                actor=actor,
                timestamp=record.created_at,
                extra=self._reason_fields(reasons, comment),
            )
        )
        return MutationResult(record=record, events_delivered=delivered)

    async def schedule_in_session(
        self,
        session: Any,
        *,
        approved_item: ApprovedItemRecord,
        scheduled_surface_guid: str,
        scheduled_date: date,
        source: str,
        actor: str,
    ) -> ScheduledItemRecord:
        """Exclusion check, slot check, insert and trust promotion inside an open transaction."""
        await self._ensure_not_excluded(session, approved_item)

        existing = await session.get_scheduled_item_for_slot(
            approved_item_id=approved_item.id,
            scheduled_surface_guid=scheduled_surface_guid,
            scheduled_date=scheduled_date,
        )
        if existing is not None:
            raise RepositoryAlreadyScheduledError(_already_scheduled_message(scheduled_surface_guid, scheduled_date))

        now = self.clock()
        try:
            record = await session.insert_scheduled_item(
                ScheduledItemRecord(
                    external_id=str(uuid4()),
                    approved_item_id=approved_item.id,
                    scheduled_surface_guid=scheduled_surface_guid,
                    scheduled_date=scheduled_date,
                    source=source,
                    created_at=now,
                    created_by=actor,
                    updated_at=now,
                    updated_by=actor,
                    approved_item=approved_item,
                )
            )
        except RepositoryUniqueViolationError as exc:
            raise RepositoryAlreadyScheduledError(
                _already_scheduled_message(scheduled_surface_guid, scheduled_date)
            ) from exc

        await self.domain_policy.promote_if_eligible(session, approved_item.domain_name, scheduled_date)
        logger.info(
            "scheduled item created external_id=%s surface=%s date=%s actor=%s",
            record.external_id,
            scheduled_surface_guid,
            scheduled_date.isoformat(),
            actor,
        )
        return record

    async def delete_scheduled_item(
        self,
        *,
        external_id: str,
        actor: str,
        reasons: str | None = None,
        comment: str | None = None,
    ) -> MutationResult[ScheduledItemRecord]:
        async with self.store.transaction() as session:
            record = await session.get_scheduled_item(external_id)
            if record is None:
                raise RepositoryNotFoundError(f'Item with ID of "{external_id}" could not be found.')
            await session.delete_scheduled_item(record.id)

        removed_at = self.clock()
        extra = {
            "original_scheduled_item_external_id": record.external_id,
            "status": "REMOVED",
            **self._reason_fields(reasons, comment),
        }
        delivered = await self.emitter.emit(
            CorpusEvent(
                event_type=EventType.REMOVE_SCHEDULE,
                entity=replace(record, external_id=str(uuid4())),
                actor=actor,
                timestamp=removed_at,
                extra=extra,
            )
        )
        logger.info("scheduled item deleted external_id=%s actor=%s", record.external_id, actor)
        return MutationResult(record=record, events_delivered=delivered)

    async def reschedule_scheduled_item(
        self,
        *,
        external_id: str,
        scheduled_date: date,
        source: str,
        actor: str,
    ) -> MutationResult[ScheduledItemRecord]:
        normalized_source = coerce_choice(source, ActivitySource, field_name="source")
        async with self.store.transaction() as session:
            current = await session.get_scheduled_item(external_id)
            if current is None:
                raise RepositoryNotFoundError(f'Item with ID of "{external_id}" could not be found.')
            if current.scheduled_date == scheduled_date:
                return MutationResult(record=current, events_delivered=True)

            approved_item = current.approved_item or await session.get_approved_item_by_id(current.approved_item_id)
            await session.delete_scheduled_item(current.id)
            record = await self.schedule_in_session(
                session,
                approved_item=approved_item,
                scheduled_surface_guid=current.scheduled_surface_guid,
                scheduled_date=scheduled_date,
                source=normalized_source,
                actor=actor,
            )

        delivered = await self.emitter.emit(
            CorpusEvent(
                event_type=EventType.RESCHEDULE,
                entity=record,
                actor=actor,
                timestamp=record.created_at,
                extra={"original_scheduled_item_external_id": current.external_id},
            )
        )
        return MutationResult(record=record, events_delivered=delivered)

    async def get_scheduled_item(self, *, external_id: str) -> ScheduledItemRecord:
        async with self.store.transaction() as session:
            record = await session.get_scheduled_item(external_id)
        if record is None:
            raise RepositoryNotFoundError(f'Item with ID of "{external_id}" could not be found.')
        return record

    async def list_scheduled_items(
        self,
        *,
        scheduled_surface_guid: str,
        start_date: date,
        end_date: date,
    ) -> list[ScheduledDay]:
        require_surface(self.registry, scheduled_surface_guid)
        if end_date < start_date:
            raise RepositoryValidationError("endDate must not be before startDate")

        async with self.store.transaction() as session:
            items = await session.list_scheduled_items(
                scheduled_surface_guid=scheduled_surface_guid,
                start_date=start_date,
                end_date=end_date,
            )
            reviews = await session.list_schedule_reviews(
                scheduled_surface_guid=scheduled_surface_guid,
                start_date=start_date,
                end_date=end_date,
            )

        reviews_by_date = {review.scheduled_date: review for review in reviews}
        days: dict[date, ScheduledDay] = {}
        for item in items:
            day = days.get(item.scheduled_date)
            if day is None:
                day = ScheduledDay(scheduled_date=item.scheduled_date, review=reviews_by_date.get(item.scheduled_date))
                days[item.scheduled_date] = day
            day.items.append(item)
            day.total_count += 1
            if item.approved_item is not None:
                day.collection_count += int(item.approved_item.is_collection)
                day.syndicated_count += int(item.approved_item.is_syndicated)
        return list(days.values())

    async def get_items_for_scheduled_surface(
        self,
        *,
        scheduled_surface_guid: str,
        scheduled_date: date,
    ) -> list[ScheduledItemRecord]:
        require_surface(self.registry, scheduled_surface_guid)
        async with self.store.transaction() as session:
            return await session.list_scheduled_items(
                scheduled_surface_guid=scheduled_surface_guid,
                start_date=scheduled_date,
                end_date=scheduled_date,
            )

    def scheduled_surfaces_for_user(self, principal: Principal) -> list[ScheduledSurface]:
        """Surfaces the principal may schedule onto, in registry order."""
        return [surface for guid, surface in self.registry.surfaces.items() if principal.can_write_to_surface(guid)]

    async def _ensure_not_excluded(self, session: Any, approved_item: ApprovedItemRecord) -> None:
        if await self.domain_policy.is_excluded(session, approved_item.domain_name):
            raise RepositoryExcludedDomainError(
                f'Cannot schedule this story: "{approved_item.domain_name}" is on the excluded domains list.'
            )

    def _reason_fields(self, reasons: str | None, comment: str | None) -> dict[str, Any]:
        codes = [
            code.strip()[: self.reason_max_length]
            for code in (reasons or "").split(",")
            if code.strip()
        ]
        return {
            "reasons": codes or None,
            "reason_comment": truncate_text(comment, self.reason_max_length),
        }


def _already_scheduled_message(scheduled_surface_guid: str, scheduled_date: date) -> str:
    return f"This story is already scheduled to appear on {scheduled_surface_guid} on {format_day(scheduled_date)}."
