from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import uuid4

from curated_corpus.core.domains import InvalidHostnameError, InvalidUrlError, get_domain_name
from curated_corpus.core.registry import (
    ActivitySource,
    CorpusItemSource,
    CorpusLanguage,
    CuratedStatus,
    Registry,
    Topic,
)
from curated_corpus.services.common import (
    Clock,
    CorpusStore,
    coerce_choice,
    coerce_text,
    require_surface,
    require_text,
    split_reason_codes,
    utc_now,
    validate_page,
)
from curated_corpus.services.domain_policy import DomainPolicy
from curated_corpus.services.events import CorpusEvent, EventEmitter, EventType, MutationResult
from curated_corpus.services.repository import (
    ApprovedItemAuthor,
    ApprovedItemFilter,
    ApprovedItemRecord,
    RecordPage,
    RejectedItemFilter,
    RejectedItemRecord,
    RepositoryConflictError,
    RepositoryExcludedDomainError,
    RepositoryNotFoundError,
    RepositoryUniqueViolationError,
    RepositoryValidationError,
    ScheduledItemRecord,
)
from curated_corpus.services.scheduling import SchedulingEngine

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "excerpt",
        "status",
        "language",
        "publisher",
        "image_url",
        "topic",
        "grade",
        "is_time_sensitive",
        "date_published",
        "authors",
    }
)
IMMUTABLE_FIELDS = frozenset({"url", "external_id", "domain_name"})
DEFAULT_PAGE_SIZE = 30
DEFAULT_HISTORY_SIZE = 10


@dataclass(slots=True)
class ApprovedItemCreation:
    item: ApprovedItemRecord
    scheduled_item: ScheduledItemRecord | None = None


def _domain_for_url(url: str) -> str:
    try:
        return get_domain_name(url)
    except (InvalidUrlError, InvalidHostnameError) as exc:
        raise RepositoryValidationError(str(exc)) from exc


def _url_conflict(url: str, exc: RepositoryUniqueViolationError) -> RepositoryConflictError:
    if exc.constraint.startswith("approved_items"):
        return RepositoryConflictError(f"An approved item with the URL {url} already exists.")
    if exc.constraint.startswith("rejected_items"):
        return RepositoryConflictError(f"A rejected item with the URL {url} already exists.")
    return RepositoryConflictError(f"A corpus item with the URL {url} already exists.")


def _normalize_authors(authors: list[ApprovedItemAuthor] | None) -> list[ApprovedItemAuthor]:
    normalized: list[ApprovedItemAuthor] = []
    for author in authors or []:
        name = coerce_text(author.name)
        if name is not None:
            normalized.append(ApprovedItemAuthor(name=name, sort_order=author.sort_order))
    return sorted(normalized, key=lambda author: author.sort_order)


def _optional_topic(value: Any) -> str | None:
    if value is None:
        return None
    return coerce_choice(value, Topic, field_name="topic")


def _optional_language(value: Any) -> str | None:
    if value is None:
        return None
    return coerce_choice(value, CorpusLanguage, field_name="language")


class CorpusItemService:
    """Approved and rejected corpus items. A URL lives in at most one of the two tables."""

    def __init__(
        self,
        store: CorpusStore,
        *,
        registry: Registry,
        domain_policy: DomainPolicy,
        scheduling: SchedulingEngine,
        emitter: EventEmitter,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry
        self.domain_policy = domain_policy
        self.scheduling = scheduling
        self.emitter = emitter
        self.clock = clock

    async def create_approved_item(
        self,
        *,
        url: str,
        title: str,
        excerpt: str,
        status: str,
        language: str,
        source: str,
        actor: str,
        topic: str | None = None,
        publisher: str | None = None,
        authors: list[ApprovedItemAuthor] | None = None,
        image_url: str | None = None,
        prospect_id: str | None = None,
        grade: str | None = None,
        is_collection: bool = False,
        is_syndicated: bool = False,
        is_time_sensitive: bool = False,
        date_published: date | None = None,
        scheduled_surface_guid: str | None = None,
        scheduled_date: date | None = None,
        scheduled_source: str | None = None,
    ) -> MutationResult[ApprovedItemCreation]:
        normalized_url = require_text(url, "url")
        domain_name = _domain_for_url(normalized_url)

        scheduling_fields = (scheduled_surface_guid, scheduled_date, scheduled_source)
        wants_schedule = all(value is not None for value in scheduling_fields)
        if not wants_schedule and any(value is not None for value in scheduling_fields):
            raise RepositoryValidationError(
                "scheduledSurfaceGuid, scheduledDate and scheduledSource must be provided together"
            )
        if wants_schedule:
            require_surface(self.registry, scheduled_surface_guid)
            scheduled_source = coerce_choice(scheduled_source, ActivitySource, field_name="scheduledSource")

        now = self.clock()
        record = ApprovedItemRecord(
            external_id=str(uuid4()),
            url=normalized_url,
            domain_name=domain_name,
            title=require_text(title, "title"),
            excerpt=require_text(excerpt, "excerpt"),
            status=coerce_choice(status, CuratedStatus, field_name="status"),
            language=coerce_choice(language, CorpusLanguage, field_name="language"),
            publisher=domain_name,
            topic=_optional_topic(topic),
            source=coerce_choice(source, CorpusItemSource, field_name="source"),
            created_at=now,
            created_by=actor,
            authors=_normalize_authors(authors),
            image_url=coerce_text(image_url),
            prospect_id=coerce_text(prospect_id),
            grade=coerce_text(grade),
            is_collection=is_collection,
            is_syndicated=is_syndicated,
            is_time_sensitive=is_time_sensitive,
            date_published=date_published,
        )

        scheduled_item: ScheduledItemRecord | None = None
        async with self.store.transaction() as session:
            await self._ensure_url_is_new(session, normalized_url)
            if await self.domain_policy.is_excluded(session, domain_name):
                raise RepositoryExcludedDomainError(
                    f'Cannot create a corpus item: "{domain_name}" is on the excluded domains list.'
                )

            mapped_publisher = await self.domain_policy.lookup_publisher(session, domain_name)
            record.publisher = mapped_publisher or coerce_text(publisher) or domain_name

            try:
                record = await session.insert_approved_item(record)
            except RepositoryUniqueViolationError as exc:
                raise _url_conflict(normalized_url, exc) from exc

            if wants_schedule:
                scheduled_item = await self.scheduling.schedule_in_session(
                    session,
                    approved_item=record,
                    scheduled_surface_guid=scheduled_surface_guid,
                    scheduled_date=scheduled_date,
                    source=scheduled_source,
                    actor=actor,
                )

        logger.info("approved item created external_id=%s domain=%s actor=%s", record.external_id, domain_name, actor)
        events = [CorpusEvent(event_type=EventType.ADD_ITEM, entity=record, actor=actor, timestamp=now)]
        if scheduled_item is not None:
            events.append(
                CorpusEvent(
                    event_type=EventType.ADD_SCHEDULE,
                    entity=scheduled_item,
                    actor=actor,
                    timestamp=scheduled_item.created_at,
                )
            )
        delivered = await self.emitter.emit_all(events)
        return MutationResult(
            record=ApprovedItemCreation(item=record, scheduled_item=scheduled_item),
            events_delivered=delivered,
        )

    async def update_approved_item(
        self,
        *,
        external_id: str,
        actor: str,
        changes: Mapping[str, Any],
    ) -> MutationResult[ApprovedItemRecord]:
        immutable = sorted(IMMUTABLE_FIELDS.intersection(changes))
        if immutable:
            raise RepositoryValidationError(f"{', '.join(immutable)} cannot be changed on an approved item")
        unknown = sorted(set(changes) - UPDATABLE_FIELDS)
        if unknown:
            raise RepositoryValidationError(f"unsupported approved item field(s): {', '.join(unknown)}")

        async with self.store.transaction() as session:
            record = await session.get_approved_item_by_external_id(external_id)
            if record is None:
                raise RepositoryNotFoundError(f'Approved Item with id "{external_id}" does not exist.')

            for key, value in changes.items():
                self._apply_change(record, key, value)
            record.updated_at = self.clock()
            record.updated_by = actor
            record = await session.update_approved_item(record)

        delivered = await self.emitter.emit(
            CorpusEvent(event_type=EventType.UPDATE_ITEM, entity=record, actor=actor, timestamp=record.updated_at)
        )
        return MutationResult(record=record, events_delivered=delivered)

    async def get_approved_item(self, *, external_id: str) -> ApprovedItemRecord:
        async with self.store.transaction() as session:
            record = await session.get_approved_item_by_external_id(external_id)
        if record is None:
            raise RepositoryNotFoundError(f'Approved Item with id "{external_id}" does not exist.')
        return record

    async def get_approved_item_by_url(self, *, url: str) -> ApprovedItemRecord:
        normalized_url = require_text(url, "url")
        async with self.store.transaction() as session:
            record = await session.get_approved_item_by_url(normalized_url)
        if record is None:
            raise RepositoryNotFoundError(f'Approved Item with url "{normalized_url}" does not exist.')
        return record

    async def list_approved_items(
        self,
        *,
        filters: ApprovedItemFilter | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> RecordPage[ApprovedItemRecord]:
        validate_page(limit, offset)
        filters = filters or ApprovedItemFilter()
        normalized = ApprovedItemFilter(
            language=_optional_language(filters.language),
            status=None if filters.status is None else coerce_choice(filters.status, CuratedStatus, field_name="status"),
            topic=_optional_topic(filters.topic),
            title=coerce_text(filters.title),
            url=coerce_text(filters.url),
            excerpt=coerce_text(filters.excerpt),
            publisher=coerce_text(filters.publisher),
            author=coerce_text(filters.author),
        )
        async with self.store.transaction() as session:
            return await session.list_approved_items(filters=normalized, limit=limit, offset=offset)

    async def list_rejected_items(
        self,
        *,
        filters: RejectedItemFilter | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> RecordPage[RejectedItemRecord]:
        validate_page(limit, offset)
        filters = filters or RejectedItemFilter()
        normalized = RejectedItemFilter(
            language=_optional_language(filters.language),
            topic=_optional_topic(filters.topic),
            title=coerce_text(filters.title),
            url=coerce_text(filters.url),
        )
        async with self.store.transaction() as session:
            return await session.list_rejected_items(filters=normalized, limit=limit, offset=offset)

    async def get_scheduled_surface_history(
        self,
        *,
        external_id: str,
        scheduled_surface_guid: str | None = None,
        limit: int = DEFAULT_HISTORY_SIZE,
    ) -> list[ScheduledItemRecord]:
        """Most recent assignments of one approved item, newest scheduled date first."""
        validate_page(limit, 0)
        if scheduled_surface_guid is not None:
            require_surface(self.registry, scheduled_surface_guid)
        async with self.store.transaction() as session:
            record = await session.get_approved_item_by_external_id(external_id)
            if record is None:
                raise RepositoryNotFoundError(f'Approved Item with id "{external_id}" does not exist.')
            return await session.list_scheduled_items_for_approved_item(
                record.id,
                scheduled_surface_guid=scheduled_surface_guid,
                limit=limit,
            )

    async def has_trusted_domain(self, *, external_id: str) -> bool:
        async with self.store.transaction() as session:
            record = await session.get_approved_item_by_external_id(external_id)
            if record is None:
                raise RepositoryNotFoundError(f'Approved Item with id "{external_id}" does not exist.')
            return await self.domain_policy.is_trusted(session, record.domain_name)

    async def reject_approved_item(
        self,
        *,
        external_id: str,
        reason: str,
        actor: str,
    ) -> MutationResult[RejectedItemRecord]:
        reasons = self._rejection_reasons(reason)

        async with self.store.transaction() as session:
            approved = await session.get_approved_item_by_external_id(external_id)
            if approved is None:
                raise RepositoryNotFoundError(f'Approved Item with id "{external_id}" does not exist.')
            if await session.count_scheduled_items_for_approved_item(approved.id):
                raise RepositoryConflictError(
                    "Cannot remove item from approved corpus - scheduled entries exist."
                )

            await session.delete_section_items_for_approved_item(approved.id)
            await session.delete_approved_item(approved.id)
            try:
                rejected = await session.insert_rejected_item(
                    RejectedItemRecord(
                        external_id=str(uuid4()),
                        url=approved.url,
                        title=approved.title,
                        topic=approved.topic,
                        language=approved.language,
                        publisher=approved.publisher,
                        reason=reasons,
                        created_at=self.clock(),
                        created_by=actor,
                        prospect_id=approved.prospect_id,
                    )
                )
            except RepositoryUniqueViolationError as exc:
                raise _url_conflict(approved.url, exc) from exc

        logger.info("approved item rejected external_id=%s reasons=%s actor=%s", external_id, reasons, actor)
        delivered = await self.emitter.emit_all(
            [
                CorpusEvent(event_type=EventType.REMOVE_ITEM, entity=approved, actor=actor, timestamp=rejected.created_at),
                CorpusEvent(event_type=EventType.REJECT_ITEM, entity=rejected, actor=actor, timestamp=rejected.created_at),
            ]
        )
        return MutationResult(record=rejected, events_delivered=delivered)

    async def create_rejected_item(
        self,
        *,
        url: str,
        reason: str,
        actor: str,
        title: str | None = None,
        topic: str | None = None,
        language: str | None = None,
        publisher: str | None = None,
        prospect_id: str | None = None,
    ) -> MutationResult[RejectedItemRecord]:
        normalized_url = require_text(url, "url")
        _domain_for_url(normalized_url)
        record = RejectedItemRecord(
            external_id=str(uuid4()),
            url=normalized_url,
            title=coerce_text(title),
            topic=_optional_topic(topic),
            language=_optional_language(language),
            publisher=coerce_text(publisher),
            reason=self._rejection_reasons(reason),
            created_at=self.clock(),
            created_by=actor,
            prospect_id=coerce_text(prospect_id),
        )

        async with self.store.transaction() as session:
            await self._ensure_url_is_new(session, normalized_url)
            try:
                record = await session.insert_rejected_item(record)
            except RepositoryUniqueViolationError as exc:
                raise _url_conflict(normalized_url, exc) from exc

        delivered = await self.emitter.emit(
            CorpusEvent(event_type=EventType.REJECT_ITEM, entity=record, actor=actor, timestamp=record.created_at)
        )
        return MutationResult(record=record, events_delivered=delivered)

    async def _ensure_url_is_new(self, session: Any, url: str) -> None:
        found_in = await session.find_corpus_url(url)
        if found_in == "approved":
            raise RepositoryConflictError(f"An approved item with the URL {url} already exists.")
        if found_in == "rejected":
            raise RepositoryConflictError(f"A rejected item with the URL {url} already exists.")

    def _rejection_reasons(self, raw: str) -> list[str]:
        reasons = split_reason_codes(raw, self.registry.rejection_reasons, label="rejection reason")
        if not reasons:
            raise RepositoryValidationError("at least one rejection reason is required")
        return reasons

    def _apply_change(self, record: ApprovedItemRecord, key: str, value: Any) -> None:
        if key in {"title", "excerpt", "publisher"}:
            setattr(record, key, require_text(value, key))
        elif key == "status":
            record.status = coerce_choice(value, CuratedStatus, field_name="status")
        elif key == "language":
            record.language = coerce_choice(value, CorpusLanguage, field_name="language")
        elif key == "topic":
            record.topic = _optional_topic(value)
        elif key in {"image_url", "grade"}:
            setattr(record, key, coerce_text(value))
        elif key == "is_time_sensitive":
            record.is_time_sensitive = bool(value)
        elif key == "date_published":
            record.date_published = value
        elif key == "authors":
            record.authors = _normalize_authors(value)
