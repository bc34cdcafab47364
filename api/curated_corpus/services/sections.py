"""Section lifecycle: ML generation swaps, custom (MANUAL) sections and section items."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

from curated_corpus.core.registry import ActivitySource, Registry, SectionStatus
from curated_corpus.services.common import (
    Clock,
    CorpusStore,
    coerce_choice,
    coerce_text,
    require_surface,
    require_text,
    utc_now,
)
from curated_corpus.services.events import CorpusEvent, EventEmitter, EventType, MutationResult
from curated_corpus.services.repository import (
    IABMetadata,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUniqueViolationError,
    RepositoryValidationError,
    SectionItemRecord,
    SectionRecord,
)

logger = logging.getLogger(__name__)


def _as_utc_day(value: datetime | date) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(timezone.utc).date()
    return value


def compute_section_status(section: SectionRecord, now: datetime | date) -> SectionStatus:
    """Derived status at day granularity in UTC. ``disabled`` always wins."""
    if section.disabled:
        return SectionStatus.DISABLED
    today = _as_utc_day(now)
    if section.start_date is not None and today < _as_utc_day(section.start_date):
        return SectionStatus.SCHEDULED
    if section.end_date is not None and today >= _as_utc_day(section.end_date):
        return SectionStatus.EXPIRED
    return SectionStatus.LIVE


class SectionLifecycle:
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

    async def create_or_replace_section(
        self,
        *,
        external_id: str,
        title: str,
        scheduled_surface_guid: str,
        create_source: str,
        actor: str,
        sort: int | None = None,
        active: bool = True,
        description: str | None = None,
        iab: IABMetadata | None = None,
    ) -> MutationResult[SectionRecord]:
        """Generation swap for an ML section.

        An existing section keeps its row; every active item is retired with
        ``deactivate_source=ML`` so the next generation can be added.
        """
        if coerce_choice(create_source, ActivitySource, field_name="createSource") != ActivitySource.ML.value:
            raise RepositoryValidationError("Cannot create or update a Section: createSource must be ML")
        section_external_id = require_text(external_id, "externalId")
        require_surface(self.registry, scheduled_surface_guid)
        normalized_iab = self._validate_iab(iab)
        now = self.clock()

        async with self.store.transaction() as session:
            section = await session.get_section(section_external_id)
            if section is None:
                section = SectionRecord(
                    external_id=section_external_id,
                    title=require_text(title, "title"),
                    scheduled_surface_guid=scheduled_surface_guid,
                    create_source=ActivitySource.ML.value,
                    active=active,
                    created_at=now,
                    updated_at=now,
                    sort=sort,
                    description=coerce_text(description),
                    iab=normalized_iab,
                    created_by=actor,
                )
                if not active:
                    section.deactivate_source = ActivitySource.ML.value
                    section.deactivated_at = now
                try:
                    section = await session.insert_section(section)
                except RepositoryUniqueViolationError as exc:
                    raise RepositoryConflictError(f"Section with externalId {section_external_id} already exists") from exc
                event_type = EventType.CREATE_SECTION
            else:
                if section.create_source != ActivitySource.ML.value:
                    raise RepositoryValidationError(
                        f"Section with externalId {section_external_id} is a custom (MANUAL) Section "
                        "and cannot be replaced by an ML update"
                    )
                section.title = require_text(title, "title")
                section.scheduled_surface_guid = scheduled_surface_guid
                section.sort = sort
                section.description = coerce_text(description)
                section.iab = normalized_iab
                section.updated_at = now
                section.updated_by = actor
                if active:
                    section.active = True
                    section.deactivate_source = None
                    section.deactivated_at = None
                elif section.active:
                    section.active = False
                    section.deactivate_source = ActivitySource.ML.value
                    section.deactivated_at = now
                section = await session.update_section(section)
                retired = await session.deactivate_section_items(
                    section.id,
                    source=ActivitySource.ML.value,
                    at=now,
                )
                logger.info(
                    "section generation swap external_id=%s active=%s retired_items=%s",
                    section_external_id,
                    active,
                    retired,
                )
                event_type = EventType.UPDATE_SECTION

        delivered = await self.emitter.emit(
            CorpusEvent(event_type=event_type, entity=section, actor=actor, timestamp=now)
        )
        return MutationResult(record=section, events_delivered=delivered)

    async def create_custom_section(
        self,
        *,
        title: str,
        scheduled_surface_guid: str,
        description: str,
        start_date: date,
        create_source: str,
        actor: str,
        end_date: date | None = None,
        hero_title: str | None = None,
        hero_description: str | None = None,
        iab: IABMetadata | None = None,
        sort: int | None = None,
        active: bool = True,
    ) -> MutationResult[SectionRecord]:
        self._require_manual(create_source, "create")
        require_surface(self.registry, scheduled_surface_guid)
        _validate_window(start_date, end_date)
        now = self.clock()
        section = SectionRecord(
            external_id=str(uuid4()),
            title=require_text(title, "title"),
            scheduled_surface_guid=scheduled_surface_guid,
            create_source=ActivitySource.MANUAL.value,
            active=active,
            created_at=now,
            updated_at=now,
            sort=sort,
            description=require_text(description, "description"),
            hero_title=coerce_text(hero_title),
            hero_description=coerce_text(hero_description),
            start_date=start_date,
            end_date=end_date,
            iab=self._validate_iab(iab),
            created_by=actor,
        )

        async with self.store.transaction() as session:
            section = await session.insert_section(section)

        logger.info("custom section created external_id=%s surface=%s", section.external_id, scheduled_surface_guid)
        delivered = await self.emitter.emit(
            CorpusEvent(event_type=EventType.CREATE_SECTION, entity=section, actor=actor, timestamp=now)
        )
        return MutationResult(record=section, events_delivered=delivered)

    async def update_custom_section(
        self,
        *,
        external_id: str,
        title: str,
        scheduled_surface_guid: str,
        description: str,
        start_date: date,
        create_source: str,
        actor: str,
        end_date: date | None = None,
        hero_title: str | None = None,
        hero_description: str | None = None,
        iab: IABMetadata | None = None,
        sort: int | None = None,
        active: bool = True,
    ) -> MutationResult[SectionRecord]:
        self._require_manual(create_source, "update")
        require_surface(self.registry, scheduled_surface_guid)
        _validate_window(start_date, end_date)
        normalized_iab = self._validate_iab(iab)
        now = self.clock()

        async with self.store.transaction() as session:
            section = await self._get_custom_section(session, external_id, "updated")
            section.title = require_text(title, "title")
            section.scheduled_surface_guid = scheduled_surface_guid
            section.description = require_text(description, "description")
            section.hero_title = coerce_text(hero_title)
            section.hero_description = coerce_text(hero_description)
            section.start_date = start_date
            section.end_date = end_date
            section.iab = normalized_iab
            section.sort = sort
            section.active = active
            section.updated_at = now
            section.updated_by = actor
            section = await session.update_section(section)

        delivered = await self.emitter.emit(
            CorpusEvent(event_type=EventType.UPDATE_SECTION, entity=section, actor=actor, timestamp=now)
        )
        return MutationResult(record=section, events_delivered=delivered)

    async def delete_custom_section(self, *, external_id: str, actor: str) -> MutationResult[SectionRecord]:
        now = self.clock()
        async with self.store.transaction() as session:
            section = await self._get_custom_section(session, external_id, "deleted")
            section.active = False
            section.deactivate_source = ActivitySource.MANUAL.value
            section.deactivated_at = now
            section.updated_at = now
            section.updated_by = actor
            section = await session.update_section(section)
            await session.deactivate_section_items(section.id, source=ActivitySource.MANUAL.value, at=now)

        logger.info("custom section deleted external_id=%s actor=%s", external_id, actor)
        delivered = await self.emitter.emit(
            CorpusEvent(event_type=EventType.DELETE_SECTION, entity=section, actor=actor, timestamp=now)
        )
        return MutationResult(record=section, events_delivered=delivered)

    async def set_section_disabled(
        self,
        *,
        external_id: str,
        disabled: bool,
        actor: str,
    ) -> MutationResult[SectionRecord]:
        now = self.clock()
        async with self.store.transaction() as session:
            section = await session.get_section(external_id)
            if section is None:
                raise RepositoryNotFoundError(f"Cannot find Section with externalId {external_id}")
            if section.disabled == disabled:
                return MutationResult(record=section, events_delivered=True)
            section.disabled = disabled
            section.updated_at = now
            section.updated_by = actor
            section = await session.update_section(section)

        delivered = await self.emitter.emit(
            CorpusEvent(event_type=EventType.UPDATE_SECTION, entity=section, actor=actor, timestamp=now)
        )
        return MutationResult(record=section, events_delivered=delivered)

    async def add_section_item(
        self,
        *,
        section_external_id: str,
        approved_item_external_id: str,
        actor: str,
        rank: int | None = None,
    ) -> MutationResult[SectionItemRecord]:
        now = self.clock()
        async with self.store.transaction() as session:
            section = await session.get_section(section_external_id)
            if section is None or not section.active:
                raise RepositoryNotFoundError(
                    f"Cannot create a section item: Section with id {section_external_id} does not exist."
                )
            approved_item = await session.get_approved_item_by_external_id(approved_item_external_id)
            if approved_item is None:
                raise RepositoryNotFoundError(
                    "Cannot create a section item: ApprovedItem with id "
                    f"{approved_item_external_id} does not exist."
                )
            item = await session.insert_section_item(
                SectionItemRecord(
                    external_id=str(uuid4()),
                    section_id=section.id,
                    approved_item_id=approved_item.id,
                    active=True,
                    created_at=now,
                    updated_at=now,
                    rank=rank,
                    approved_item=approved_item,
                )
            )

        delivered = await self.emitter.emit(
            CorpusEvent(
                event_type=EventType.ADD_SECTION_ITEM,
                entity=item,
                actor=actor,
                timestamp=now,
                extra={"section_external_id": section.external_id},
            )
        )
        return MutationResult(record=item, events_delivered=delivered)

    async def remove_section_item(
        self,
        *,
        external_id: str,
        actor: str,
        deactivate_reasons: list[str] | None = None,
    ) -> MutationResult[SectionItemRecord]:
        reasons = self._validate_removal_reasons(deactivate_reasons)
        now = self.clock()
        async with self.store.transaction() as session:
            item = await session.get_section_item(external_id)
            if item is None or not item.active:
                raise RepositoryNotFoundError(f"Cannot remove a section item: SectionItem with id {external_id} does not exist.")
            item.active = False
            item.deactivated_at = now
            item.deactivate_source = ActivitySource.MANUAL.value
            item.deactivate_reasons = reasons
            item.updated_at = now
            item = await session.update_section_item(item)

        delivered = await self.emitter.emit(
            CorpusEvent(event_type=EventType.REMOVE_SECTION_ITEM, entity=item, actor=actor, timestamp=now)
        )
        return MutationResult(record=item, events_delivered=delivered)

    async def get_section(self, *, external_id: str) -> SectionRecord:
        async with self.store.transaction() as session:
            section = await session.get_section(external_id)
        if section is None:
            raise RepositoryNotFoundError(f"Cannot find Section with externalId {external_id}")
        return section

    async def get_section_for_item(self, *, external_id: str) -> SectionRecord:
        async with self.store.transaction() as session:
            item = await session.get_section_item(external_id)
            section = await session.get_section_by_id(item.section_id) if item is not None else None
        if section is None:
            raise RepositoryNotFoundError(f"Cannot find SectionItem with externalId {external_id}")
        return section

    async def list_sections(
        self,
        *,
        scheduled_surface_guid: str,
        public: bool = False,
        create_source: str | None = None,
    ) -> list[SectionRecord]:
        """Active sections with their active items; ``public`` keeps only enabled LIVE sections."""
        require_surface(self.registry, scheduled_surface_guid)
        if create_source is not None:
            create_source = coerce_choice(create_source, ActivitySource, field_name="createSource")
        now = self.clock()
        async with self.store.transaction() as session:
            sections = await session.list_sections(
                scheduled_surface_guid=scheduled_surface_guid,
                active_only=True,
                create_source=create_source,
            )
            if public:
                sections = [section for section in sections if compute_section_status(section, now) == SectionStatus.LIVE]
            for section in sections:
                section.section_items = await session.list_section_items(section.id, active_only=True)
        return sections

    async def _get_custom_section(self, session: Any, external_id: str, verb: str) -> SectionRecord:
        section = await session.get_section(external_id)
        if section is None:
            raise RepositoryNotFoundError(f"Cannot find Section with externalId {external_id}")
        if section.create_source != ActivitySource.MANUAL.value:
            raise RepositoryValidationError(
                f"Section with externalId {external_id} is not a custom (MANUAL) Section "
                f"and cannot be {verb} using this mutation"
            )
        return section

    def _require_manual(self, create_source: str, verb: str) -> None:
        if coerce_choice(create_source, ActivitySource, field_name="createSource") != ActivitySource.MANUAL.value:
            raise RepositoryValidationError(f"Cannot {verb} a custom Section: createSource must be MANUAL")

    def _validate_iab(self, iab: IABMetadata | None) -> IABMetadata | None:
        if iab is None:
            return None
        codes = self.registry.iab_categories.get(iab.taxonomy)
        if codes is None:
            raise RepositoryValidationError(f"IAB taxonomy version {iab.taxonomy} is not supported")
        invalid = [code for code in iab.categories if code not in codes]
        if invalid:
            raise RepositoryValidationError(f"IAB code(s) invalid: {','.join(invalid)}")
        return IABMetadata(taxonomy=iab.taxonomy, categories=list(dict.fromkeys(iab.categories)))

    def _validate_removal_reasons(self, reasons: list[str] | None) -> list[str]:
        normalized: list[str] = []
        for reason in reasons or []:
            code = reason.strip()
            if not code or code in normalized:
                continue
            if code not in self.registry.section_item_removal_reasons:
                raise RepositoryValidationError(f'"{code}" is not a valid section item removal reason.')
            normalized.append(code)
        return normalized


def _validate_window(start_date: date, end_date: date | None) -> None:
    if end_date is not None and end_date < start_date:
        raise RepositoryValidationError("endDate must not be before startDate")
