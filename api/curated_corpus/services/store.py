import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import date, datetime

from curated_corpus.services.repository import (
    ApprovedItemFilter,
    ApprovedItemRecord,
    ExcludedDomainRecord,
    PublisherDomainRecord,
    RecordPage,
    RejectedItemFilter,
    RejectedItemRecord,
    RepositoryUniqueViolationError,
    ScheduledItemRecord,
    ScheduleReviewRecord,
    SectionItemRecord,
    SectionRecord,
    TrustedDomainRecord,
)


@dataclass
class _State:
    approved_items: dict[int, ApprovedItemRecord] = field(default_factory=dict)
    rejected_items: dict[int, RejectedItemRecord] = field(default_factory=dict)
    corpus_urls: set[str] = field(default_factory=set)
    scheduled_items: dict[int, ScheduledItemRecord] = field(default_factory=dict)
    schedule_reviews: dict[int, ScheduleReviewRecord] = field(default_factory=dict)
    sections: dict[int, SectionRecord] = field(default_factory=dict)
    section_items: dict[int, SectionItemRecord] = field(default_factory=dict)
    trusted_domains: dict[str, TrustedDomainRecord] = field(default_factory=dict)
    excluded_domains: dict[str, ExcludedDomainRecord] = field(default_factory=dict)
    publisher_domains: dict[str, PublisherDomainRecord] = field(default_factory=dict)
    sequences: dict[str, int] = field(default_factory=dict)

    def next_id(self, table: str) -> int:
        value = self.sequences.get(table, 0) + 1
        self.sequences[table] = value
        return value


def _equals(value: str | None, expected: str | None) -> bool:
    return expected is None or value == expected


def _contains(value: str | None, needle: str | None) -> bool:
    return needle is None or needle.lower() in (value or "").lower()


class InMemorySession:
    """Same operations as the Postgres session, enforcing the same unique indexes."""

    def __init__(self, state: _State) -> None:
        self._state = state

    # approved / rejected items

    async def get_approved_item_by_external_id(self, external_id: str) -> ApprovedItemRecord | None:
        for record in self._state.approved_items.values():
            if record.external_id == external_id:
                return deepcopy(record)
        return None

    async def get_approved_item_by_id(self, item_id: int) -> ApprovedItemRecord | None:
        record = self._state.approved_items.get(item_id)
        return deepcopy(record) if record else None

    async def find_corpus_url(self, url: str) -> str | None:
        if any(record.url == url for record in self._state.approved_items.values()):
            return "approved"
        if any(record.url == url for record in self._state.rejected_items.values()):
            return "rejected"
        return None

    async def get_approved_item_by_url(self, url: str) -> ApprovedItemRecord | None:
        for record in self._state.approved_items.values():
            if record.url == url:
                return deepcopy(record)
        return None

    async def list_approved_items(
        self,
        *,
        filters: ApprovedItemFilter,
        limit: int,
        offset: int,
    ) -> RecordPage[ApprovedItemRecord]:
        matches = [
            record
            for record in self._state.approved_items.values()
            if _equals(record.language, filters.language)
            and _equals(record.status, filters.status)
            and _equals(record.topic, filters.topic)
            and _contains(record.title, filters.title)
            and _contains(record.url, filters.url)
            and _contains(record.excerpt, filters.excerpt)
            and _contains(record.publisher, filters.publisher)
            and (filters.author is None or any(_contains(author.name, filters.author) for author in record.authors))
        ]
        matches.sort(key=lambda record: (record.created_at, record.id or 0), reverse=True)
        return RecordPage(
            items=[deepcopy(record) for record in matches[offset : offset + limit]],
            total_count=len(matches),
            limit=limit,
            offset=offset,
        )

    async def list_rejected_items(
        self,
        *,
        filters: RejectedItemFilter,
        limit: int,
        offset: int,
    ) -> RecordPage[RejectedItemRecord]:
        matches = [
            record
            for record in self._state.rejected_items.values()
            if _equals(record.language, filters.language)
            and _equals(record.topic, filters.topic)
            and _contains(record.title, filters.title)
            and _contains(record.url, filters.url)
        ]
        matches.sort(key=lambda record: (record.created_at, record.id or 0), reverse=True)
        return RecordPage(
            items=[deepcopy(record) for record in matches[offset : offset + limit]],
            total_count=len(matches),
            limit=limit,
            offset=offset,
        )

    async def insert_approved_item(self, record: ApprovedItemRecord) -> ApprovedItemRecord:
        if any(existing.external_id == record.external_id for existing in self._state.approved_items.values()):
            raise RepositoryUniqueViolationError("approved_items_external_id_key")
        self._claim_url(record.url)
        record.id = self._state.next_id("approved_items")
        self._state.approved_items[record.id] = deepcopy(record)
        return record

    async def update_approved_item(self, record: ApprovedItemRecord) -> ApprovedItemRecord:
        if record.id in self._state.approved_items:
            self._state.approved_items[record.id] = deepcopy(record)
        return record

    async def delete_approved_item(self, item_id: int) -> None:
        removed = self._state.approved_items.pop(item_id, None)
        if removed is not None:
            self._state.corpus_urls.discard(removed.url)

    async def insert_rejected_item(self, record: RejectedItemRecord) -> RejectedItemRecord:
        self._claim_url(record.url)
        record.id = self._state.next_id("rejected_items")
        self._state.rejected_items[record.id] = deepcopy(record)
        return record

    def _claim_url(self, url: str) -> None:
        if url in self._state.corpus_urls:
            raise RepositoryUniqueViolationError("corpus_urls_pkey")
        self._state.corpus_urls.add(url)

    # scheduled items

    def _with_approved_item(self, record: ScheduledItemRecord) -> ScheduledItemRecord:
        hydrated = deepcopy(record)
        hydrated.approved_item = deepcopy(self._state.approved_items.get(record.approved_item_id))
        return hydrated

    async def get_scheduled_item(self, external_id: str) -> ScheduledItemRecord | None:
        for record in self._state.scheduled_items.values():
            if record.external_id == external_id:
                return self._with_approved_item(record)
        return None

    async def get_scheduled_item_for_slot(
        self,
        *,
        approved_item_id: int,
        scheduled_surface_guid: str,
        scheduled_date: date,
    ) -> ScheduledItemRecord | None:
        for record in self._state.scheduled_items.values():
            if (
                record.approved_item_id == approved_item_id
                and record.scheduled_surface_guid == scheduled_surface_guid
                and record.scheduled_date == scheduled_date
            ):
                return self._with_approved_item(record)
        return None

    async def insert_scheduled_item(self, record: ScheduledItemRecord) -> ScheduledItemRecord:
        occupied = await self.get_scheduled_item_for_slot(
            approved_item_id=record.approved_item_id,
            scheduled_surface_guid=record.scheduled_surface_guid,
            scheduled_date=record.scheduled_date,
        )
        if occupied is not None:
            raise RepositoryUniqueViolationError("scheduled_items_slot_key")
        record.id = self._state.next_id("scheduled_items")
        stored = deepcopy(record)
        stored.approved_item = None
        self._state.scheduled_items[record.id] = stored
        return self._with_approved_item(stored)

    async def delete_scheduled_item(self, item_id: int) -> None:
        self._state.scheduled_items.pop(item_id, None)

    async def list_scheduled_items(
        self,
        *,
        scheduled_surface_guid: str,
        start_date: date,
        end_date: date,
    ) -> list[ScheduledItemRecord]:
        matches = [
            record
            for record in self._state.scheduled_items.values()
            if record.scheduled_surface_guid == scheduled_surface_guid
            and start_date <= record.scheduled_date <= end_date
        ]
        matches.sort(key=lambda record: (record.scheduled_date, record.updated_at, record.id or 0))
        return [self._with_approved_item(record) for record in matches]

    async def count_scheduled_items_for_approved_item(self, approved_item_id: int) -> int:
        return sum(1 for record in self._state.scheduled_items.values() if record.approved_item_id == approved_item_id)

    async def has_scheduled_item_for_domain_before(self, *, domain_name: str, before: date) -> bool:
        for record in self._state.scheduled_items.values():
            item = self._state.approved_items.get(record.approved_item_id)
            if item is not None and item.domain_name == domain_name and record.scheduled_date < before:
                return True
        return False

    async def list_scheduled_items_for_approved_item(
        self,
        approved_item_id: int,
        *,
        scheduled_surface_guid: str | None,
        limit: int,
    ) -> list[ScheduledItemRecord]:
        matches = [
            record
            for record in self._state.scheduled_items.values()
            if record.approved_item_id == approved_item_id
            and (scheduled_surface_guid is None or record.scheduled_surface_guid == scheduled_surface_guid)
        ]
        matches.sort(key=lambda record: (record.scheduled_date, record.id or 0), reverse=True)
        return [self._with_approved_item(record) for record in matches[:limit]]

    # schedule reviews

    async def get_schedule_review(
        self,
        *,
        scheduled_surface_guid: str,
        scheduled_date: date,
    ) -> ScheduleReviewRecord | None:
        for record in self._state.schedule_reviews.values():
            if record.scheduled_surface_guid == scheduled_surface_guid and record.scheduled_date == scheduled_date:
                return deepcopy(record)
        return None

    async def insert_schedule_review(self, record: ScheduleReviewRecord) -> ScheduleReviewRecord:
        existing = await self.get_schedule_review(
            scheduled_surface_guid=record.scheduled_surface_guid,
            scheduled_date=record.scheduled_date,
        )
        if existing is not None:
            raise RepositoryUniqueViolationError("schedule_reviews_slot_key")
        record.id = self._state.next_id("schedule_reviews")
        self._state.schedule_reviews[record.id] = deepcopy(record)
        return record

    async def list_schedule_reviews(
        self,
        *,
        scheduled_surface_guid: str,
        start_date: date,
        end_date: date,
    ) -> list[ScheduleReviewRecord]:
        reviews = [
            deepcopy(record)
            for record in self._state.schedule_reviews.values()
            if record.scheduled_surface_guid == scheduled_surface_guid
            and start_date <= record.scheduled_date <= end_date
        ]
        return sorted(reviews, key=lambda record: record.scheduled_date)

    # domain policy

    async def is_excluded_domain(self, domain_name: str) -> bool:
        return domain_name in self._state.excluded_domains

    async def insert_excluded_domain(self, record: ExcludedDomainRecord) -> ExcludedDomainRecord:
        if record.domain_name in self._state.excluded_domains:
            raise RepositoryUniqueViolationError("excluded_domains_pkey")
        self._state.excluded_domains[record.domain_name] = deepcopy(record)
        return record

    async def delete_excluded_domain(self, domain_name: str) -> bool:
        return self._state.excluded_domains.pop(domain_name, None) is not None

    async def get_trusted_domain(self, domain_name: str) -> TrustedDomainRecord | None:
        record = self._state.trusted_domains.get(domain_name)
        return deepcopy(record) if record else None

    async def insert_trusted_domain_if_absent(self, record: TrustedDomainRecord) -> TrustedDomainRecord:
        existing = self._state.trusted_domains.setdefault(record.domain_name, deepcopy(record))
        return deepcopy(existing)

    async def get_publisher_domain(self, domain_name: str) -> PublisherDomainRecord | None:
        record = self._state.publisher_domains.get(domain_name)
        return deepcopy(record) if record else None

    async def upsert_publisher_domain(self, record: PublisherDomainRecord) -> PublisherDomainRecord:
        existing = self._state.publisher_domains.get(record.domain_name)
        if existing is None:
            stored = PublisherDomainRecord(
                domain_name=record.domain_name,
                publisher=record.publisher,
                created_at=record.created_at,
                created_by=record.created_by,
            )
        else:
            stored = PublisherDomainRecord(
                domain_name=existing.domain_name,
                publisher=record.publisher,
                created_at=existing.created_at,
                created_by=existing.created_by,
                updated_at=record.created_at,
                updated_by=record.created_by,
            )
        self._state.publisher_domains[record.domain_name] = stored
        return deepcopy(stored)

    # sections

    def _find_section_id(self, external_id: str) -> int | None:
        for section_id, record in self._state.sections.items():
            if record.external_id == external_id:
                return section_id
        return None

    async def get_section(self, external_id: str) -> SectionRecord | None:
        section_id = self._find_section_id(external_id)
        return deepcopy(self._state.sections[section_id]) if section_id is not None else None

    async def get_section_by_id(self, section_id: int) -> SectionRecord | None:
        record = self._state.sections.get(section_id)
        return deepcopy(record) if record else None

    async def insert_section(self, record: SectionRecord) -> SectionRecord:
        if self._find_section_id(record.external_id) is not None:
            raise RepositoryUniqueViolationError("sections_external_id_key")
        record.id = self._state.next_id("sections")
        stored = deepcopy(record)
        stored.section_items = []
        self._state.sections[record.id] = stored
        return record

    async def update_section(self, record: SectionRecord) -> SectionRecord:
        section_id = self._find_section_id(record.external_id)
        if section_id is not None:
            stored = deepcopy(record)
            stored.id = section_id
            stored.section_items = []
            self._state.sections[section_id] = stored
        return record

    async def list_sections(
        self,
        *,
        scheduled_surface_guid: str,
        active_only: bool = True,
        create_source: str | None = None,
    ) -> list[SectionRecord]:
        sections = [
            deepcopy(record)
            for record in self._state.sections.values()
            if record.scheduled_surface_guid == scheduled_surface_guid
            and (not active_only or record.active)
            and (create_source is None or record.create_source == create_source)
        ]
        return sorted(sections, key=lambda record: (record.sort is None, record.sort or 0, record.id or 0))

    # section items

    def _with_section_approved_item(self, record: SectionItemRecord) -> SectionItemRecord:
        hydrated = deepcopy(record)
        hydrated.approved_item = deepcopy(self._state.approved_items.get(record.approved_item_id))
        return hydrated

    async def get_section_item(self, external_id: str) -> SectionItemRecord | None:
        for record in self._state.section_items.values():
            if record.external_id == external_id:
                return self._with_section_approved_item(record)
        return None

    async def insert_section_item(self, record: SectionItemRecord) -> SectionItemRecord:
        record.id = self._state.next_id("section_items")
        stored = deepcopy(record)
        stored.approved_item = None
        self._state.section_items[record.id] = stored
        return self._with_section_approved_item(stored)

    async def update_section_item(self, record: SectionItemRecord) -> SectionItemRecord:
        if record.id in self._state.section_items:
            stored = deepcopy(record)
            stored.approved_item = None
            self._state.section_items[record.id] = stored
        return record

    async def list_section_items(self, section_id: int, *, active_only: bool = True) -> list[SectionItemRecord]:
        items = [
            record
            for record in self._state.section_items.values()
            if record.section_id == section_id and (not active_only or record.active)
        ]
        items.sort(key=lambda record: (record.rank is None, record.rank or 0, record.id or 0))
        return [self._with_section_approved_item(record) for record in items]

    async def deactivate_section_items(self, section_id: int, *, source: str, at: datetime) -> int:
        changed = 0
        for record in self._state.section_items.values():
            if record.section_id == section_id and record.active:
                record.active = False
                record.deactivate_source = source
                record.deactivated_at = at
                record.updated_at = at
                changed += 1
        return changed

    async def delete_section_items_for_approved_item(self, approved_item_id: int) -> int:
        doomed = [
            item_id
            for item_id, record in self._state.section_items.items()
            if record.approved_item_id == approved_item_id
        ]
        for item_id in doomed:
            del self._state.section_items[item_id]
        return len(doomed)


class InMemoryStore:
    """Process-local store used by tests and the ``memory`` storage backend.

    Transactions are serialized with a lock; a failed transaction restores the
    snapshot taken when it began.
    """

    def __init__(self) -> None:
        self._state = _State()
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        return None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemorySession]:
        async with self._lock:
            snapshot = deepcopy(self._state)
            try:
                yield InMemorySession(self._state)
            except BaseException:
                self._state = snapshot
                raise
