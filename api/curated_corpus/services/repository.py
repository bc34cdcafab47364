from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Generic, TypeVar
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc


T = TypeVar("T")


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryAlreadyScheduledError(RepositoryConflictError):
    """Raised when a scheduled surface slot is already occupied by the item."""


class RepositoryAlreadyReviewedError(RepositoryConflictError):
    """Raised when a scheduled surface has already been reviewed for a date."""


class RepositoryUniqueViolationError(RepositoryConflictError):
    """Raised by a store when a write hits a unique index."""

    def __init__(self, constraint: str) -> None:
        super().__init__(f"unique constraint violated: {constraint}")
        self.constraint = constraint


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class RepositoryExcludedDomainError(RepositoryValidationError):
    """Raised when a content item belongs to a domain on the exclusion list."""


@dataclass(slots=True)
class ApprovedItemAuthor:
    name: str
    sort_order: int


@dataclass(slots=True)
class ApprovedItemRecord:
    external_id: str
    url: str
    domain_name: str
    title: str
    excerpt: str
    status: str
    language: str
    publisher: str
    topic: str | None
    source: str
    created_at: datetime
    created_by: str
    authors: list[ApprovedItemAuthor] = field(default_factory=list)
    image_url: str | None = None
    prospect_id: str | None = None
    grade: str | None = None
    is_collection: bool = False
    is_syndicated: bool = False
    is_time_sensitive: bool = False
    date_published: date | None = None
    updated_at: datetime | None = None
    updated_by: str | None = None
    id: int | None = None


@dataclass(slots=True)
class RejectedItemRecord:
    external_id: str
    url: str
    title: str | None
    topic: str | None
    language: str | None
    publisher: str | None
    reason: list[str]
    created_at: datetime
    created_by: str
    prospect_id: str | None = None
    id: int | None = None


@dataclass(slots=True)
class ScheduledItemRecord:
    external_id: str
    approved_item_id: int
    scheduled_surface_guid: str
    scheduled_date: date
    source: str
    created_at: datetime
    created_by: str
    updated_at: datetime
    updated_by: str | None = None
    id: int | None = None
    approved_item: ApprovedItemRecord | None = None


@dataclass(slots=True)
class ScheduleReviewRecord:
    scheduled_surface_guid: str
    scheduled_date: date
    reviewed_by: str
    reviewed_at: datetime
    id: int | None = None


@dataclass(slots=True)
class IABMetadata:
    taxonomy: str
    categories: list[str]


@dataclass(slots=True)
class SectionItemRecord:
    external_id: str
    section_id: int
    approved_item_id: int
    active: bool
    created_at: datetime
    updated_at: datetime
    rank: int | None = None
    deactivated_at: datetime | None = None
    deactivate_source: str | None = None
    deactivate_reasons: list[str] = field(default_factory=list)
    id: int | None = None
    approved_item: ApprovedItemRecord | None = None


@dataclass(slots=True)
class SectionRecord:
    external_id: str
    title: str
    scheduled_surface_guid: str
    create_source: str
    active: bool
    created_at: datetime
    updated_at: datetime
    sort: int | None = None
    disabled: bool = False
    deactivate_source: str | None = None
    deactivated_at: datetime | None = None
    description: str | None = None
    hero_title: str | None = None
    hero_description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    iab: IABMetadata | None = None
    created_by: str | None = None
    updated_by: str | None = None
    id: int | None = None
    section_items: list[SectionItemRecord] = field(default_factory=list)


@dataclass(slots=True)
class TrustedDomainRecord:
    domain_name: str
    created_at: datetime


@dataclass(slots=True)
class ExcludedDomainRecord:
    domain_name: str
    created_at: datetime
    created_by: str | None = None


@dataclass(slots=True)
class PublisherDomainRecord:
    domain_name: str
    publisher: str
    created_at: datetime
    created_by: str
    updated_at: datetime | None = None
    updated_by: str | None = None


@dataclass(slots=True)
class ApprovedItemFilter:
    """Exact matches on the enum fields, case-insensitive substring matches on the rest."""

    language: str | None = None
    status: str | None = None
    topic: str | None = None
    title: str | None = None
    url: str | None = None
    excerpt: str | None = None
    publisher: str | None = None
    author: str | None = None


@dataclass(slots=True)
class RejectedItemFilter:
    language: str | None = None
    topic: str | None = None
    title: str | None = None
    url: str | None = None


@dataclass(slots=True)
class RecordPage(Generic[T]):
    items: list[T]
    total_count: int
    limit: int
    offset: int


_APPROVED_ITEM_COLUMNS = """
  ai.id, ai.external_id::text as external_id, ai.prospect_id, ai.url, ai.domain_name,
  ai.title, ai.excerpt, ai.status, ai.language, ai.publisher, ai.image_url, ai.topic,
  ai.source, ai.grade, ai.is_collection, ai.is_syndicated, ai.is_time_sensitive,
  ai.date_published, ai.authors, ai.created_at, ai.created_by, ai.updated_at, ai.updated_by
"""

_SCHEDULED_ITEM_COLUMNS = """
  si.id as si_id, si.external_id::text as si_external_id, si.approved_item_id as si_approved_item_id,
  si.scheduled_surface_guid as si_scheduled_surface_guid, si.scheduled_date as si_scheduled_date,
  si.source as si_source, si.created_at as si_created_at, si.created_by as si_created_by,
  si.updated_at as si_updated_at, si.updated_by as si_updated_by
"""

_SECTION_COLUMNS = """
  id, external_id, title, scheduled_surface_guid, create_source, sort, active, disabled,
  deactivate_source, deactivated_at, description, hero_title, hero_description,
  start_date, end_date, iab, created_at, created_by, updated_at, updated_by
"""

_SECTION_ITEM_COLUMNS = """
  sit.id as sit_id, sit.external_id::text as sit_external_id, sit.section_id as sit_section_id,
  sit.approved_item_id as sit_approved_item_id, sit.rank as sit_rank, sit.active as sit_active,
  sit.deactivated_at as sit_deactivated_at, sit.deactivate_source as sit_deactivate_source,
  sit.deactivate_reasons as sit_deactivate_reasons, sit.created_at as sit_created_at,
  sit.updated_at as sit_updated_at
"""


class PostgresSession:
    """Store operations bound to one connection inside one transaction."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    # approved / rejected items

    async def get_approved_item_by_external_id(self, external_id: str) -> ApprovedItemRecord | None:
        if not _is_uuid(external_id):
            return None
        row = await self._conn.fetchrow(
            f"select {_APPROVED_ITEM_COLUMNS} from approved_items ai where ai.external_id = $1::uuid",
            external_id,
        )
        return _approved_item_from_row(row) if row else None

    async def get_approved_item_by_id(self, item_id: int) -> ApprovedItemRecord | None:
        row = await self._conn.fetchrow(
            f"select {_APPROVED_ITEM_COLUMNS} from approved_items ai where ai.id = $1",
            item_id,
        )
        return _approved_item_from_row(row) if row else None

    async def find_corpus_url(self, url: str) -> str | None:
        return await self._conn.fetchval(
            """
            select 'approved' from approved_items where url = $1
            union all
            select 'rejected' from rejected_items where url = $1
            limit 1
            """,
            url,
        )

    async def get_approved_item_by_url(self, url: str) -> ApprovedItemRecord | None:
        row = await self._conn.fetchrow(
            f"select {_APPROVED_ITEM_COLUMNS} from approved_items ai where ai.url = $1",
            url,
        )
        return _approved_item_from_row(row) if row else None

    async def list_approved_items(
        self,
        *,
        filters: ApprovedItemFilter,
        limit: int,
        offset: int,
    ) -> RecordPage[ApprovedItemRecord]:
        conditions: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        for column in ("language", "status", "topic"):
            value = getattr(filters, column)
            if value is not None:
                conditions.append(f"ai.{column} = {bind(value)}")
        for column in ("title", "url", "excerpt", "publisher"):
            value = getattr(filters, column)
            if value is not None:
                conditions.append(f"ai.{column} ilike {bind(_contains_pattern(value))}")
        if filters.author is not None:
            conditions.append(
                "exists (select 1 from jsonb_array_elements(ai.authors) as author(entry) "
                f"where author.entry->>'name' ilike {bind(_contains_pattern(filters.author))})"
            )

        where_sql = " and ".join(conditions) if conditions else "true"
        total = await self._conn.fetchval(f"select count(*)::int from approved_items ai where {where_sql}", *params)
        limit_token = bind(limit)
        offset_token = bind(offset)
        rows = await self._conn.fetch(
            f"""
            select {_APPROVED_ITEM_COLUMNS}
            from approved_items ai
            where {where_sql}
            order by ai.created_at desc, ai.id desc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return RecordPage(
            items=[_approved_item_from_row(row) for row in rows],
            total_count=int(total or 0),
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
        conditions: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        for column in ("language", "topic"):
            value = getattr(filters, column)
            if value is not None:
                conditions.append(f"{column} = {bind(value)}")
        for column in ("title", "url"):
            value = getattr(filters, column)
            if value is not None:
                conditions.append(f"{column} ilike {bind(_contains_pattern(value))}")

        where_sql = " and ".join(conditions) if conditions else "true"
        total = await self._conn.fetchval(f"select count(*)::int from rejected_items where {where_sql}", *params)
        limit_token = bind(limit)
        offset_token = bind(offset)
        rows = await self._conn.fetch(
            f"""
            select
              id, external_id::text as external_id, prospect_id, url, title, topic, language,
              publisher, reason, created_at, created_by
            from rejected_items
            where {where_sql}
            order by created_at desc, id desc
            limit {limit_token}
            offset {offset_token}
            """,
            *params,
        )
        return RecordPage(
            items=[_rejected_item_from_row(row) for row in rows],
            total_count=int(total or 0),
            limit=limit,
            offset=offset,
        )

    async def insert_approved_item(self, record: ApprovedItemRecord) -> ApprovedItemRecord:
        try:
            await self._claim_url(record.url, record.created_at)
            record.id = await self._conn.fetchval(
                """
                insert into approved_items (
                  external_id, prospect_id, url, domain_name, title, excerpt, status, language,
                  publisher, image_url, topic, source, grade, is_collection, is_syndicated,
                  is_time_sensitive, date_published, authors, created_at, created_by
                )
                values (
                  $1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15,
                  $16, $17, $18::jsonb, $19, $20
                )
                returning id
                """,
                record.external_id,
                record.prospect_id,
                record.url,
                record.domain_name,
                record.title,
                record.excerpt,
                record.status,
                record.language,
                record.publisher,
                record.image_url,
                record.topic,
                record.source,
                record.grade,
                record.is_collection,
                record.is_syndicated,
                record.is_time_sensitive,
                record.date_published,
                _dump_authors(record.authors),
                record.created_at,
                record.created_by,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(exc.constraint_name or "approved_items") from exc
        return record

    async def update_approved_item(self, record: ApprovedItemRecord) -> ApprovedItemRecord:
        await self._conn.execute(
            """
            update approved_items
            set
              title = $2, excerpt = $3, status = $4, language = $5, publisher = $6,
              image_url = $7, topic = $8, grade = $9, is_time_sensitive = $10,
              date_published = $11, authors = $12::jsonb, updated_at = $13, updated_by = $14
            where id = $1
            """,
            record.id,
            record.title,
            record.excerpt,
            record.status,
            record.language,
            record.publisher,
            record.image_url,
            record.topic,
            record.grade,
            record.is_time_sensitive,
            record.date_published,
            _dump_authors(record.authors),
            record.updated_at,
            record.updated_by,
        )
        return record

    async def delete_approved_item(self, item_id: int) -> None:
        await self._conn.execute(
            """
            with removed as (delete from approved_items where id = $1 returning url)
            delete from corpus_urls where url in (select url from removed)
            """,
            item_id,
        )

    async def insert_rejected_item(self, record: RejectedItemRecord) -> RejectedItemRecord:
        try:
            await self._claim_url(record.url, record.created_at)
            record.id = await self._conn.fetchval(
                """
                insert into rejected_items (
                  external_id, prospect_id, url, title, topic, language, publisher, reason,
                  created_at, created_by
                )
                values ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10)
                returning id
                """,
                record.external_id,
                record.prospect_id,
                record.url,
                record.title,
                record.topic,
                record.language,
                record.publisher,
                ",".join(record.reason),
                record.created_at,
                record.created_by,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(exc.constraint_name or "rejected_items") from exc
        return record

    async def _claim_url(self, url: str, at: datetime) -> None:
        await self._conn.execute("insert into corpus_urls (url, created_at) values ($1, $2)", url, at)

    # scheduled items

    async def get_scheduled_item(self, external_id: str) -> ScheduledItemRecord | None:
        if not _is_uuid(external_id):
            return None
        row = await self._conn.fetchrow(
            f"""
            select {_SCHEDULED_ITEM_COLUMNS}, {_APPROVED_ITEM_COLUMNS}
            from scheduled_items si
            join approved_items ai on ai.id = si.approved_item_id
            where si.external_id = $1::uuid
            """,
            external_id,
        )
        return _scheduled_item_from_row(row) if row else None

    async def get_scheduled_item_for_slot(
        self,
        *,
        approved_item_id: int,
        scheduled_surface_guid: str,
        scheduled_date: date,
    ) -> ScheduledItemRecord | None:
        row = await self._conn.fetchrow(
            f"""
            select {_SCHEDULED_ITEM_COLUMNS}, {_APPROVED_ITEM_COLUMNS}
            from scheduled_items si
            join approved_items ai on ai.id = si.approved_item_id
            where si.approved_item_id = $1
              and si.scheduled_surface_guid = $2
              and si.scheduled_date = $3
            """,
            approved_item_id,
            scheduled_surface_guid,
            scheduled_date,
        )
        return _scheduled_item_from_row(row) if row else None

    async def insert_scheduled_item(self, record: ScheduledItemRecord) -> ScheduledItemRecord:
        try:
            record.id = await self._conn.fetchval(
                """
                insert into scheduled_items (
                  external_id, approved_item_id, scheduled_surface_guid, scheduled_date, source,
                  created_at, created_by, updated_at, updated_by
                )
                values ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9)
                returning id
                """,
                record.external_id,
                record.approved_item_id,
                record.scheduled_surface_guid,
                record.scheduled_date,
                record.source,
                record.created_at,
                record.created_by,
                record.updated_at,
                record.updated_by,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(exc.constraint_name or "scheduled_items") from exc
        if record.approved_item is None:
            record.approved_item = await self.get_approved_item_by_id(record.approved_item_id)
        return record

    async def delete_scheduled_item(self, item_id: int) -> None:
        await self._conn.execute("delete from scheduled_items where id = $1", item_id)

    async def list_scheduled_items(
        self,
        *,
        scheduled_surface_guid: str,
        start_date: date,
        end_date: date,
    ) -> list[ScheduledItemRecord]:
        rows = await self._conn.fetch(
            f"""
            select {_SCHEDULED_ITEM_COLUMNS}, {_APPROVED_ITEM_COLUMNS}
            from scheduled_items si
            join approved_items ai on ai.id = si.approved_item_id
            where si.scheduled_surface_guid = $1
              and si.scheduled_date >= $2
              and si.scheduled_date <= $3
            order by si.scheduled_date asc, si.updated_at asc, si.id asc
            """,
            scheduled_surface_guid,
            start_date,
            end_date,
        )
        return [_scheduled_item_from_row(row) for row in rows]

    async def count_scheduled_items_for_approved_item(self, approved_item_id: int) -> int:
        count = await self._conn.fetchval(
            "select count(*) from scheduled_items where approved_item_id = $1",
            approved_item_id,
        )
        return int(count or 0)

    async def has_scheduled_item_for_domain_before(self, *, domain_name: str, before: date) -> bool:
        return bool(
            await self._conn.fetchval(
                """
                select exists (
                  select 1
                  from scheduled_items si
                  join approved_items ai on ai.id = si.approved_item_id
                  where ai.domain_name = $1
                    and si.scheduled_date < $2
                )
                """,
                domain_name,
                before,
            )
        )

    async def list_scheduled_items_for_approved_item(
        self,
        approved_item_id: int,
        *,
        scheduled_surface_guid: str | None,
        limit: int,
    ) -> list[ScheduledItemRecord]:
        rows = await self._conn.fetch(
            f"""
            select {_SCHEDULED_ITEM_COLUMNS}, {_APPROVED_ITEM_COLUMNS}
            from scheduled_items si
            join approved_items ai on ai.id = si.approved_item_id
            where si.approved_item_id = $1
              and ($2::text is null or si.scheduled_surface_guid = $2)
            order by si.scheduled_date desc, si.id desc
            limit $3
            """,
            approved_item_id,
            scheduled_surface_guid,
            limit,
        )
        return [_scheduled_item_from_row(row) for row in rows]

    # schedule reviews

    async def get_schedule_review(
        self,
        *,
        scheduled_surface_guid: str,
        scheduled_date: date,
    ) -> ScheduleReviewRecord | None:
        row = await self._conn.fetchrow(
            """
            select id, scheduled_surface_guid, scheduled_date, reviewed_by, reviewed_at
            from schedule_reviews
            where scheduled_surface_guid = $1 and scheduled_date = $2
            """,
            scheduled_surface_guid,
            scheduled_date,
        )
        return _schedule_review_from_row(row) if row else None

    async def insert_schedule_review(self, record: ScheduleReviewRecord) -> ScheduleReviewRecord:
        try:
            record.id = await self._conn.fetchval(
                """
                insert into schedule_reviews (scheduled_surface_guid, scheduled_date, reviewed_by, reviewed_at)
                values ($1, $2, $3, $4)
                returning id
                """,
                record.scheduled_surface_guid,
                record.scheduled_date,
                record.reviewed_by,
                record.reviewed_at,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(exc.constraint_name or "schedule_reviews") from exc
        return record

    async def list_schedule_reviews(
        self,
        *,
        scheduled_surface_guid: str,
        start_date: date,
        end_date: date,
    ) -> list[ScheduleReviewRecord]:
        rows = await self._conn.fetch(
            """
            select id, scheduled_surface_guid, scheduled_date, reviewed_by, reviewed_at
            from schedule_reviews
            where scheduled_surface_guid = $1 and scheduled_date >= $2 and scheduled_date <= $3
            order by scheduled_date asc
            """,
            scheduled_surface_guid,
            start_date,
            end_date,
        )
        return [_schedule_review_from_row(row) for row in rows]

    # domain policy

    async def is_excluded_domain(self, domain_name: str) -> bool:
        return bool(
            await self._conn.fetchval(
                "select exists (select 1 from excluded_domains where domain_name = $1)",
                domain_name,
            )
        )

    async def insert_excluded_domain(self, record: ExcludedDomainRecord) -> ExcludedDomainRecord:
        try:
            await self._conn.execute(
                "insert into excluded_domains (domain_name, created_at, created_by) values ($1, $2, $3)",
                record.domain_name,
                record.created_at,
                record.created_by,
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(exc.constraint_name or "excluded_domains") from exc
        return record

    async def delete_excluded_domain(self, domain_name: str) -> bool:
        result = await self._conn.execute("delete from excluded_domains where domain_name = $1", domain_name)
        return result != "DELETE 0"

    async def get_trusted_domain(self, domain_name: str) -> TrustedDomainRecord | None:
        row = await self._conn.fetchrow(
            "select domain_name, created_at from trusted_domains where domain_name = $1",
            domain_name,
        )
        return TrustedDomainRecord(domain_name=row["domain_name"], created_at=row["created_at"]) if row else None

    async def insert_trusted_domain_if_absent(self, record: TrustedDomainRecord) -> TrustedDomainRecord:
        await self._conn.execute(
            """
            insert into trusted_domains (domain_name, created_at)
            values ($1, $2)
            on conflict (domain_name) do nothing
            """,
            record.domain_name,
            record.created_at,
        )
        existing = await self.get_trusted_domain(record.domain_name)
        return existing or record

    async def get_publisher_domain(self, domain_name: str) -> PublisherDomainRecord | None:
        row = await self._conn.fetchrow(
            """
            select domain_name, publisher, created_at, created_by, updated_at, updated_by
            from publisher_domains
            where domain_name = $1
            """,
            domain_name,
        )
        return _publisher_domain_from_row(row) if row else None

    async def upsert_publisher_domain(self, record: PublisherDomainRecord) -> PublisherDomainRecord:
        row = await self._conn.fetchrow(
            """
            insert into publisher_domains (domain_name, publisher, created_at, created_by)
            values ($1, $2, $3, $4)
            on conflict (domain_name) do update
            set publisher = excluded.publisher, updated_at = $3, updated_by = $4
            returning domain_name, publisher, created_at, created_by, updated_at, updated_by
            """,
            record.domain_name,
            record.publisher,
            record.created_at,
            record.created_by,
        )
        return _publisher_domain_from_row(row)

    # sections

    async def get_section(self, external_id: str) -> SectionRecord | None:
        row = await self._conn.fetchrow(
            f"select {_SECTION_COLUMNS} from sections where external_id = $1",
            external_id,
        )
        return _section_from_row(row) if row else None

    async def get_section_by_id(self, section_id: int) -> SectionRecord | None:
        row = await self._conn.fetchrow(f"select {_SECTION_COLUMNS} from sections where id = $1", section_id)
        return _section_from_row(row) if row else None

    async def insert_section(self, record: SectionRecord) -> SectionRecord:
        try:
            record.id = await self._conn.fetchval(
                """
                insert into sections (
                  external_id, title, scheduled_surface_guid, create_source, sort, active, disabled,
                  deactivate_source, deactivated_at, description, hero_title, hero_description,
                  start_date, end_date, iab, created_at, created_by, updated_at, updated_by
                )
                values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15::jsonb, $16, $17, $18, $19)
                returning id
                """,
                *_section_params(record),
            )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryUniqueViolationError(exc.constraint_name or "sections") from exc
        return record

    async def update_section(self, record: SectionRecord) -> SectionRecord:
        await self._conn.execute(
            """
            update sections
            set
              title = $2, scheduled_surface_guid = $3, create_source = $4, sort = $5, active = $6,
              disabled = $7, deactivate_source = $8, deactivated_at = $9, description = $10,
              hero_title = $11, hero_description = $12, start_date = $13, end_date = $14,
              iab = $15::jsonb, updated_at = $16, updated_by = $17
            where external_id = $1
            """,
            *_section_params(record)[:15],
            record.updated_at,
            record.updated_by,
        )
        return record

    async def list_sections(
        self,
        *,
        scheduled_surface_guid: str,
        active_only: bool = True,
        create_source: str | None = None,
    ) -> list[SectionRecord]:
        rows = await self._conn.fetch(
            f"""
            select {_SECTION_COLUMNS}
            from sections
            where scheduled_surface_guid = $1
              and ($2::boolean is false or active = true)
              and ($3::text is null or create_source = $3)
            order by sort asc nulls last, id asc
            """,
            scheduled_surface_guid,
            active_only,
            create_source,
        )
        return [_section_from_row(row) for row in rows]

    # section items

    async def get_section_item(self, external_id: str) -> SectionItemRecord | None:
        if not _is_uuid(external_id):
            return None
        row = await self._conn.fetchrow(
            f"""
            select {_SECTION_ITEM_COLUMNS}, {_APPROVED_ITEM_COLUMNS}
            from section_items sit
            join approved_items ai on ai.id = sit.approved_item_id
            where sit.external_id = $1::uuid
            """,
            external_id,
        )
        return _section_item_from_row(row) if row else None

    async def insert_section_item(self, record: SectionItemRecord) -> SectionItemRecord:
        record.id = await self._conn.fetchval(
            """
            insert into section_items (
              external_id, section_id, approved_item_id, rank, active, deactivated_at,
              deactivate_source, deactivate_reasons, created_at, updated_at
            )
            values ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            returning id
            """,
            record.external_id,
            record.section_id,
            record.approved_item_id,
            record.rank,
            record.active,
            record.deactivated_at,
            record.deactivate_source,
            record.deactivate_reasons,
            record.created_at,
            record.updated_at,
        )
        if record.approved_item is None:
            record.approved_item = await self.get_approved_item_by_id(record.approved_item_id)
        return record

    async def update_section_item(self, record: SectionItemRecord) -> SectionItemRecord:
        await self._conn.execute(
            """
            update section_items
            set rank = $2, active = $3, deactivated_at = $4, deactivate_source = $5,
                deactivate_reasons = $6, updated_at = $7
            where id = $1
            """,
            record.id,
            record.rank,
            record.active,
            record.deactivated_at,
            record.deactivate_source,
            record.deactivate_reasons,
            record.updated_at,
        )
        return record

    async def list_section_items(self, section_id: int, *, active_only: bool = True) -> list[SectionItemRecord]:
        rows = await self._conn.fetch(
            f"""
            select {_SECTION_ITEM_COLUMNS}, {_APPROVED_ITEM_COLUMNS}
            from section_items sit
            join approved_items ai on ai.id = sit.approved_item_id
            where sit.section_id = $1
              and ($2::boolean is false or sit.active = true)
            order by sit.rank asc nulls last, sit.id asc
            """,
            section_id,
            active_only,
        )
        return [_section_item_from_row(row) for row in rows]

    async def deactivate_section_items(self, section_id: int, *, source: str, at: datetime) -> int:
        result = await self._conn.execute(
            """
            update section_items
            set active = false, deactivate_source = $2, deactivated_at = $3, updated_at = $3
            where section_id = $1 and active = true
            """,
            section_id,
            source,
            at,
        )
        return _affected_rows(result)

    async def delete_section_items_for_approved_item(self, approved_item_id: int) -> int:
        result = await self._conn.execute(
            "delete from section_items where approved_item_id = $1",
            approved_item_id,
        )
        return _affected_rows(result)


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PostgresSession]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresSession(conn)

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("CC_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc


def _is_uuid(value: str) -> bool:
    try:
        UUID(value)
    except (TypeError, ValueError):
        return False
    return True


def _affected_rows(command_tag: str) -> int:
    try:
        return int(command_tag.rsplit(" ", maxsplit=1)[-1])
    except (AttributeError, ValueError):
        return 0


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


def _dump_authors(authors: list[ApprovedItemAuthor]) -> str:
    return json.dumps([{"name": author.name, "sort_order": author.sort_order} for author in authors])


def _load_authors(value: Any) -> list[ApprovedItemAuthor]:
    payload = _load_json(value)
    if not isinstance(payload, list):
        return []
    authors = [
        ApprovedItemAuthor(name=str(item.get("name", "")), sort_order=int(item.get("sort_order", 0)))
        for item in payload
        if isinstance(item, dict)
    ]
    return sorted(authors, key=lambda author: author.sort_order)


def _approved_item_from_row(row: asyncpg.Record) -> ApprovedItemRecord:
    return ApprovedItemRecord(
        id=row["id"],
        external_id=row["external_id"],
        prospect_id=row["prospect_id"],
        url=row["url"],
        domain_name=row["domain_name"],
        title=row["title"],
        excerpt=row["excerpt"],
        status=row["status"],
        language=row["language"],
        publisher=row["publisher"],
        image_url=row["image_url"],
        topic=row["topic"],
        source=row["source"],
        grade=row["grade"],
        is_collection=bool(row["is_collection"]),
        is_syndicated=bool(row["is_syndicated"]),
        is_time_sensitive=bool(row["is_time_sensitive"]),
        date_published=row["date_published"],
        authors=_load_authors(row["authors"]),
        created_at=row["created_at"],
        created_by=row["created_by"],
        updated_at=row["updated_at"],
        updated_by=row["updated_by"],
    )


def _contains_pattern(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _rejected_item_from_row(row: asyncpg.Record) -> RejectedItemRecord:
    return RejectedItemRecord(
        id=row["id"],
        external_id=row["external_id"],
        prospect_id=row["prospect_id"],
        url=row["url"],
        title=row["title"],
        topic=row["topic"],
        language=row["language"],
        publisher=row["publisher"],
        reason=[code for code in (row["reason"] or "").split(",") if code],
        created_at=row["created_at"],
        created_by=row["created_by"],
    )


def _scheduled_item_from_row(row: asyncpg.Record) -> ScheduledItemRecord:
    return ScheduledItemRecord(
        id=row["si_id"],
        external_id=row["si_external_id"],
        approved_item_id=row["si_approved_item_id"],
        scheduled_surface_guid=row["si_scheduled_surface_guid"],
        scheduled_date=row["si_scheduled_date"],
        source=row["si_source"],
        created_at=row["si_created_at"],
        created_by=row["si_created_by"],
        updated_at=row["si_updated_at"],
        updated_by=row["si_updated_by"],
        approved_item=_approved_item_from_row(row),
    )


def _schedule_review_from_row(row: asyncpg.Record) -> ScheduleReviewRecord:
    return ScheduleReviewRecord(
        id=row["id"],
        scheduled_surface_guid=row["scheduled_surface_guid"],
        scheduled_date=row["scheduled_date"],
        reviewed_by=row["reviewed_by"],
        reviewed_at=row["reviewed_at"],
    )


def _publisher_domain_from_row(row: asyncpg.Record) -> PublisherDomainRecord:
    return PublisherDomainRecord(
        domain_name=row["domain_name"],
        publisher=row["publisher"],
        created_at=row["created_at"],
        created_by=row["created_by"],
        updated_at=row["updated_at"],
        updated_by=row["updated_by"],
    )


def _section_params(record: SectionRecord) -> tuple[Any, ...]:
    iab = (
        json.dumps({"taxonomy": record.iab.taxonomy, "categories": record.iab.categories})
        if record.iab is not None
        else None
    )
    return (
        record.external_id,
        record.title,
        record.scheduled_surface_guid,
        record.create_source,
        record.sort,
        record.active,
        record.disabled,
        record.deactivate_source,
        record.deactivated_at,
        record.description,
        record.hero_title,
        record.hero_description,
        record.start_date,
        record.end_date,
        iab,
        record.created_at,
        record.created_by,
        record.updated_at,
        record.updated_by,
    )


def _section_from_row(row: asyncpg.Record) -> SectionRecord:
    iab_payload = _load_json(row["iab"])
    iab = None
    if isinstance(iab_payload, dict) and iab_payload.get("taxonomy"):
        iab = IABMetadata(
            taxonomy=str(iab_payload["taxonomy"]),
            categories=[str(code) for code in iab_payload.get("categories") or []],
        )
    return SectionRecord(
        id=row["id"],
        external_id=row["external_id"],
        title=row["title"],
        scheduled_surface_guid=row["scheduled_surface_guid"],
        create_source=row["create_source"],
        sort=row["sort"],
        active=bool(row["active"]),
        disabled=bool(row["disabled"]),
        deactivate_source=row["deactivate_source"],
        deactivated_at=row["deactivated_at"],
        description=row["description"],
        hero_title=row["hero_title"],
        hero_description=row["hero_description"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        iab=iab,
        created_at=row["created_at"],
        created_by=row["created_by"],
        updated_at=row["updated_at"],
        updated_by=row["updated_by"],
    )


def _section_item_from_row(row: asyncpg.Record) -> SectionItemRecord:
    return SectionItemRecord(
        id=row["sit_id"],
        external_id=row["sit_external_id"],
        section_id=row["sit_section_id"],
        approved_item_id=row["sit_approved_item_id"],
        rank=row["sit_rank"],
        active=bool(row["sit_active"]),
        deactivated_at=row["sit_deactivated_at"],
        deactivate_source=row["sit_deactivate_source"],
        deactivate_reasons=list(row["sit_deactivate_reasons"] or []),
        created_at=row["sit_created_at"],
        updated_at=row["sit_updated_at"],
        approved_item=_approved_item_from_row(row),
    )
