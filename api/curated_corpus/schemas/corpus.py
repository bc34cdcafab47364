from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from curated_corpus.core.registry import (
    ActivitySource,
    CorpusItemSource,
    CorpusLanguage,
    CuratedStatus,
    Topic,
)


class ApprovedItemAuthorIn(BaseModel):
    name: str = Field(min_length=1)
    sort_order: int = 0


class ApprovedItemAuthorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    sort_order: int


class ApprovedItemCreateRequest(BaseModel):
    url: str = Field(min_length=1)
    title: str = Field(min_length=1)
    excerpt: str = Field(min_length=1)
    status: CuratedStatus
    language: CorpusLanguage
    source: CorpusItemSource
    topic: Topic | None = None
    publisher: str | None = None
    authors: list[ApprovedItemAuthorIn] = Field(default_factory=list)
    image_url: str | None = None
    prospect_id: str | None = None
    grade: str | None = None
    is_collection: bool = False
    is_syndicated: bool = False
    is_time_sensitive: bool = False
    date_published: date | None = None
    scheduled_surface_guid: str | None = None
    scheduled_date: date | None = None
    scheduled_source: ActivitySource | None = None


class ApprovedItemUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1)
    excerpt: str | None = Field(default=None, min_length=1)
    status: CuratedStatus | None = None
    language: CorpusLanguage | None = None
    publisher: str | None = Field(default=None, min_length=1)
    topic: Topic | None = None
    image_url: str | None = None
    grade: str | None = None
    is_time_sensitive: bool | None = None
    date_published: date | None = None
    authors: list[ApprovedItemAuthorIn] | None = None


class ApprovedItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    url: str
    domain_name: str
    title: str
    excerpt: str
    status: str
    language: str
    publisher: str
    topic: str | None = None
    source: str
    authors: list[ApprovedItemAuthorOut] = Field(default_factory=list)
    image_url: str | None = None
    prospect_id: str | None = None
    grade: str | None = None
    is_collection: bool
    is_syndicated: bool
    is_time_sensitive: bool
    date_published: date | None = None
    created_at: datetime
    created_by: str
    updated_at: datetime | None = None
    updated_by: str | None = None


class RejectApprovedItemRequest(BaseModel):
    reason: str = Field(min_length=1, description="Comma-separated rejection reason codes")


class RejectedItemCreateRequest(BaseModel):
    url: str = Field(min_length=1)
    reason: str = Field(min_length=1, description="Comma-separated rejection reason codes")
    title: str | None = None
    topic: Topic | None = None
    language: CorpusLanguage | None = None
    publisher: str | None = None
    prospect_id: str | None = None


class RejectedItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    url: str
    title: str | None = None
    topic: str | None = None
    language: str | None = None
    publisher: str | None = None
    reason: list[str]
    prospect_id: str | None = None
    created_at: datetime
    created_by: str


class TrustedDomainOut(BaseModel):
    external_id: str
    domain_name: str
    has_trusted_domain: bool


class ApprovedItemPageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[ApprovedItemOut]
    total_count: int
    limit: int
    offset: int


class RejectedItemPageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    items: list[RejectedItemOut]
    total_count: int
    limit: int
    offset: int
