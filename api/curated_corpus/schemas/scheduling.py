from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from curated_corpus.core.registry import ActivitySource
from curated_corpus.schemas.corpus import ApprovedItemOut


class ScheduledItemCreateRequest(BaseModel):
    approved_item_external_id: str = Field(min_length=1)
    scheduled_surface_guid: str = Field(min_length=1)
    scheduled_date: date
    source: ActivitySource
    reasons: str | None = None
    reason_comment: str | None = None


class ScheduledItemRescheduleRequest(BaseModel):
    scheduled_date: date
    source: ActivitySource


class ScheduledItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    scheduled_surface_guid: str
    scheduled_date: date
    source: str
    created_at: datetime
    created_by: str
    updated_at: datetime
    updated_by: str | None = None
    approved_item: ApprovedItemOut | None = None


class ScheduleReviewRequest(BaseModel):
    scheduled_surface_guid: str = Field(min_length=1)
    scheduled_date: date


class ScheduleReviewOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scheduled_surface_guid: str
    scheduled_date: date
    reviewed_by: str
    reviewed_at: datetime


class ScheduledDayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scheduled_date: date
    total_count: int
    collection_count: int
    syndicated_count: int
    items: list[ScheduledItemOut] = Field(default_factory=list)
    review: ScheduleReviewOut | None = None


class ScheduledSurfaceHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    scheduled_surface_guid: str
    scheduled_date: date
    created_by: str


class ScheduledSurfaceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    guid: str
    name: str
    iana_timezone: str


class ScheduledSurfaceItemOut(BaseModel):
    """Public view of one assignment on a surface."""

    id: str
    surface_id: str
    scheduled_date: date
    corpus_item: ApprovedItemOut
