from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from curated_corpus.core.registry import ActivitySource, SectionStatus
from curated_corpus.schemas.corpus import ApprovedItemOut


class IABMetadataIn(BaseModel):
    taxonomy: str = Field(min_length=1)
    categories: list[str] = Field(default_factory=list)


class IABMetadataOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    taxonomy: str
    categories: list[str] = Field(default_factory=list)


class SectionUpsertRequest(BaseModel):
    title: str = Field(min_length=1)
    scheduled_surface_guid: str = Field(min_length=1)
    create_source: ActivitySource
    sort: int | None = None
    active: bool = True
    description: str | None = None
    iab: IABMetadataIn | None = None


class CustomSectionRequest(BaseModel):
    title: str = Field(min_length=1)
    scheduled_surface_guid: str = Field(min_length=1)
    description: str = Field(min_length=1)
    start_date: date
    end_date: date | None = None
    create_source: ActivitySource
    hero_title: str | None = None
    hero_description: str | None = None
    iab: IABMetadataIn | None = None
    sort: int | None = None
    active: bool = True


class SectionDisabledPatchRequest(BaseModel):
    disabled: bool


class SectionItemCreateRequest(BaseModel):
    section_external_id: str = Field(min_length=1)
    approved_item_external_id: str = Field(min_length=1)
    rank: int | None = None


class SectionItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    rank: int | None = None
    active: bool
    deactivated_at: datetime | None = None
    deactivate_source: str | None = None
    deactivate_reasons: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    approved_item: ApprovedItemOut | None = None


class SectionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: str
    title: str
    scheduled_surface_guid: str
    create_source: str
    sort: int | None = None
    active: bool
    disabled: bool
    status: SectionStatus
    deactivate_source: str | None = None
    deactivated_at: datetime | None = None
    description: str | None = None
    hero_title: str | None = None
    hero_description: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    iab: IABMetadataOut | None = None
    created_at: datetime
    updated_at: datetime
    section_items: list[SectionItemOut] = Field(default_factory=list)
