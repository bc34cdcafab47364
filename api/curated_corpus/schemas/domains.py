from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class PublisherDomainUpsertRequest(BaseModel):
    publisher: str = Field(min_length=1)


class PublisherDomainOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    domain_name: str
    publisher: str
    created_at: datetime
    created_by: str
    updated_at: datetime | None = None
    updated_by: str | None = None


class ExcludedDomainOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    domain_name: str
    created_at: datetime
    created_by: str | None = None
