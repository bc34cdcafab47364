from dataclasses import asdict
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status

from curated_corpus.api.errors import (
    http_error,
    mark_event_delivery,
    require_surface_access,
)
from curated_corpus.core.registry import ActivitySource
from curated_corpus.core.security import get_curator_principal
from curated_corpus.schemas.sections import (
    CustomSectionRequest,
    IABMetadataIn,
    SectionDisabledPatchRequest,
    SectionItemCreateRequest,
    SectionItemOut,
    SectionOut,
    SectionUpsertRequest,
)
from curated_corpus.services.engine import CorpusEngine, get_engine
from curated_corpus.services.repository import IABMetadata, RepositoryError, SectionRecord
from curated_corpus.services.sections import compute_section_status

router = APIRouter()
items_router = APIRouter()


def _section_out(section: SectionRecord, now: datetime) -> SectionOut:
    payload = asdict(section)
    payload["status"] = compute_section_status(section, now)
    return SectionOut.model_validate(payload)


def _iab(payload: IABMetadataIn | None) -> IABMetadata | None:
    if payload is None:
        return None
    return IABMetadata(taxonomy=payload.taxonomy, categories=list(payload.categories))


@router.get("", response_model=list[SectionOut])
async def list_sections(
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    scheduled_surface_guid: str = Query(min_length=1),
    public: bool = Query(default=False),
    create_source: ActivitySource | None = Query(default=None),
) -> list[SectionOut]:
    try:
        sections = await engine.sections.list_sections(
            scheduled_surface_guid=scheduled_surface_guid,
            public=public,
            create_source=create_source,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return [_section_out(section, engine.sections.clock()) for section in sections]


@router.put("/{external_id}", response_model=SectionOut)
async def create_or_replace_section(
    external_id: str,
    payload: SectionUpsertRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> SectionOut:
    require_surface_access(principal, payload.scheduled_surface_guid)
    try:
        result = await engine.sections.create_or_replace_section(
            external_id=external_id,
            title=payload.title,
            scheduled_surface_guid=payload.scheduled_surface_guid,
            create_source=payload.create_source,
            actor=principal.actor_id,
            sort=payload.sort,
            active=payload.active,
            description=payload.description,
            iab=_iab(payload.iab),
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return _section_out(result.record, engine.sections.clock())


@router.post("/custom", response_model=SectionOut, status_code=status.HTTP_201_CREATED)
async def create_custom_section(
    payload: CustomSectionRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> SectionOut:
    require_surface_access(principal, payload.scheduled_surface_guid)
    try:
        result = await engine.sections.create_custom_section(
            title=payload.title,
            scheduled_surface_guid=payload.scheduled_surface_guid,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            create_source=payload.create_source,
            actor=principal.actor_id,
            hero_title=payload.hero_title,
            hero_description=payload.hero_description,
            iab=_iab(payload.iab),
            sort=payload.sort,
            active=payload.active,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return _section_out(result.record, engine.sections.clock())


@router.patch("/custom/{external_id}", response_model=SectionOut)
async def update_custom_section(
    external_id: str,
    payload: CustomSectionRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> SectionOut:
    require_surface_access(principal, payload.scheduled_surface_guid)
    try:
        result = await engine.sections.update_custom_section(
            external_id=external_id,
            title=payload.title,
            scheduled_surface_guid=payload.scheduled_surface_guid,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            create_source=payload.create_source,
            actor=principal.actor_id,
            hero_title=payload.hero_title,
            hero_description=payload.hero_description,
            iab=_iab(payload.iab),
            sort=payload.sort,
            active=payload.active,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return _section_out(result.record, engine.sections.clock())


@router.delete("/custom/{external_id}", response_model=SectionOut)
async def delete_custom_section(
    external_id: str,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> SectionOut:
    try:
        existing = await engine.sections.get_section(external_id=external_id)
        require_surface_access(principal, existing.scheduled_surface_guid)
        result = await engine.sections.delete_custom_section(external_id=external_id, actor=principal.actor_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return _section_out(result.record, engine.sections.clock())


@router.patch("/{external_id}/disabled", response_model=SectionOut)
async def patch_section_disabled(
    external_id: str,
    payload: SectionDisabledPatchRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> SectionOut:
    try:
        existing = await engine.sections.get_section(external_id=external_id)
        require_surface_access(principal, existing.scheduled_surface_guid)
        result = await engine.sections.set_section_disabled(
            external_id=external_id,
            disabled=payload.disabled,
            actor=principal.actor_id,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return _section_out(result.record, engine.sections.clock())


@items_router.post("", response_model=SectionItemOut, status_code=status.HTTP_201_CREATED)
async def create_section_item(
    payload: SectionItemCreateRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> SectionItemOut:
    try:
        section = await engine.sections.get_section(external_id=payload.section_external_id)
        require_surface_access(principal, section.scheduled_surface_guid)
        result = await engine.sections.add_section_item(
            section_external_id=payload.section_external_id,
            approved_item_external_id=payload.approved_item_external_id,
            actor=principal.actor_id,
            rank=payload.rank,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return SectionItemOut.model_validate(result.record)


@items_router.delete("/{external_id}", response_model=SectionItemOut)
async def remove_section_item(
    external_id: str,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    deactivate_reasons: list[str] | None = Query(default=None),
) -> SectionItemOut:
    try:
        section = await engine.sections.get_section_for_item(external_id=external_id)
        require_surface_access(principal, section.scheduled_surface_guid)
        result = await engine.sections.remove_section_item(
            external_id=external_id,
            actor=principal.actor_id,
            deactivate_reasons=deactivate_reasons,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return SectionItemOut.model_validate(result.record)
