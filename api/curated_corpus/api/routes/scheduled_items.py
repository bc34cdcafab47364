from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status

from curated_corpus.api.errors import http_error, mark_event_delivery, require_surface_access
from curated_corpus.core.security import get_curator_principal
from curated_corpus.schemas.corpus import ApprovedItemOut
from curated_corpus.schemas.scheduling import (
    ScheduledDayOut,
    ScheduledItemCreateRequest,
    ScheduledItemOut,
    ScheduledItemRescheduleRequest,
    ScheduledSurfaceItemOut,
    ScheduledSurfaceOut,
    ScheduleReviewOut,
    ScheduleReviewRequest,
)
from curated_corpus.services.engine import CorpusEngine, get_engine
from curated_corpus.services.repository import RepositoryError

router = APIRouter()
reviews_router = APIRouter()
surfaces_router = APIRouter()


@router.get("", response_model=list[ScheduledDayOut])
async def list_scheduled_items(
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    scheduled_surface_guid: str = Query(min_length=1),
    start_date: date = Query(),
    end_date: date = Query(),
) -> list[ScheduledDayOut]:
    try:
        days = await engine.scheduling.list_scheduled_items(
            scheduled_surface_guid=scheduled_surface_guid,
            start_date=start_date,
            end_date=end_date,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return [ScheduledDayOut.model_validate(day) for day in days]


@router.post("", response_model=ScheduledItemOut, status_code=status.HTTP_201_CREATED)
async def create_scheduled_item(
    payload: ScheduledItemCreateRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> ScheduledItemOut:
    require_surface_access(principal, payload.scheduled_surface_guid)
    try:
        result = await engine.scheduling.create_scheduled_item(
            approved_item_external_id=payload.approved_item_external_id,
            scheduled_surface_guid=payload.scheduled_surface_guid,
            scheduled_date=payload.scheduled_date,
            source=payload.source,
            actor=principal.actor_id,
            reasons=payload.reasons,
            comment=payload.reason_comment,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return ScheduledItemOut.model_validate(result.record)


@router.delete("/{external_id}", response_model=ScheduledItemOut)
async def delete_scheduled_item(
    external_id: str,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    reasons: str | None = Query(default=None),
    reason_comment: str | None = Query(default=None),
) -> ScheduledItemOut:
    try:
        existing = await engine.scheduling.get_scheduled_item(external_id=external_id)
        require_surface_access(principal, existing.scheduled_surface_guid)
        result = await engine.scheduling.delete_scheduled_item(
            external_id=external_id,
            actor=principal.actor_id,
            reasons=reasons,
            comment=reason_comment,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return ScheduledItemOut.model_validate(result.record)


@router.post("/{external_id}/reschedule", response_model=ScheduledItemOut)
async def reschedule_scheduled_item(
    external_id: str,
    payload: ScheduledItemRescheduleRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> ScheduledItemOut:
    try:
        existing = await engine.scheduling.get_scheduled_item(external_id=external_id)
        require_surface_access(principal, existing.scheduled_surface_guid)
        result = await engine.scheduling.reschedule_scheduled_item(
            external_id=external_id,
            scheduled_date=payload.scheduled_date,
            source=payload.source,
            actor=principal.actor_id,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return ScheduledItemOut.model_validate(result.record)


@reviews_router.post("", response_model=ScheduleReviewOut, status_code=status.HTTP_201_CREATED)
async def create_schedule_review(
    payload: ScheduleReviewRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> ScheduleReviewOut:
    require_surface_access(principal, payload.scheduled_surface_guid)
    try:
        result = await engine.reviews.mark_reviewed(
            scheduled_surface_guid=payload.scheduled_surface_guid,
            scheduled_date=payload.scheduled_date,
            actor=principal.actor_id,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return ScheduleReviewOut.model_validate(result.record)


@surfaces_router.get("", response_model=list[ScheduledSurfaceOut])
async def list_scheduled_surfaces_for_user(
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> list[ScheduledSurfaceOut]:
    surfaces = engine.scheduling.scheduled_surfaces_for_user(principal)
    return [
        ScheduledSurfaceOut(guid=surface.guid, name=surface.name, iana_timezone=surface.iana_timezone)
        for surface in surfaces
    ]


@surfaces_router.get("/{scheduled_surface_guid}/items", response_model=list[ScheduledSurfaceItemOut])
async def get_items_for_scheduled_surface(
    scheduled_surface_guid: str,
    engine: CorpusEngine = Depends(get_engine),
    scheduled_date: date = Query(alias="date"),
) -> list[ScheduledSurfaceItemOut]:
    try:
        records = await engine.scheduling.get_items_for_scheduled_surface(
            scheduled_surface_guid=scheduled_surface_guid,
            scheduled_date=scheduled_date,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return [
        ScheduledSurfaceItemOut(
            id=record.external_id,
            surface_id=record.scheduled_surface_guid,
            scheduled_date=record.scheduled_date,
            corpus_item=ApprovedItemOut.model_validate(record.approved_item),
        )
        for record in records
    ]
