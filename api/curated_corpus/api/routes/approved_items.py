from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from curated_corpus.api.errors import (
    http_error,
    mark_event_delivery,
    require_corpus_access,
    require_surface_access,
)
from curated_corpus.core.registry import CorpusLanguage, CuratedStatus, Topic
from curated_corpus.core.security import get_curator_principal
from curated_corpus.schemas.corpus import (
    ApprovedItemCreateRequest,
    ApprovedItemOut,
    ApprovedItemPageOut,
    ApprovedItemUpdateRequest,
    RejectApprovedItemRequest,
    RejectedItemCreateRequest,
    RejectedItemOut,
    RejectedItemPageOut,
    TrustedDomainOut,
)
from curated_corpus.schemas.scheduling import ScheduledItemOut, ScheduledSurfaceHistoryOut
from curated_corpus.services.engine import CorpusEngine, get_engine
from curated_corpus.services.repository import (
    ApprovedItemAuthor,
    ApprovedItemFilter,
    RejectedItemFilter,
    RepositoryError,
)

router = APIRouter()
rejected_router = APIRouter()


class ApprovedItemCreatedOut(ApprovedItemOut):
    scheduled_item: ScheduledItemOut | None = None


@router.post("", response_model=ApprovedItemCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_approved_item(
    payload: ApprovedItemCreateRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> ApprovedItemCreatedOut:
    require_corpus_access(principal)
    if payload.scheduled_surface_guid:
        require_surface_access(principal, payload.scheduled_surface_guid)

    try:
        result = await engine.corpus.create_approved_item(
            url=payload.url,
            title=payload.title,
            excerpt=payload.excerpt,
            status=payload.status,
            language=payload.language,
            source=payload.source,
            actor=principal.actor_id,
            topic=payload.topic,
            publisher=payload.publisher,
            authors=[ApprovedItemAuthor(name=author.name, sort_order=author.sort_order) for author in payload.authors],
            image_url=payload.image_url,
            prospect_id=payload.prospect_id,
            grade=payload.grade,
            is_collection=payload.is_collection,
            is_syndicated=payload.is_syndicated,
            is_time_sensitive=payload.is_time_sensitive,
            date_published=payload.date_published,
            scheduled_surface_guid=payload.scheduled_surface_guid,
            scheduled_date=payload.scheduled_date,
            scheduled_source=payload.scheduled_source,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    created = ApprovedItemCreatedOut.model_validate(result.record.item)
    if result.record.scheduled_item is not None:
        created.scheduled_item = ScheduledItemOut.model_validate(result.record.scheduled_item)
    return created


@router.get("", response_model=ApprovedItemPageOut)
async def list_approved_items(
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    language: CorpusLanguage | None = Query(default=None),
    item_status: CuratedStatus | None = Query(default=None, alias="status"),
    topic: Topic | None = Query(default=None),
    title: str | None = Query(default=None, min_length=1),
    url: str | None = Query(default=None, min_length=1),
    excerpt: str | None = Query(default=None, min_length=1),
    publisher: str | None = Query(default=None, min_length=1),
    author: str | None = Query(default=None, min_length=1),
    limit: int = Query(default=30, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> ApprovedItemPageOut:
    filters = ApprovedItemFilter(
        language=language,
        status=item_status,
        topic=topic,
        title=title,
        url=url,
        excerpt=excerpt,
        publisher=publisher,
        author=author,
    )
    try:
        page = await engine.corpus.list_approved_items(filters=filters, limit=limit, offset=offset)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ApprovedItemPageOut.model_validate(page)


@router.get("/by-url", response_model=ApprovedItemOut)
async def get_approved_item_by_url(
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    url: str = Query(min_length=1),
) -> ApprovedItemOut:
    try:
        record = await engine.corpus.get_approved_item_by_url(url=url)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ApprovedItemOut.model_validate(record)


@router.get("/{external_id}", response_model=ApprovedItemOut)
async def get_approved_item(
    external_id: str,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> ApprovedItemOut:
    try:
        record = await engine.corpus.get_approved_item(external_id=external_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ApprovedItemOut.model_validate(record)


@router.patch("/{external_id}", response_model=ApprovedItemOut)
async def update_approved_item(
    external_id: str,
    payload: ApprovedItemUpdateRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> ApprovedItemOut:
    require_corpus_access(principal)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail="at least one field must be provided",
        )
    if payload.authors is not None:
        changes["authors"] = [
            ApprovedItemAuthor(name=author.name, sort_order=author.sort_order) for author in payload.authors
        ]

    try:
        result = await engine.corpus.update_approved_item(
            external_id=external_id,
            actor=principal.actor_id,
            changes=changes,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return ApprovedItemOut.model_validate(result.record)


@router.get("/{external_id}/trusted-domain", response_model=TrustedDomainOut)
async def get_trusted_domain(
    external_id: str,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> TrustedDomainOut:
    try:
        record = await engine.corpus.get_approved_item(external_id=external_id)
        trusted = await engine.corpus.has_trusted_domain(external_id=external_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return TrustedDomainOut(external_id=external_id, domain_name=record.domain_name, has_trusted_domain=trusted)


@router.get("/{external_id}/scheduled-surface-history", response_model=list[ScheduledSurfaceHistoryOut])
async def get_scheduled_surface_history(
    external_id: str,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    scheduled_surface_guid: str | None = Query(default=None, min_length=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> list[ScheduledSurfaceHistoryOut]:
    try:
        records = await engine.corpus.get_scheduled_surface_history(
            external_id=external_id,
            scheduled_surface_guid=scheduled_surface_guid,
            limit=limit,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return [ScheduledSurfaceHistoryOut.model_validate(record) for record in records]


@router.post("/{external_id}/reject", response_model=RejectedItemOut)
async def reject_approved_item(
    external_id: str,
    payload: RejectApprovedItemRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> RejectedItemOut:
    require_corpus_access(principal)
    try:
        result = await engine.corpus.reject_approved_item(
            external_id=external_id,
            reason=payload.reason,
            actor=principal.actor_id,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return RejectedItemOut.model_validate(result.record)


@rejected_router.get("", response_model=RejectedItemPageOut)
async def list_rejected_items(
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
    language: CorpusLanguage | None = Query(default=None),
    topic: Topic | None = Query(default=None),
    title: str | None = Query(default=None, min_length=1),
    url: str | None = Query(default=None, min_length=1),
    limit: int = Query(default=30, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> RejectedItemPageOut:
    filters = RejectedItemFilter(language=language, topic=topic, title=title, url=url)
    try:
        page = await engine.corpus.list_rejected_items(filters=filters, limit=limit, offset=offset)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return RejectedItemPageOut.model_validate(page)


@rejected_router.post("", response_model=RejectedItemOut, status_code=status.HTTP_201_CREATED)
async def create_rejected_item(
    payload: RejectedItemCreateRequest,
    response: Response,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> RejectedItemOut:
    require_corpus_access(principal)
    try:
        result = await engine.corpus.create_rejected_item(
            url=payload.url,
            reason=payload.reason,
            actor=principal.actor_id,
            title=payload.title,
            topic=payload.topic,
            language=payload.language,
            publisher=payload.publisher,
            prospect_id=payload.prospect_id,
        )
    except RepositoryError as exc:
        raise http_error(exc) from exc

    mark_event_delivery(response, result)
    return RejectedItemOut.model_validate(result.record)
