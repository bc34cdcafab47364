from fastapi import APIRouter, Depends, status

from curated_corpus.api.errors import http_error, require_corpus_access
from curated_corpus.core.security import get_curator_principal
from curated_corpus.schemas.domains import ExcludedDomainOut, PublisherDomainOut, PublisherDomainUpsertRequest
from curated_corpus.services.engine import CorpusEngine, get_engine
from curated_corpus.services.repository import RepositoryError

publisher_router = APIRouter()
excluded_router = APIRouter()


@publisher_router.get("/{domain}", response_model=PublisherDomainOut)
async def get_publisher_domain(
    domain: str,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> PublisherDomainOut:
    try:
        record = await engine.domain_policy.get_publisher_mapping(domain)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return PublisherDomainOut.model_validate(record)


@publisher_router.put("/{domain}", response_model=PublisherDomainOut)
async def upsert_publisher_domain(
    domain: str,
    payload: PublisherDomainUpsertRequest,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> PublisherDomainOut:
    require_corpus_access(principal)
    try:
        record = await engine.domain_policy.upsert_publisher_mapping(domain, payload.publisher, principal.actor_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return PublisherDomainOut.model_validate(record)


@excluded_router.put("/{domain}", response_model=ExcludedDomainOut, status_code=status.HTTP_201_CREATED)
async def add_excluded_domain(
    domain: str,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> ExcludedDomainOut:
    require_corpus_access(principal)
    try:
        record = await engine.domain_policy.add_excluded_domain(domain, principal.actor_id)
    except RepositoryError as exc:
        raise http_error(exc) from exc
    return ExcludedDomainOut.model_validate(record)


@excluded_router.delete("/{domain}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_excluded_domain(
    domain: str,
    principal=Depends(get_curator_principal),
    engine: CorpusEngine = Depends(get_engine),
) -> None:
    require_corpus_access(principal)
    try:
        await engine.domain_policy.remove_excluded_domain(domain)
    except RepositoryError as exc:
        raise http_error(exc) from exc
