from fastapi import HTTPException, Response, status

from curated_corpus.core.auth import Principal
from curated_corpus.services.events import MutationResult
from curated_corpus.services.repository import (
    RepositoryAlreadyReviewedError,
    RepositoryAlreadyScheduledError,
    RepositoryConflictError,
    RepositoryError,
    RepositoryExcludedDomainError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

EVENT_DELIVERY_HEADER = "X-Event-Delivery"

# Most specific first: subclasses must precede their bases.
_ERROR_STATUS: tuple[tuple[type[RepositoryError], int, str], ...] = (
    (RepositoryExcludedDomainError, status.HTTP_403_FORBIDDEN, "EXCLUDED"),
    (RepositoryValidationError, status.HTTP_422_UNPROCESSABLE_CONTENT, "VALIDATION"),
    (RepositoryNotFoundError, status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    (RepositoryAlreadyScheduledError, status.HTTP_409_CONFLICT, "ALREADY_SCHEDULED"),
    (RepositoryAlreadyReviewedError, status.HTTP_409_CONFLICT, "ALREADY_REVIEWED"),
    (RepositoryConflictError, status.HTTP_409_CONFLICT, "CONFLICT"),
    (RepositoryUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE, "UNAVAILABLE"),
)


def http_error(exc: RepositoryError) -> HTTPException:
    for error_type, status_code, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"code": code, "message": str(exc)})
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "INTERNAL", "message": str(exc)},
    )


def require_surface_access(principal: Principal, scheduled_surface_guid: str) -> None:
    try:
        principal.require_surface(scheduled_surface_guid)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def require_corpus_access(principal: Principal) -> None:
    try:
        principal.require_corpus()
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc


def mark_event_delivery(response: Response, result: MutationResult) -> None:
    if not result.events_delivered:
        response.headers[EVENT_DELIVERY_HEADER] = "degraded"
