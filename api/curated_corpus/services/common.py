from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Protocol

from curated_corpus.core.registry import Registry, ScheduledSurface
from curated_corpus.services.repository import RepositoryValidationError

Clock = Callable[[], datetime]


class CorpusStore(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[Any]: ...

    async def close(self) -> None: ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def split_reason_codes(raw: str | None, allowed: frozenset[str], *, label: str) -> list[str]:
    """Parse a comma-separated reason list: trimmed, de-duplicated, validated."""
    codes: list[str] = []
    for part in (raw or "").split(","):
        code = part.strip()
        if not code or code in codes:
            continue
        if code not in allowed:
            raise RepositoryValidationError(f'"{code}" is not a valid {label}.')
        codes.append(code)
    return codes


def truncate_text(value: str | None, max_length: int) -> str | None:
    text = coerce_text(value)
    if text is None:
        return None
    return text[:max_length]


def require_surface(registry: Registry, scheduled_surface_guid: str) -> ScheduledSurface:
    surface = registry.get_surface(scheduled_surface_guid)
    if surface is None:
        raise RepositoryValidationError(f'Cannot use unknown scheduled surface guid "{scheduled_surface_guid}".')
    return surface


def coerce_choice(value: Any, allowed: type[Enum], *, field_name: str) -> str:
    raw = value.value if isinstance(value, Enum) else value
    try:
        return allowed(raw).value
    except ValueError as exc:
        choices = ", ".join(member.value for member in allowed)
        raise RepositoryValidationError(f"{field_name} must be one of: {choices}") from exc


def format_day(value: date) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def require_text(value: Any, field_name: str) -> str:
    text = coerce_text(value)
    if text is None:
        raise RepositoryValidationError(f"{field_name} must be a non-empty string")
    return text


def validate_page(limit: int, offset: int, *, max_limit: int = 100) -> None:
    if limit < 1 or limit > max_limit:
        raise RepositoryValidationError(f"limit must be between 1 and {max_limit}")
    if offset < 0:
        raise RepositoryValidationError("offset must not be negative")
