from __future__ import annotations

import logging
from datetime import date
from typing import Any

from curated_corpus.core.domains import InvalidHostnameError, get_registrable_domain, normalize_hostname
from curated_corpus.services.common import Clock, CorpusStore, coerce_text, utc_now
from curated_corpus.services.repository import (
    ExcludedDomainRecord,
    PublisherDomainRecord,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUniqueViolationError,
    RepositoryValidationError,
    TrustedDomainRecord,
)

logger = logging.getLogger(__name__)


def _normalize(domain: str) -> str:
    try:
        return normalize_hostname(domain)
    except InvalidHostnameError as exc:
        raise RepositoryValidationError(str(exc)) from exc


class DomainPolicy:
    """Trusted, excluded and publisher-mapped domains keyed by normalized hostname.

    The ``session`` helpers run inside a caller's transaction; the remaining
    operations open their own.
    """

    def __init__(self, store: CorpusStore, *, clock: Clock = utc_now) -> None:
        self.store = store
        self.clock = clock

    async def is_excluded(self, session: Any, domain_name: str) -> bool:
        return await session.is_excluded_domain(domain_name)

    async def is_trusted(self, session: Any, domain_name: str) -> bool:
        return await session.get_trusted_domain(domain_name) is not None

    async def promote_if_eligible(self, session: Any, domain_name: str, as_of: date) -> bool:
        """Mark ``domain_name`` trusted when it has any assignment dated before ``as_of``."""
        if await self.is_trusted(session, domain_name):
            return True
        if not await session.has_scheduled_item_for_domain_before(domain_name=domain_name, before=as_of):
            return False
        await session.insert_trusted_domain_if_absent(
            TrustedDomainRecord(domain_name=domain_name, created_at=self.clock())
        )
        logger.info("domain promoted to trusted domain=%s as_of=%s", domain_name, as_of.isoformat())
        return True

    async def lookup_publisher(self, session: Any, hostname: str) -> str | None:
        mapping = await session.get_publisher_domain(hostname)
        if mapping is not None:
            return mapping.publisher
        registrable = get_registrable_domain(hostname)
        if registrable and registrable != hostname:
            mapping = await session.get_publisher_domain(registrable)
            if mapping is not None:
                return mapping.publisher
        return None

    async def upsert_publisher_mapping(self, domain: str, publisher: str, actor: str) -> PublisherDomainRecord:
        domain_name = _normalize(domain)
        publisher_name = coerce_text(publisher)
        if publisher_name is None:
            raise RepositoryValidationError("publisher must be a non-empty string")

        async with self.store.transaction() as session:
            return await session.upsert_publisher_domain(
                PublisherDomainRecord(
                    domain_name=domain_name,
                    publisher=publisher_name,
                    created_at=self.clock(),
                    created_by=actor,
                )
            )

    async def get_publisher_mapping(self, domain: str) -> PublisherDomainRecord:
        domain_name = _normalize(domain)
        async with self.store.transaction() as session:
            mapping = await session.get_publisher_domain(domain_name)
        if mapping is None:
            raise RepositoryNotFoundError(f'No publisher is mapped to "{domain_name}".')
        return mapping

    async def add_excluded_domain(self, domain: str, actor: str) -> ExcludedDomainRecord:
        domain_name = _normalize(domain)
        try:
            async with self.store.transaction() as session:
                record = await session.insert_excluded_domain(
                    ExcludedDomainRecord(domain_name=domain_name, created_at=self.clock(), created_by=actor)
                )
        except RepositoryUniqueViolationError as exc:
            raise RepositoryConflictError(f'"{domain_name}" is already on the excluded domains list.') from exc
        logger.info("excluded domain added domain=%s actor=%s", domain_name, actor)
        return record

    async def remove_excluded_domain(self, domain: str) -> None:
        domain_name = _normalize(domain)
        async with self.store.transaction() as session:
            removed = await session.delete_excluded_domain(domain_name)
        if not removed:
            raise RepositoryNotFoundError(f'"{domain_name}" is not on the excluded domains list.')
