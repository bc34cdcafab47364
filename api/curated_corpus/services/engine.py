from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from curated_corpus.core.config import Settings, get_settings
from curated_corpus.core.registry import Registry, get_registry
from curated_corpus.services.common import Clock, CorpusStore, utc_now
from curated_corpus.services.corpus import CorpusItemService
from curated_corpus.services.domain_policy import DomainPolicy
from curated_corpus.services.events import EventEmitter, EventSink, HttpEventSink, LoggingEventSink
from curated_corpus.services.repository import PostgresRepository
from curated_corpus.services.reviews import ScheduleReviewTracker
from curated_corpus.services.scheduling import SchedulingEngine
from curated_corpus.services.sections import SectionLifecycle
from curated_corpus.services.store import InMemoryStore


@dataclass(slots=True)
class CorpusEngine:
    store: CorpusStore
    domain_policy: DomainPolicy
    corpus: CorpusItemService
    scheduling: SchedulingEngine
    reviews: ScheduleReviewTracker
    sections: SectionLifecycle

    async def close(self) -> None:
        await self.store.close()


def build_store(settings: Settings) -> CorpusStore:
    if settings.storage_backend == "memory":
        return InMemoryStore()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )


def build_event_sink(settings: Settings) -> EventSink:
    if settings.event_sink_url:
        return HttpEventSink(settings.event_sink_url, timeout_seconds=settings.event_sink_timeout_seconds)
    return LoggingEventSink()


def build_engine(
    store: CorpusStore,
    *,
    settings: Settings | None = None,
    registry: Registry | None = None,
    sink: EventSink | None = None,
    clock: Clock = utc_now,
) -> CorpusEngine:
    settings = settings or get_settings()
    registry = registry or get_registry()
    emitter = EventEmitter(sink or build_event_sink(settings))
    domain_policy = DomainPolicy(store, clock=clock)
    scheduling = SchedulingEngine(
        store,
        registry=registry,
        domain_policy=domain_policy,
        emitter=emitter,
        reason_max_length=settings.reason_max_length,
        clock=clock,
    )
    return CorpusEngine(
        store=store,
        domain_policy=domain_policy,
        corpus=CorpusItemService(
            store,
            registry=registry,
            domain_policy=domain_policy,
            scheduling=scheduling,
            emitter=emitter,
            clock=clock,
        ),
        scheduling=scheduling,
        reviews=ScheduleReviewTracker(store, registry=registry, emitter=emitter, clock=clock),
        sections=SectionLifecycle(store, registry=registry, emitter=emitter, clock=clock),
    )


@lru_cache
def get_engine() -> CorpusEngine:
    settings = get_settings()
    return build_engine(build_store(settings), settings=settings)
