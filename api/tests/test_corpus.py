from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date

import pytest

from conftest import create_item, run
from curated_corpus.core.config import Settings
from curated_corpus.services.engine import CorpusEngine, build_engine
from curated_corpus.services.repository import (
    ApprovedItemAuthor,
    ApprovedItemFilter,
    RejectedItemFilter,
    RepositoryConflictError,
    RepositoryExcludedDomainError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)
from curated_corpus.services.store import InMemorySession, InMemoryStore


def test_create_derives_domain_and_falls_back_to_it_as_publisher(engine: CorpusEngine, sink) -> None:
    item = run(
        create_item(
            engine,
            "https://WWW.Example.com/story",
            authors=[ApprovedItemAuthor(name=" B ", sort_order=2), ApprovedItemAuthor(name="A", sort_order=1)],
        )
    )

    assert item.domain_name == "example.com"
    assert item.publisher == "example.com"
    assert [author.name for author in item.authors] == ["A", "B"]
    (event,) = sink.of_type("ADD_ITEM")
    assert event["entity"]["external_id"] == item.external_id


def test_publisher_mapping_wins_and_falls_back_to_registrable_domain(engine: CorpusEngine) -> None:
    async def scenario():
        await engine.domain_policy.upsert_publisher_mapping("example.co.uk", "Example News", "curator-1")
        mapped = await create_item(engine, "https://news.example.co.uk/a", publisher="Someone Else")
        supplied = await create_item(engine, "https://other.example/b", publisher="  Other Daily ")
        return mapped, supplied

    mapped, supplied = run(scenario())
    assert mapped.publisher == "Example News"
    assert supplied.publisher == "Other Daily"


def test_url_is_unique_across_approved_and_rejected(engine: CorpusEngine) -> None:
    async def scenario() -> None:
        await create_item(engine, "https://a.example/x")
        with pytest.raises(RepositoryConflictError) as excinfo:
            await create_item(engine, "https://a.example/x")
        assert "approved item" in str(excinfo.value)

        await engine.corpus.create_rejected_item(url="https://b.example/y", reason="PAYWALL", actor="curator-1")
        with pytest.raises(RepositoryConflictError) as excinfo:
            await create_item(engine, "https://b.example/y")
        assert "rejected item" in str(excinfo.value)
        with pytest.raises(RepositoryConflictError):
            await engine.corpus.create_rejected_item(url="https://a.example/x", reason="PAYWALL", actor="curator-1")

    run(scenario())


def test_excluded_domain_cannot_enter_the_corpus(engine: CorpusEngine, sink) -> None:
    async def scenario() -> None:
        await engine.domain_policy.add_excluded_domain("spam.example", "curator-1")
        with pytest.raises(RepositoryExcludedDomainError):
            await create_item(engine, "https://www.spam.example/x")

    run(scenario())
    assert sink.of_type("ADD_ITEM") == []


def test_create_with_scheduling_is_atomic(engine: CorpusEngine, sink) -> None:
    async def scenario():
        created = await engine.corpus.create_approved_item(
            url="https://a.example/x",
            title="A Story",
            excerpt="Something worth reading.",
            status="CORPUS",
            language="DE",
            source="PROSPECT",
            actor="curator-1",
            scheduled_surface_guid="NEW_TAB_DE_DE",
            scheduled_date=date(2030, 1, 1),
            scheduled_source="MANUAL",
        )
        with pytest.raises(RepositoryValidationError):
            await create_item(engine, "https://b.example/y", scheduled_surface_guid="NEW_TAB_DE_DE")
        with pytest.raises(RepositoryValidationError):
            await create_item(
                engine,
                "https://c.example/z",
                scheduled_surface_guid="NOPE",
                scheduled_date=date(2030, 1, 1),
                scheduled_source="MANUAL",
            )
        with pytest.raises(RepositoryNotFoundError):
            await engine.corpus.get_approved_item(external_id="00000000-0000-0000-0000-000000000000")
        return created.record

    created = run(scenario())
    assert created.scheduled_item is not None
    assert created.scheduled_item.approved_item_id == created.item.id
    assert [event["event_type"] for event in sink.payloads] == ["ADD_ITEM", "ADD_SCHEDULE"]


def test_create_rejects_bad_inputs(engine: CorpusEngine) -> None:
    with pytest.raises(RepositoryValidationError):
        run(create_item(engine, "not a url"))
    with pytest.raises(RepositoryValidationError):
        run(create_item(engine, "https://a.example/x", status="DRAFT"))
    with pytest.raises(RepositoryValidationError):
        run(create_item(engine, "https://a.example/x", title="   "))


def test_update_changes_mutable_fields_only(engine: CorpusEngine, clock, sink) -> None:
    async def scenario():
        item = await create_item(engine, "https://a.example/x")
        with pytest.raises(RepositoryValidationError) as excinfo:
            await engine.corpus.update_approved_item(
                external_id=item.external_id,
                actor="curator-2",
                changes={"url": "https://b.example/y"},
            )
        assert "url cannot be changed" in str(excinfo.value)
        with pytest.raises(RepositoryValidationError):
            await engine.corpus.update_approved_item(
                external_id=item.external_id,
                actor="curator-2",
                changes={"favorite_color": "blue"},
            )

        clock.advance(minutes=3)
        updated = await engine.corpus.update_approved_item(
            external_id=item.external_id,
            actor="curator-2",
            changes={"title": "A Better Title", "topic": "TECHNOLOGY", "is_time_sensitive": True},
        )
        return item, updated.record

    original, updated = run(scenario())
    assert updated.title == "A Better Title"
    assert updated.topic == "TECHNOLOGY"
    assert updated.is_time_sensitive is True
    assert updated.url == original.url
    assert updated.updated_by == "curator-2"
    assert updated.updated_at == clock.now
    assert len(sink.of_type("UPDATE_ITEM")) == 1


def test_reject_moves_item_and_clears_section_items(engine: CorpusEngine, sink) -> None:
    async def scenario():
        item = await create_item(engine, "https://a.example/x")
        section = await engine.sections.create_or_replace_section(
            external_id="ml-1",
            title="Trending",
            scheduled_surface_guid="NEW_TAB_EN_US",
            create_source="ML",
            actor="ml-pipeline",
        )
        await engine.sections.add_section_item(
            section_external_id=section.record.external_id,
            approved_item_external_id=item.external_id,
            actor="curator-1",
        )
        rejected = await engine.corpus.reject_approved_item(
            external_id=item.external_id,
            reason="PAYWALL, PAYWALL,OTHER",
            actor="curator-2",
        )
        (listed,) = await engine.sections.list_sections(scheduled_surface_guid="NEW_TAB_EN_US")
        with pytest.raises(RepositoryNotFoundError):
            await engine.corpus.get_approved_item(external_id=item.external_id)
        return rejected.record, listed

    rejected, listed = run(scenario())
    assert rejected.reason == ["PAYWALL", "OTHER"]
    assert rejected.url == "https://a.example/x"
    assert listed.section_items == []
    assert [event["event_type"] for event in sink.payloads][-2:] == ["REMOVE_ITEM", "REJECT_ITEM"]


def test_reject_refuses_scheduled_items_and_bad_reasons(engine: CorpusEngine) -> None:
    async def scenario() -> None:
        item = await create_item(engine, "https://a.example/x")
        with pytest.raises(RepositoryValidationError):
            await engine.corpus.reject_approved_item(external_id=item.external_id, reason="BORING", actor="curator-1")
        with pytest.raises(RepositoryValidationError):
            await engine.corpus.reject_approved_item(external_id=item.external_id, reason=" , ", actor="curator-1")

        await engine.scheduling.create_scheduled_item(
            approved_item_external_id=item.external_id,
            scheduled_surface_guid="NEW_TAB_EN_US",
            scheduled_date=date(2030, 1, 1),
            source="MANUAL",
            actor="curator-1",
        )
        with pytest.raises(RepositoryConflictError) as excinfo:
            await engine.corpus.reject_approved_item(external_id=item.external_id, reason="PAYWALL", actor="curator-1")
        assert "scheduled entries exist" in str(excinfo.value)
        assert (await engine.corpus.get_approved_item(external_id=item.external_id)).url == item.url

    run(scenario())


class _StaleReadSession(InMemorySession):
    """The pre-insert URL lookup misses a row committed by a concurrent writer."""

    async def find_corpus_url(self, url: str) -> str | None:
        return None


class _StaleReadStore(InMemoryStore):
    def __init__(self, seeded: InMemoryStore) -> None:
        super().__init__()
        self._state = seeded._state

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemorySession]:
        yield _StaleReadSession(self._state)


def test_shared_url_key_rejects_writers_that_miss_the_lookup(engine: CorpusEngine) -> None:
    run(create_item(engine, "https://a.example/x"))
    run(engine.corpus.create_rejected_item(url="https://b.example/y", reason="PAYWALL", actor="curator-1"))
    stale = build_engine(_StaleReadStore(engine.store), settings=Settings(storage_backend="memory", otel_enabled=False))

    with pytest.raises(RepositoryConflictError) as excinfo:
        run(stale.corpus.create_rejected_item(url="https://a.example/x", reason="PAYWALL", actor="curator-2"))
    assert "already exists" in str(excinfo.value)
    with pytest.raises(RepositoryConflictError):
        run(create_item(stale, "https://b.example/y"))

    approved = run(engine.corpus.list_approved_items())
    rejected = run(engine.corpus.list_rejected_items())
    assert [record.url for record in approved.items] == ["https://a.example/x"]
    assert [record.url for record in rejected.items] == ["https://b.example/y"]


def test_rejected_url_stays_claimed_after_reject(engine: CorpusEngine) -> None:
    async def scenario() -> None:
        item = await create_item(engine, "https://a.example/x")
        await engine.corpus.reject_approved_item(external_id=item.external_id, reason="PAYWALL", actor="curator-1")
        with pytest.raises(RepositoryConflictError) as excinfo:
            await create_item(engine, "https://a.example/x")
        assert "rejected item" in str(excinfo.value)
        with pytest.raises(RepositoryNotFoundError):
            await engine.corpus.get_approved_item_by_url(url="https://a.example/x")

    run(scenario())


def test_approved_listing_filters_and_paginates(engine: CorpusEngine, clock) -> None:
    async def scenario():
        await create_item(engine, "https://a.example/one", title="Deep Sea Life", topic="SCIENCE")
        clock.advance(minutes=1)
        await create_item(
            engine,
            "https://b.example/two",
            title="Chip Shortage",
            topic="TECHNOLOGY",
            authors=[ApprovedItemAuthor(name="Ada Lovelace", sort_order=1)],
        )
        clock.advance(minutes=1)
        await create_item(engine, "https://c.example/three", title="Deep Learning", topic="TECHNOLOGY", language="DE")

        newest_first = await engine.corpus.list_approved_items(limit=2)
        second_page = await engine.corpus.list_approved_items(limit=2, offset=2)
        deep = await engine.corpus.list_approved_items(filters=ApprovedItemFilter(title="deep"))
        tech_en = await engine.corpus.list_approved_items(filters=ApprovedItemFilter(topic="TECHNOLOGY", language="EN"))
        by_author = await engine.corpus.list_approved_items(filters=ApprovedItemFilter(author="lovelace"))
        return newest_first, second_page, deep, tech_en, by_author

    newest_first, second_page, deep, tech_en, by_author = run(scenario())
    assert [record.url for record in newest_first.items] == ["https://c.example/three", "https://b.example/two"]
    assert newest_first.total_count == 3
    assert [record.url for record in second_page.items] == ["https://a.example/one"]
    assert {record.title for record in deep.items} == {"Deep Sea Life", "Deep Learning"}
    assert [record.url for record in tech_en.items] == ["https://b.example/two"]
    assert [record.url for record in by_author.items] == ["https://b.example/two"]


def test_listing_validates_paging_and_filters(engine: CorpusEngine) -> None:
    with pytest.raises(RepositoryValidationError):
        run(engine.corpus.list_approved_items(limit=0))
    with pytest.raises(RepositoryValidationError):
        run(engine.corpus.list_approved_items(limit=101))
    with pytest.raises(RepositoryValidationError):
        run(engine.corpus.list_rejected_items(offset=-1))
    with pytest.raises(RepositoryValidationError):
        run(engine.corpus.list_approved_items(filters=ApprovedItemFilter(topic="ASTROLOGY")))


def test_rejected_listing_filters_by_url_and_topic(engine: CorpusEngine) -> None:
    async def scenario():
        await engine.corpus.create_rejected_item(
            url="https://a.example/paywalled", reason="PAYWALL", actor="curator-1", topic="POLITICS"
        )
        await engine.corpus.create_rejected_item(url="https://b.example/old", reason="OTHER", actor="curator-1")
        by_url = await engine.corpus.list_rejected_items(filters=RejectedItemFilter(url="PAYWALLED"))
        by_topic = await engine.corpus.list_rejected_items(filters=RejectedItemFilter(topic="POLITICS"))
        return by_url, by_topic

    by_url, by_topic = run(scenario())
    assert [record.url for record in by_url.items] == ["https://a.example/paywalled"]
    assert by_url.items[0].reason == ["PAYWALL"]
    assert [record.url for record in by_topic.items] == ["https://a.example/paywalled"]


def test_lookup_by_url(engine: CorpusEngine) -> None:
    item = run(create_item(engine, "https://a.example/x"))

    found = run(engine.corpus.get_approved_item_by_url(url=" https://a.example/x "))
    assert found.external_id == item.external_id
    with pytest.raises(RepositoryNotFoundError):
        run(engine.corpus.get_approved_item_by_url(url="https://a.example/missing"))


def test_scheduled_surface_history_is_newest_first_and_limited(engine: CorpusEngine) -> None:
    async def scenario():
        item = await create_item(engine, "https://a.example/x")
        for surface, day in [
            ("NEW_TAB_EN_US", date(2030, 1, 1)),
            ("NEW_TAB_EN_US", date(2030, 1, 3)),
            ("NEW_TAB_EN_GB", date(2030, 1, 2)),
        ]:
            await engine.scheduling.create_scheduled_item(
                approved_item_external_id=item.external_id,
                scheduled_surface_guid=surface,
                scheduled_date=day,
                source="MANUAL",
                actor="curator-1",
            )
        everything = await engine.corpus.get_scheduled_surface_history(external_id=item.external_id)
        latest = await engine.corpus.get_scheduled_surface_history(external_id=item.external_id, limit=1)
        us_only = await engine.corpus.get_scheduled_surface_history(
            external_id=item.external_id, scheduled_surface_guid="NEW_TAB_EN_US"
        )
        return everything, latest, us_only

    everything, latest, us_only = run(scenario())
    assert [record.scheduled_date for record in everything] == [date(2030, 1, 3), date(2030, 1, 2), date(2030, 1, 1)]
    assert [record.scheduled_surface_guid for record in latest] == ["NEW_TAB_EN_US"]
    assert [record.scheduled_date for record in us_only] == [date(2030, 1, 3), date(2030, 1, 1)]


def test_scheduled_surface_history_checks_item_and_surface(engine: CorpusEngine) -> None:
    item = run(create_item(engine, "https://a.example/x"))

    with pytest.raises(RepositoryNotFoundError):
        run(engine.corpus.get_scheduled_surface_history(external_id="not-a-uuid"))
    with pytest.raises(RepositoryValidationError):
        run(engine.corpus.get_scheduled_surface_history(external_id=item.external_id, scheduled_surface_guid="MOON"))
