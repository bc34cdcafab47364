from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from fastapi.testclient import TestClient

from conftest import FailingSink
from curated_corpus.core.config import Settings
from curated_corpus.main import app
from curated_corpus.services.engine import CorpusEngine, build_engine, get_engine
from curated_corpus.services.store import InMemoryStore

FULL_ACCESS = {"X-Curator-Id": "curator-1", "X-Curator-Groups": "scheduled_surface_curator_full"}
EN_US_ONLY = {"X-Curator-Id": "curator-2", "X-Curator-Groups": "new_tab_curator_enus"}
NO_GROUPS = {"X-Curator-Id": "curator-3"}


@pytest.fixture
def client(engine: CorpusEngine) -> Iterator[TestClient]:
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _item_payload(url: str, **overrides: Any) -> dict[str, Any]:
    payload = {
        "url": url,
        "title": "A Story",
        "excerpt": "Something worth reading.",
        "status": "RECOMMENDATION",
        "language": "EN",
        "source": "MANUAL",
        "topic": "SCIENCE",
    }
    payload.update(overrides)
    return payload


def _create_item(client: TestClient, url: str, **overrides: Any) -> dict[str, Any]:
    response = client.post("/approved-items", json=_item_payload(url, **overrides), headers=FULL_ACCESS)
    assert response.status_code == 201, response.text
    return response.json()


def _schedule(client: TestClient, item_id: str, day: str, headers: dict[str, str] = FULL_ACCESS):
    return client.post(
        "/scheduled-items",
        json={
            "approved_item_external_id": item_id,
            "scheduled_surface_guid": "NEW_TAB_EN_US",
            "scheduled_date": day,
            "source": "MANUAL",
        },
        headers=headers,
    )


def test_requests_without_curator_id_are_unauthorized(client: TestClient) -> None:
    response = client.post("/approved-items", json=_item_payload("https://a.example/x"))
    assert response.status_code == 401


def test_corpus_writes_require_a_curator_group(client: TestClient) -> None:
    response = client.post("/approved-items", json=_item_payload("https://a.example/x"), headers=NO_GROUPS)
    assert response.status_code == 403


def test_create_approved_item_with_schedule(client: TestClient) -> None:
    created = _create_item(
        client,
        "https://www.example.com/story",
        scheduled_surface_guid="NEW_TAB_EN_US",
        scheduled_date="2030-01-01",
        scheduled_source="MANUAL",
    )

    assert created["domain_name"] == "example.com"
    assert created["created_by"] == "curator-1"
    assert created["scheduled_item"]["scheduled_date"] == "2030-01-01"

    fetched = client.get(f"/approved-items/{created['external_id']}", headers=EN_US_ONLY)
    assert fetched.status_code == 200
    assert fetched.json()["url"] == "https://www.example.com/story"


def test_schedule_conflict_is_reported_with_error_code(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x")

    assert _schedule(client, item["external_id"], "2030-01-01").status_code == 201
    response = _schedule(client, item["external_id"], "2030-01-01")

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "ALREADY_SCHEDULED"
    assert "Jan 1, 2030" in response.json()["detail"]["message"]


def test_surface_access_is_enforced(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x")

    allowed = _schedule(client, item["external_id"], "2030-01-01", headers=EN_US_ONLY)
    assert allowed.status_code == 201

    denied = client.post(
        "/scheduled-items",
        json={
            "approved_item_external_id": item["external_id"],
            "scheduled_surface_guid": "NEW_TAB_DE_DE",
            "scheduled_date": "2030-01-01",
            "source": "MANUAL",
        },
        headers=EN_US_ONLY,
    )
    assert denied.status_code == 403


def test_excluded_domain_returns_excluded_code(client: TestClient) -> None:
    item = _create_item(client, "https://blocked.example.com/x")

    added = client.put("/excluded-domains/blocked.example.com", headers=FULL_ACCESS)
    assert added.status_code == 201
    assert added.json()["domain_name"] == "blocked.example.com"
    assert client.put("/excluded-domains/blocked.example.com", headers=FULL_ACCESS).status_code == 409

    response = _schedule(client, item["external_id"], "2030-01-01")
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "EXCLUDED"

    assert client.delete("/excluded-domains/blocked.example.com", headers=FULL_ACCESS).status_code == 204
    assert _schedule(client, item["external_id"], "2030-01-01").status_code == 201


def test_invalid_hostname_is_a_validation_error(client: TestClient) -> None:
    response = client.put("/excluded-domains/co.uk", headers=FULL_ACCESS)
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "VALIDATION"


def test_unknown_surface_is_a_validation_error(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x")
    response = client.post(
        "/scheduled-items",
        json={
            "approved_item_external_id": item["external_id"],
            "scheduled_surface_guid": "NOPE",
            "scheduled_date": "2030-01-01",
            "source": "MANUAL",
        },
        headers=FULL_ACCESS,
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "VALIDATION"


def test_reschedule_delete_and_list(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x", is_collection=True)
    scheduled = _schedule(client, item["external_id"], "2030-01-01").json()

    moved = client.post(
        f"/scheduled-items/{scheduled['external_id']}/reschedule",
        json={"scheduled_date": "2030-01-03", "source": "MANUAL"},
        headers=EN_US_ONLY,
    )
    assert moved.status_code == 200
    assert moved.json()["external_id"] != scheduled["external_id"]

    listing = client.get(
        "/scheduled-items",
        params={"scheduled_surface_guid": "NEW_TAB_EN_US", "start_date": "2030-01-01", "end_date": "2030-01-07"},
        headers=EN_US_ONLY,
    )
    assert listing.status_code == 200
    (day,) = listing.json()
    assert day["scheduled_date"] == "2030-01-03"
    assert day["collection_count"] == 1
    assert day["items"][0]["approved_item"]["external_id"] == item["external_id"]

    removed = client.delete(
        f"/scheduled-items/{moved.json()['external_id']}",
        params={"reasons": "PUBLISHER_QUALITY", "reason_comment": "stale"},
        headers=EN_US_ONLY,
    )
    assert removed.status_code == 200
    missing = client.delete(f"/scheduled-items/{moved.json()['external_id']}", headers=EN_US_ONLY)
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "NOT_FOUND"


def test_schedule_review_conflict(client: TestClient) -> None:
    body = {"scheduled_surface_guid": "NEW_TAB_EN_US", "scheduled_date": "2030-01-01"}
    first = client.post("/schedule-reviews", json=body, headers=EN_US_ONLY)
    assert first.status_code == 201
    assert first.json()["reviewed_by"] == "curator-2"

    second = client.post("/schedule-reviews", json=body, headers=FULL_ACCESS)
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "ALREADY_REVIEWED"


def test_approved_item_update_and_reject(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x")

    immutable = client.patch(
        f"/approved-items/{item['external_id']}",
        json={"url": "https://b.example/y"},
        headers=FULL_ACCESS,
    )
    assert immutable.status_code == 422

    updated = client.patch(
        f"/approved-items/{item['external_id']}",
        json={"title": "New Title"},
        headers=FULL_ACCESS,
    )
    assert updated.status_code == 200
    assert updated.json()["updated_by"] == "curator-1"

    rejected = client.post(
        f"/approved-items/{item['external_id']}/reject",
        json={"reason": "PAYWALL,OTHER"},
        headers=FULL_ACCESS,
    )
    assert rejected.status_code == 200
    assert rejected.json()["reason"] == ["PAYWALL", "OTHER"]
    assert client.get(f"/approved-items/{item['external_id']}", headers=FULL_ACCESS).status_code == 404


def test_trusted_domain_flag(client: TestClient) -> None:
    first = _create_item(client, "https://news.example/1")
    second = _create_item(client, "https://news.example/2")
    _schedule(client, first["external_id"], "2030-01-01")
    _schedule(client, second["external_id"], "2030-01-02")

    response = client.get(f"/approved-items/{second['external_id']}/trusted-domain", headers=FULL_ACCESS)
    assert response.status_code == 200
    assert response.json() == {
        "external_id": second["external_id"],
        "domain_name": "news.example",
        "has_trusted_domain": True,
    }


def test_publisher_domain_routes(client: TestClient) -> None:
    assert client.get("/publisher-domains/example.com", headers=FULL_ACCESS).status_code == 404

    saved = client.put("/publisher-domains/example.com", json={"publisher": "Example"}, headers=FULL_ACCESS)
    assert saved.status_code == 200
    assert saved.json()["created_by"] == "curator-1"

    item = _create_item(client, "https://www.example.com/story")
    assert item["publisher"] == "Example"


def test_section_routes(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x")

    section = client.put(
        "/sections/ml-1",
        json={"title": "Trending", "scheduled_surface_guid": "NEW_TAB_EN_US", "create_source": "ML"},
        headers=EN_US_ONLY,
    )
    assert section.status_code == 200
    assert section.json()["status"] == "LIVE"

    added = client.post(
        "/section-items",
        json={"section_external_id": "ml-1", "approved_item_external_id": item["external_id"], "rank": 1},
        headers=EN_US_ONLY,
    )
    assert added.status_code == 201

    disabled = client.patch("/sections/ml-1/disabled", json={"disabled": True}, headers=EN_US_ONLY)
    assert disabled.json()["status"] == "DISABLED"

    public = client.get(
        "/sections",
        params={"scheduled_surface_guid": "NEW_TAB_EN_US", "public": "true"},
        headers=EN_US_ONLY,
    )
    assert public.json() == []

    removed = client.delete(
        f"/section-items/{added.json()['external_id']}",
        params=[("deactivate_reasons", "DATED"), ("deactivate_reasons", "OFF_TOPIC")],
        headers=EN_US_ONLY,
    )
    assert removed.status_code == 200
    assert removed.json()["deactivate_reasons"] == ["DATED", "OFF_TOPIC"]

    listing = client.get("/sections", params={"scheduled_surface_guid": "NEW_TAB_EN_US"}, headers=EN_US_ONLY)
    (listed,) = listing.json()
    assert listed["section_items"] == []


def test_custom_section_route_rejects_ml_source(client: TestClient) -> None:
    response = client.post(
        "/sections/custom",
        json={
            "title": "Summer Reads",
            "scheduled_surface_guid": "NEW_TAB_EN_US",
            "description": "Long reads.",
            "start_date": "2030-01-01",
            "create_source": "ML",
        },
        headers=FULL_ACCESS,
    )
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "VALIDATION"


def test_failed_event_delivery_sets_degraded_header(clock) -> None:
    engine = build_engine(
        InMemoryStore(),
        settings=Settings(storage_backend="memory", otel_enabled=False),
        sink=FailingSink(),
        clock=clock,
    )
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        client = TestClient(app)
        response = client.post("/approved-items", json=_item_payload("https://a.example/x"), headers=FULL_ACCESS)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 201
    assert response.headers["X-Event-Delivery"] == "degraded"


def test_section_item_removal_checks_the_owning_surface(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x")
    client.put(
        "/sections/ml-de",
        json={"title": "Im Trend", "scheduled_surface_guid": "NEW_TAB_DE_DE", "create_source": "ML"},
        headers=FULL_ACCESS,
    )
    added = client.post(
        "/section-items",
        json={"section_external_id": "ml-de", "approved_item_external_id": item["external_id"]},
        headers=FULL_ACCESS,
    )
    section_item_id = added.json()["external_id"]

    denied = client.delete(f"/section-items/{section_item_id}", headers=EN_US_ONLY)
    assert denied.status_code == 403
    listing = client.get("/sections", params={"scheduled_surface_guid": "NEW_TAB_DE_DE"}, headers=FULL_ACCESS)
    assert [entry["external_id"] for entry in listing.json()[0]["section_items"]] == [section_item_id]

    missing = client.delete("/section-items/00000000-0000-0000-0000-000000000000", headers=FULL_ACCESS)
    assert missing.status_code == 404
    assert client.delete(f"/section-items/{section_item_id}", headers=FULL_ACCESS).status_code == 200


def test_section_listing_filters_by_create_source(client: TestClient) -> None:
    client.put(
        "/sections/ml-1",
        json={"title": "Trending", "scheduled_surface_guid": "NEW_TAB_EN_US", "create_source": "ML"},
        headers=FULL_ACCESS,
    )
    params = {"scheduled_surface_guid": "NEW_TAB_EN_US"}

    ml = client.get("/sections", params={**params, "create_source": "ML"}, headers=EN_US_ONLY)
    manual = client.get("/sections", params={**params, "create_source": "MANUAL"}, headers=EN_US_ONLY)
    assert [section["external_id"] for section in ml.json()] == ["ml-1"]
    assert manual.json() == []
    assert client.get("/sections", params={**params, "create_source": "ROBOT"}, headers=EN_US_ONLY).status_code == 422


def test_approved_item_listing_and_lookup_routes(client: TestClient) -> None:
    first = _create_item(client, "https://a.example/x", title="Ocean Currents")
    _create_item(client, "https://b.example/y", title="Chip Design", topic="TECHNOLOGY")

    page = client.get("/approved-items", params={"topic": "SCIENCE"}, headers=NO_GROUPS)
    assert page.status_code == 200
    body = page.json()
    assert body["total_count"] == 1
    assert [entry["external_id"] for entry in body["items"]] == [first["external_id"]]

    paged = client.get("/approved-items", params={"limit": 1, "offset": 1, "status": "RECOMMENDATION"}, headers=NO_GROUPS)
    assert paged.json()["total_count"] == 2
    assert len(paged.json()["items"]) == 1
    assert client.get("/approved-items", params={"limit": 500}, headers=NO_GROUPS).status_code == 422
    assert client.get("/approved-items").status_code == 401

    found = client.get("/approved-items/by-url", params={"url": "https://a.example/x"}, headers=NO_GROUPS)
    assert found.json()["external_id"] == first["external_id"]
    missing = client.get("/approved-items/by-url", params={"url": "https://a.example/nope"}, headers=NO_GROUPS)
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "NOT_FOUND"


def test_rejected_item_listing_route(client: TestClient) -> None:
    created = client.post(
        "/rejected-items",
        json={"url": "https://a.example/paywalled", "reason": "PAYWALL", "topic": "POLITICS"},
        headers=FULL_ACCESS,
    )
    assert created.status_code == 201

    page = client.get("/rejected-items", params={"url": "paywalled"}, headers=NO_GROUPS)
    assert page.json()["total_count"] == 1
    assert page.json()["items"][0]["reason"] == ["PAYWALL"]
    assert client.get("/rejected-items", params={"topic": "SPORTS"}, headers=NO_GROUPS).json()["items"] == []


def test_scheduled_surface_history_route(client: TestClient) -> None:
    item = _create_item(client, "https://a.example/x")
    _schedule(client, item["external_id"], "2030-01-01")
    _schedule(client, item["external_id"], "2030-01-05")

    history = client.get(
        f"/approved-items/{item['external_id']}/scheduled-surface-history",
        params={"limit": 1},
        headers=NO_GROUPS,
    )
    assert history.status_code == 200
    assert history.json() == [
        {
            "external_id": history.json()[0]["external_id"],
            "scheduled_surface_guid": "NEW_TAB_EN_US",
            "scheduled_date": "2030-01-05",
            "created_by": "curator-1",
        }
    ]
    unknown = client.get("/approved-items/nope/scheduled-surface-history", headers=NO_GROUPS)
    assert unknown.status_code == 404


def test_scheduled_surface_routes(client: TestClient) -> None:
    surfaces = client.get("/scheduled-surfaces", headers=EN_US_ONLY)
    assert surfaces.json() == [{"guid": "NEW_TAB_EN_US", "name": "New Tab (en-US)", "iana_timezone": "America/New_York"}]
    assert client.get("/scheduled-surfaces", headers=NO_GROUPS).json() == []

    item = _create_item(client, "https://a.example/x")
    scheduled = _schedule(client, item["external_id"], "2030-01-01").json()

    public = client.get("/scheduled-surfaces/NEW_TAB_EN_US/items", params={"date": "2030-01-01"})
    assert public.status_code == 200
    (entry,) = public.json()
    assert entry["id"] == scheduled["external_id"]
    assert entry["surface_id"] == "NEW_TAB_EN_US"
    assert entry["corpus_item"]["url"] == "https://a.example/x"
    empty = client.get("/scheduled-surfaces/NEW_TAB_EN_US/items", params={"date": "2030-01-02"})
    assert empty.json() == []
    unknown = client.get("/scheduled-surfaces/MOON/items", params={"date": "2030-01-01"})
    assert unknown.status_code == 422
