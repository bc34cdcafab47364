import json
import logging
from datetime import date, datetime, timezone

import httpx
import pytest

from conftest import FailingSink, RecordingSink, run
from curated_corpus.services.events import (
    CorpusEvent,
    EventDeliveryError,
    EventEmitter,
    EventType,
    HttpEventSink,
)
from curated_corpus.services.repository import ScheduleReviewRecord

REVIEWED_AT = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)


def _event() -> CorpusEvent:
    return CorpusEvent(
        event_type=EventType.REVIEW_SCHEDULE,
        entity=ScheduleReviewRecord(
            scheduled_surface_guid="NEW_TAB_EN_US",
            scheduled_date=date(2030, 1, 1),
            reviewed_by="curator-1",
            reviewed_at=REVIEWED_AT,
        ),
        actor="curator-1",
        timestamp=REVIEWED_AT,
        extra={"note": "first pass"},
    )


def test_payload_is_json_ready() -> None:
    payload = _event().to_payload()

    assert payload["event_type"] == "REVIEW_SCHEDULE"
    assert payload["timestamp"] == "2030-01-01T08:00:00+00:00"
    assert payload["entity"]["scheduled_date"] == "2030-01-01"
    assert payload["note"] == "first pass"
    json.dumps(payload)


def test_http_sink_posts_payload() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(202)

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = HttpEventSink("http://collector.test/events", client=client)
            await sink.send(_event().to_payload())

    run(scenario())
    assert seen[0]["actor"] == "curator-1"


def test_http_sink_wraps_server_errors() -> None:
    async def scenario() -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            sink = HttpEventSink("http://collector.test/events", client=client)
            await sink.send(_event().to_payload())

    with pytest.raises(EventDeliveryError):
        run(scenario())


def test_emitter_reports_degraded_delivery(caplog: pytest.LogCaptureFixture) -> None:
    emitter = EventEmitter(FailingSink())

    with caplog.at_level(logging.WARNING, logger="curated_corpus.services.events"):
        delivered = run(emitter.emit(_event()))

    assert delivered is False
    assert "event delivery degraded type=REVIEW_SCHEDULE" in caplog.text


def test_emit_all_keeps_sending_after_a_failure() -> None:
    class FlakySink(RecordingSink):
        async def send(self, payload: dict) -> None:
            if not self.payloads:
                self.payloads.append({"event_type": "dropped"})
                raise EventDeliveryError("first send fails")
            await super().send(payload)

    sink = FlakySink()
    delivered = run(EventEmitter(sink).emit_all([_event(), _event()]))

    assert delivered is False
    assert [payload["event_type"] for payload in sink.payloads] == ["dropped", "REVIEW_SCHEDULE"]
