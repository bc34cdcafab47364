from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Protocol, TypeVar

import httpx
from pydantic_core import to_jsonable_python

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class EventType(str, Enum):
    ADD_ITEM = "ADD_ITEM"
    UPDATE_ITEM = "UPDATE_ITEM"
    REMOVE_ITEM = "REMOVE_ITEM"
    REJECT_ITEM = "REJECT_ITEM"
    ADD_SCHEDULE = "ADD_SCHEDULE"
    REMOVE_SCHEDULE = "REMOVE_SCHEDULE"
    RESCHEDULE = "RESCHEDULE"
    REVIEW_SCHEDULE = "REVIEW_SCHEDULE"
    CREATE_SECTION = "CREATE_SECTION"
    UPDATE_SECTION = "UPDATE_SECTION"
    DELETE_SECTION = "DELETE_SECTION"
    ADD_SECTION_ITEM = "ADD_SECTION_ITEM"
    REMOVE_SECTION_ITEM = "REMOVE_SECTION_ITEM"


class EventDeliveryError(Exception):
    """Raised by a sink when an event could not be handed off."""


@dataclass(slots=True)
class CorpusEvent:
    event_type: EventType
    entity: Any
    actor: str
    timestamp: datetime
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event_type": self.event_type.value,
            "actor": self.actor,
            "timestamp": self.timestamp.isoformat(),
            "entity": to_jsonable_python(self.entity),
        }
        payload.update(to_jsonable_python(self.extra))
        return payload


@dataclass(slots=True)
class MutationResult(Generic[RecordT]):
    record: RecordT
    events_delivered: bool = True


class EventSink(Protocol):
    async def send(self, payload: dict[str, Any]) -> None: ...


class LoggingEventSink:
    async def send(self, payload: dict[str, Any]) -> None:
        logger.info("corpus event type=%s actor=%s", payload.get("event_type"), payload.get("actor"))


class HttpEventSink:
    """POSTs each event payload as JSON to a collector endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def send(self, payload: dict[str, Any]) -> None:
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload)
                response.raise_for_status()
                return
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EventDeliveryError(f"event sink rejected {payload.get('event_type')}: {exc}") from exc


class EventEmitter:
    """Hands committed mutations to the sink. Delivery failures are logged, never raised."""

    def __init__(self, sink: EventSink | None = None) -> None:
        self.sink = sink or LoggingEventSink()

    async def emit(self, event: CorpusEvent) -> bool:
        try:
            await self.sink.send(event.to_payload())
        except EventDeliveryError as exc:
            logger.warning("event delivery degraded type=%s error=%s", event.event_type.value, exc)
            return False
        return True

    async def emit_all(self, events: list[CorpusEvent]) -> bool:
        delivered = True
        for event in events:
            delivered = await self.emit(event) and delivered
        return delivered
