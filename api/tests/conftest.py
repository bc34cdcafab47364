from __future__ import annotations

import asyncio
import os
from collections.abc import Coroutine
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import pytest

os.environ.setdefault("CC_OTEL_ENABLED", "false")
os.environ.setdefault("CC_STORAGE_BACKEND", "memory")

from curated_corpus.core.config import Settings  # noqa: E402
from curated_corpus.services.engine import CorpusEngine, build_engine  # noqa: E402
from curated_corpus.services.events import EventDeliveryError  # noqa: E402
from curated_corpus.services.store import InMemoryStore  # noqa: E402

T = TypeVar("T")


class RecordingSink:
    def __init__(self) -> None:
        self.payloads: list[dict[str, Any]] = []

    async def send(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for payload in self.payloads if payload["event_type"] == event_type]


class FailingSink:
    async def send(self, payload: dict[str, Any]) -> None:
        raise EventDeliveryError("collector offline")


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2029, 12, 15, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def engine(sink: RecordingSink, clock: FrozenClock) -> CorpusEngine:
    return build_engine(
        InMemoryStore(),
        settings=Settings(storage_backend="memory", otel_enabled=False, reason_max_length=20),
        sink=sink,
        clock=clock,
    )


async def create_item(engine: CorpusEngine, url: str, **overrides: Any):
    fields: dict[str, Any] = {
        "url": url,
        "title": "A Story",
        "excerpt": "Something worth reading.",
        "status": "RECOMMENDATION",
        "language": "EN",
        "source": "MANUAL",
        "topic": "SCIENCE",
        "actor": "curator-1",
    }
    fields.update(overrides)
    result = await engine.corpus.create_approved_item(**fields)
    return result.record.item
