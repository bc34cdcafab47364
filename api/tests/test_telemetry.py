import logging

from fastapi import FastAPI

from curated_corpus.core.config import Settings
from curated_corpus.core.telemetry import configure_api_logging, parse_otlp_headers, setup_api_telemetry


def test_parse_otlp_headers_skips_malformed_pairs() -> None:
    assert parse_otlp_headers(None) == {}
    assert parse_otlp_headers("api-key=abc, x-team = curation ,broken,=nokey") == {
        "api-key": "abc",
        "x-team": "curation",
    }


def test_disabled_telemetry_leaves_app_uninstrumented() -> None:
    runtime = setup_api_telemetry(FastAPI(), Settings(otel_enabled=False))
    assert runtime.enabled is False
    assert runtime.provider is None


def test_log_records_carry_trace_fields() -> None:
    configure_api_logging()
    record = logging.getLogRecordFactory()("curated_corpus", logging.INFO, __file__, 1, "hello", (), None)
    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16


def test_repeated_logging_setup_installs_one_record_factory() -> None:
    configure_api_logging()
    factory = logging.getLogRecordFactory()
    configure_api_logging()
    assert logging.getLogRecordFactory() is factory
