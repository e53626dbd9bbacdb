"""Tests for structured logging."""

import logging

import orjson

from classroom_rag.core.logging import JsonFormatter, log_context, request_context


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("classroom_rag.test", logging.INFO, __file__, 1, "Ingest %s", ("done",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_context_fields_are_emitted() -> None:
    payload = orjson.loads(JsonFormatter().format(_record(**log_context(document_id="doc1", chunks=3))))
    assert payload["message"] == "Ingest done"
    assert payload["level"] == "INFO"
    assert payload["ctx_document_id"] == "doc1"
    assert payload["ctx_chunks"] == 3


def test_request_context_applies_inside_block_only() -> None:
    formatter = JsonFormatter()
    with request_context(request_id="r1", account_id="teacher-1", ignored=None):
        inside = orjson.loads(formatter.format(_record()))
    outside = orjson.loads(formatter.format(_record()))
    assert inside["ctx_request_id"] == "r1"
    assert inside["ctx_account_id"] == "teacher-1"
    assert "ctx_ignored" not in inside
    assert "ctx_request_id" not in outside
