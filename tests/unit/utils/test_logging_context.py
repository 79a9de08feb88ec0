"""
Tests for structured logging and correlation id binding.
"""

import asyncio
import json
import logging

import pytest

from blueprintforge.utils.logging import (
    JsonFormatter,
    LogContext,
    RequestContextFilter,
    get_log_context,
    get_logger,
    new_correlation_id,
    setup_logger,
)


def make_record(logger_name="blueprintforge.test", msg="hello", **extra):
    record = logging.LogRecord(logger_name, logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestCorrelationIds:
    """Test correlation id generation and binding."""

    def test_new_ids_are_unique_hex(self):
        first, second = new_correlation_id(), new_correlation_id()

        assert first != second
        assert len(first) == 32
        int(first, 16)

    def test_context_is_bound_and_restored(self):
        logger = get_logger("blueprintforge.test.context")
        assert get_log_context() == {}

        with LogContext(logger, correlation_id="abc", spec="blueprint"):
            assert get_log_context() == {"correlation_id": "abc", "spec": "blueprint"}
            with LogContext(logger, stage="primary"):
                assert get_log_context()["correlation_id"] == "abc"
                assert get_log_context()["stage"] == "primary"
            assert "stage" not in get_log_context()

        assert get_log_context() == {}

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_ids(self):
        logger = get_logger("blueprintforge.test.tasks")

        async def worker(correlation_id):
            with LogContext(logger, correlation_id=correlation_id):
                await asyncio.sleep(0)
                return get_log_context()["correlation_id"]

        results = await asyncio.gather(worker("one"), worker("two"))

        assert results == ["one", "two"]


class TestRequestContextFilter:
    """Test the filter that stamps records."""

    def test_default_id_without_context(self):
        record = make_record()

        RequestContextFilter("default-id").filter(record)

        assert record.correlation_id == "default-id"
        assert record.context == {}

    def test_bound_id_wins(self):
        logger = get_logger("blueprintforge.test.filter")
        record = make_record()

        with LogContext(logger, correlation_id="bound", provider="primary"):
            RequestContextFilter("default-id").filter(record)

        assert record.correlation_id == "bound"
        assert record.context == {"provider": "primary"}


class TestJsonFormatter:
    """Test JSON output."""

    def test_includes_extra_fields_and_context(self):
        record = make_record(event="provider.success", provider="primary")
        record.correlation_id = "abc"
        record.context = {"spec": "blueprint"}

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["correlation_id"] == "abc"
        assert data["event"] == "provider.success"
        assert data["provider"] == "primary"
        assert data["spec"] == "blueprint"

    def test_non_serializable_values_are_stringified(self):
        record = make_record(payload={1, 2})

        data = json.loads(JsonFormatter().format(record))

        assert isinstance(data["payload"], str)


class TestSetupLogger:
    """Test logger configuration."""

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logger("blueprintforge.test.setup")
        logger = setup_logger("blueprintforge.test.setup")

        assert len(logger.handlers) == 1
        assert sum(isinstance(f, RequestContextFilter) for f in logger.filters) == 1

    def test_text_format(self):
        logger = setup_logger("blueprintforge.test.text", log_format="text")

        assert not isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_level_from_string(self):
        logger = setup_logger("blueprintforge.test.level", level="debug")

        assert logger.level == logging.DEBUG

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "pipeline.log"
        logger = setup_logger(
            "blueprintforge.test.file",
            add_console_handler=False,
            add_file_handler=True,
            log_file=str(log_file),
        )

        logger.info("written", extra={"event": "test.file"})
        for handler in logger.handlers:
            handler.flush()

        line = json.loads(log_file.read_text().strip())
        assert line["event"] == "test.file"
        assert line["correlation_id"] == "-"
