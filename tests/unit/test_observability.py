"""Unit tests for logging setup and the traced decorator."""

import json
import logging
import os
from collections.abc import Iterator
from unittest.mock import patch

import pytest
from opentelemetry.sdk.trace import TracerProvider

from menu_sync_service.errors import TransientSyncError
from menu_sync_service.observability.config import TraceContextFilter, configure_logging
from menu_sync_service.observability.decorators import traced


@pytest.fixture
def restore_root_logger() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for configure_logging."""

    @patch.dict(os.environ, {}, clear=True)
    def test_json_output(self, restore_root_logger: logging.Logger) -> None:
        configure_logging("DEBUG")

        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert logging.getLogger("botocore").level == logging.WARNING

        record = logging.LogRecord("menu_sync_service.test", logging.INFO, "", 0, "synced", None, None)
        line = json.loads(root.handlers[0].format(record))
        assert line["message"] == "synced"
        assert line["level"] == "INFO"
        assert line["service"] == "menu-sync-svc"

    @patch.dict(os.environ, {"LOG_LEVEL": "warning"}, clear=True)
    def test_environment_overrides_argument(self, restore_root_logger: logging.Logger) -> None:
        configure_logging("DEBUG")

        assert restore_root_logger.level == logging.WARNING

    @patch.dict(os.environ, {}, clear=True)
    def test_unknown_level_falls_back_to_info(self, restore_root_logger: logging.Logger) -> None:
        configure_logging("CHATTY")

        assert restore_root_logger.level == logging.INFO


@pytest.mark.unit
class TestTraceContextFilter:
    """Tests for trace id injection into log records."""

    def test_adds_ids_inside_a_span(self) -> None:
        tracer = TracerProvider().get_tracer("test")
        record = logging.LogRecord("test", logging.INFO, "", 0, "msg", None, None)

        with tracer.start_as_current_span("sync") as span:
            assert TraceContextFilter().filter(record) is True

        assert record.trace_id == format(span.get_span_context().trace_id, "032x")

    def test_no_span_leaves_record_alone(self) -> None:
        record = logging.LogRecord("test", logging.INFO, "", 0, "msg", None, None)

        assert TraceContextFilter().filter(record) is True
        assert not hasattr(record, "trace_id")


@pytest.mark.unit
class TestTraced:
    """Tests for the traced decorator."""

    def test_sync_function(self) -> None:
        @traced("compute")
        def compute(value: int) -> int:
            return value * 2

        assert compute(21) == 42
        assert compute.__name__ == "compute"

    @pytest.mark.asyncio
    async def test_async_function(self) -> None:
        @traced()
        async def fetch() -> str:
            return "catalog"

        assert await fetch() == "catalog"

    @pytest.mark.asyncio
    async def test_exceptions_are_reraised(self) -> None:
        @traced("submit")
        async def submit() -> None:
            raise TransientSyncError("platform timed out", code="PLATFORM_TIMEOUT")

        with pytest.raises(TransientSyncError):
            await submit()
