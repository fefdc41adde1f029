"""
Tests for structured log output and request ID propagation.
"""
import io
import json
import logging

import httpx
import pytest
import structlog

from storefront.core.logging import setup_logging
from storefront.main import app


@pytest.fixture
def log_stream():
    """Route log output into a buffer and restore logging afterwards"""
    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    stream = io.StringIO()

    yield stream

    root_logger.handlers = saved_handlers
    root_logger.setLevel(saved_level)
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def json_lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def find_event(lines, event):
    return next(line for line in lines if line["event"] == event)


class TestJsonOutput:
    """Tests for LOG_FORMAT=json"""

    def test_stdlib_record_is_rendered_as_json(self, log_stream):
        setup_logging(log_level="INFO", log_format="json", stream=log_stream)

        logging.getLogger("storefront.services.catalog_service").info(
            "Keyword search matched 3 products", extra={"matched": 3}
        )

        lines = json_lines(log_stream)
        line = find_event(lines, "Keyword search matched 3 products")
        assert line["level"] == "info"
        assert line["logger"] == "storefront.services.catalog_service"
        assert line["matched"] == 3
        assert "timestamp" in line

    def test_every_line_is_json(self, log_stream):
        setup_logging(log_level="DEBUG", log_format="json", stream=log_stream)

        logging.getLogger("storefront").debug("first")
        logging.getLogger("storefront").warning("second %s", "formatted")

        lines = json_lines(log_stream)
        assert lines[0]["event"].startswith("Logging configured")
        assert find_event(lines, "second formatted")["level"] == "warning"

    def test_structlog_logger_shares_the_handler(self, log_stream):
        setup_logging(log_level="INFO", log_format="json", stream=log_stream)

        structlog.get_logger("storefront.indexer").info("embedding_stored", product_id=7)

        line = find_event(json_lines(log_stream), "embedding_stored")
        assert line["product_id"] == 7
        assert line["logger"] == "storefront.indexer"
        assert line["level"] == "info"

    def test_level_filters_records(self, log_stream):
        setup_logging(log_level="WARNING", log_format="json", stream=log_stream)

        logging.getLogger("storefront").info("hidden")
        structlog.get_logger("storefront").info("also_hidden")

        assert json_lines(log_stream) == []

    def test_exception_traceback_included(self, log_stream):
        setup_logging(log_level="INFO", log_format="json", stream=log_stream)

        try:
            raise ValueError("bad vector")
        except ValueError:
            logging.getLogger("storefront").exception("Vector search failed")

        line = find_event(json_lines(log_stream), "Vector search failed")
        assert line["level"] == "error"
        assert "ValueError: bad vector" in line["exception"]

    def test_bound_context_is_added(self, log_stream):
        setup_logging(log_level="INFO", log_format="json", stream=log_stream)
        structlog.contextvars.bind_contextvars(request_id="abc123")

        logging.getLogger("storefront").info("inside request")

        assert find_event(json_lines(log_stream), "inside request")["request_id"] == "abc123"


class TestConsoleOutput:
    """Tests for LOG_FORMAT=console"""

    def test_console_line_is_not_json(self, log_stream):
        setup_logging(log_level="INFO", log_format="console", stream=log_stream)

        logging.getLogger("storefront").info("Model loaded")

        output = log_stream.getvalue()
        assert "Model loaded" in output
        with pytest.raises(json.JSONDecodeError):
            json.loads(output.splitlines()[-1])


class TestRequestLogging:
    """Tests for the request logging middleware"""

    async def test_request_lines_carry_request_id(self, log_stream):
        setup_logging(log_level="INFO", log_format="json", stream=log_stream)

        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"
        lines = [line for line in json_lines(log_stream) if "phase" in line]
        assert [line["phase"] for line in lines] == ["request_start", "request_end"]
        assert all(line["request_id"] == "req-42" for line in lines)
        assert lines[0]["path"] == "/"
        assert lines[1]["status_code"] == 200
