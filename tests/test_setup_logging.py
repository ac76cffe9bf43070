import json
import logging
import os

from hls_runner.core.config import config
from hls_runner.core.setup_logging import (
    ContextTextFormatter,
    JSONFormatter,
    LogContext,
    get_uvicorn_log_config,
    setup_logging,
)


def _record(message="hello", **extra):
    record = logging.LogRecord("hls_runner.test", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_custom_fields():
    payload = json.loads(
        JSONFormatter().format(_record(conversion_id="c1", pipeline="video", other="ignored"))
    )
    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["conversion_id"] == "c1"
    assert payload["pipeline"] == "video"
    assert "other" not in payload


def test_setup_logging_writes_rotating_file():
    logger = setup_logging("HLS Test", json_format=True)
    logger.info("written to file", extra={"rendition": "720p"})
    for handler in logger.handlers:
        handler.flush()

    log_path = os.path.join(config.LOG_DIRECTORY, "hls_test.log")
    with open(log_path, encoding="utf-8") as handle:
        lines = handle.read().splitlines()
    assert json.loads(lines[-1])["rendition"] == "720p"

    # Reconfiguring replaces the handlers instead of stacking them
    count = len(logger.handlers)
    assert len(setup_logging("HLS Test").handlers) == count


def test_text_formatter_prefixes_conversion_context():
    formatter = ContextTextFormatter()
    assert formatter.format(_record()).endswith(" - hello")
    assert formatter.format(_record(conversion_id="c1", pipeline="thumbnails")).startswith(
        "[c1/thumbnails] "
    )


def test_log_context_fills_missing_fields_while_active():
    logger = logging.getLogger("hls_runner.context_test")
    logger.propagate = False
    captured = []

    class _Capture(logging.Handler):
        def emit(self, record):
            captured.append(record)

    handler = _Capture()
    logger.addHandler(handler)
    try:
        with LogContext(logger, conversion_id="abc", pipeline="video"):
            logger.warning("inside")
            logger.warning("explicit", extra={"conversion_id": "other"})
        logger.warning("outside")
    finally:
        logger.removeHandler(handler)

    assert (captured[0].conversion_id, captured[0].pipeline) == ("abc", "video")
    assert captured[1].conversion_id == "other"
    assert not hasattr(captured[2], "conversion_id")
    assert handler.filters == []


def test_uvicorn_log_config():
    log_config = get_uvicorn_log_config()
    assert log_config["handlers"]["default"]["formatter"] == "default"
    assert get_uvicorn_log_config(json_format=True)["handlers"]["access"]["formatter"] == "json"
    assert log_config["handlers"]["file"]["filename"].startswith(config.LOG_DIRECTORY)
