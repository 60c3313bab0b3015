from __future__ import annotations

import io
import logging

import anyenv
import pytest

from arena_templates.log import configure_logging, get_logger


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    logging.basicConfig(force=True, level=logging.WARNING)


def test_json_logs_go_to_stream():
    stream = io.StringIO()
    configure_logging("DEBUG", json_logs=True, stream=stream)
    get_logger("tests.json").info("Stored new version", version="abc")
    record = anyenv.load_json(stream.getvalue().splitlines()[-1])
    assert record["event"] == "Stored new version"
    assert record["version"] == "abc"
    assert record["logger"] == "arena_templates.tests.json"
    assert record["level"] == "info"


def test_level_filters_records():
    stream = io.StringIO()
    configure_logging(logging.WARNING, json_logs=True, stream=stream)
    get_logger("tests.level").info("hidden")
    assert stream.getvalue() == ""


def test_noisy_loggers_are_quieted():
    configure_logging("INFO", stream=io.StringIO())
    assert logging.getLogger("httpx").level == logging.WARNING


def test_unknown_level():
    with pytest.raises(ValueError, match="unknown log level"):
        configure_logging("LOUD", stream=io.StringIO())


def test_package_loggers_keep_their_name():
    get_logger("arena_templates_sync.example", log_level="ERROR")
    assert logging.getLogger("arena_templates_sync.example").level == logging.ERROR
