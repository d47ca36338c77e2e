"""
Tests for the JSON log format.
"""

import io
import json
import logging

import pytest

from dojo.shared.logging import StructuredFormatter, log_with_context


@pytest.fixture
def captured():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger("dojo.tests.structured")
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    yield logger, stream
    logger.removeHandler(handler)


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_trainee_context_is_top_level(captured):
    logger, stream = captured

    log_with_context(
        logger,
        logging.INFO,
        "Promoted white -> yellow",
        user_id="user-1",
        action="belt_promotion",
        session_id=None,
        enrollment_id="enr-1",
        attempts=2,
    )

    (line,) = _lines(stream)
    assert line["message"] == "Promoted white -> yellow"
    assert line["level"] == "INFO"
    assert line["logger"] == "dojo.tests.structured"
    assert line["user_id"] == "user-1"
    assert line["enrollment_id"] == "enr-1"
    assert line["action"] == "belt_promotion"
    assert "session_id" not in line
    assert line["attempts"] == 2


def test_unserializable_extras_fall_back_to_text(captured, tmp_path):
    logger, stream = captured

    logger.warning("Store moved", extra={"path": tmp_path})

    (line,) = _lines(stream)
    assert line["path"] == str(tmp_path)
    assert "user_id" not in line


def test_exceptions_are_included(captured):
    logger, stream = captured

    try:
        raise ValueError("bad belt")
    except ValueError:
        logger.exception("Belt lookup failed")

    (line,) = _lines(stream)
    assert line["level"] == "ERROR"
    assert "ValueError: bad belt" in line["exception"]
