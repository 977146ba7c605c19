import json
import logging

import pytest

from planwise.logging_setup import configure_logging


@pytest.fixture
def restore_logging():
    yield
    # Rebind the handler after capsys has restored sys.stdout
    configure_logging()


def test_production_logs_json_lines(restore_logging, capsys):
    configure_logging("production", "info")
    logging.getLogger("planwise.storage").info("Saved lesson %s", 3)
    line = capsys.readouterr().out.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["level"] == "INFO"
    assert record["logger"] == "planwise.storage"
    assert record["message"] == "Saved lesson 3"
    assert record["timestamp"].endswith("Z")


def test_reconfiguring_does_not_stack_handlers(restore_logging, capsys):
    configure_logging("development", "DEBUG")
    configure_logging("development", "DEBUG")
    assert len(logging.getLogger("planwise").handlers) == 1
    logging.getLogger("planwise.client").debug("hello")
    out = capsys.readouterr().out
    assert out.count("hello") == 1
    assert "[planwise.client]" in out
