"""
Tests for loguru setup and stdlib logging interception.
"""

import json
import logging
import sys

import pytest
from loguru import logger

from branchcore.core import logging_config
from branchcore.core.logging_config import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root_handlers = list(logging.getLogger().handlers)
    root_level = logging.getLogger().level
    yield
    logger.remove()
    logger.add(sys.stderr)
    logging.getLogger().handlers = root_handlers
    logging.getLogger().setLevel(root_level)
    logging_config._CONFIGURED = False


def test_plain_sink(tmp_path):
    log_file = tmp_path / "branchcore.log"
    configure_logging(level="INFO", json_format=False, sink=str(log_file))

    logger.info("branch created: main")
    logger.debug("not written at INFO")
    logger.complete()

    text = log_file.read_text()
    assert "branch created: main" in text
    assert "not written at INFO" not in text
    assert logging_config.is_configured()


def test_json_sink(tmp_path):
    log_file = tmp_path / "branchcore.jsonl"
    configure_logging(level="DEBUG", json_format=True, sink=str(log_file))

    logger.warning("task store degraded")
    logger.complete()

    records = [json.loads(line) for line in log_file.read_text().splitlines() if line]
    messages = [r["record"]["message"] for r in records]
    assert "task store degraded" in messages


def test_stdlib_logging_is_intercepted(tmp_path):
    log_file = tmp_path / "intercepted.log"
    configure_logging(level="INFO", json_format=False, sink=str(log_file))

    logging.getLogger("some.library").warning("from stdlib")
    logger.complete()

    assert "from stdlib" in log_file.read_text()


def test_log_format_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_FORMAT", "json")
    log_file = tmp_path / "env.jsonl"
    configure_logging(level="INFO", sink=str(log_file))

    logger.info("json via env")
    logger.complete()

    first = json.loads(log_file.read_text().splitlines()[-1])
    assert first["record"]["message"] == "json via env"
