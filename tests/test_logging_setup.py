from __future__ import annotations

import logging

import pytest

from event_replay.infra.logging.setup import (
    StdStreamToLogger,
    closeLogger,
    createCommandLogger,
    logEvent,
    mapLogLevel,
)


@pytest.mark.parametrize(
    "name, level",
    [("ERROR", logging.ERROR), ("warn", logging.WARNING), ("WARNING", logging.WARNING), (" info ", logging.INFO), ("DEBUG", logging.DEBUG)],
)
def test_map_log_level(name, level):
    assert mapLogLevel(name) == level


def test_map_log_level_rejects_unknown_name():
    with pytest.raises(ValueError):
        mapLogLevel("TRACE")


def test_command_log_masks_token_and_fills_defaults(tmp_path):
    logger, path = createCommandLogger("send linkedin", str(tmp_path), "run-1", "INFO", secrets=["tok-secret"])
    try:
        logEvent(logger, logging.INFO, "run-1", "send", "auth header Bearer tok-secret")
        logger.info("plain message")
        logger.debug("hidden")
    finally:
        closeLogger(logger)

    assert path.endswith("send-linkedin_run-1.log")
    with open(path, encoding="utf-8") as f:
        lines = f.read().splitlines()
    assert len(lines) == 2
    assert "comp=send msg=auth header Bearer ***" in lines[0]
    assert "tok-secret" not in lines[0]
    assert "runId=run-1 comp=core msg=plain message" in lines[1]


def test_std_stream_logger_writes_whole_lines(tmp_path):
    logger, path = createCommandLogger("validate", str(tmp_path), "run-2", "INFO")
    stream = StdStreamToLogger(logger, logging.INFO, "run-2", "stdout")
    try:
        stream.write("first ")
        stream.write("line\n\nsecond")
        stream.flush()
    finally:
        closeLogger(logger)

    with open(path, encoding="utf-8") as f:
        lines = f.read().splitlines()
    assert [line.split("msg=", 1)[1] for line in lines] == ["first line", "second"]
    assert all("comp=stdout" in line for line in lines)
