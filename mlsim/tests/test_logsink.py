import logging

import pytest

from mlsim.logsink import TRACE, LogSink, level_number


def test_level_names_map_to_logging_levels():
    assert level_number("trace") == TRACE
    assert level_number("WARN") == logging.WARNING
    assert level_number("fatal") == logging.CRITICAL
    assert level_number(logging.INFO) == logging.INFO
    assert logging.getLevelName(TRACE) == "TRACE"
    with pytest.raises(ValueError):
        level_number("loud")


def test_entries_are_routed_to_category_loggers(caplog):
    sink = LogSink()
    with caplog.at_level(logging.DEBUG, logger="mlsim"):
        sink.warn("careful", "script")
        sink.debug("resolving", "file")
    records = [(r.name, r.levelno, r.getMessage()) for r in caplog.records]
    assert ("mlsim.script", logging.WARNING, "careful") in records
    assert ("mlsim.file", logging.DEBUG, "resolving") in records


def test_level_and_category_filters():
    sink = LogSink(level="info", categories=["script"])
    assert sink.debug("hidden", "script") is None
    assert sink.info("hidden", "file") is None
    entry = sink.error("shown", "script")
    assert entry is not None and entry.level == "error"
    sink.add_category("file")
    assert sink.info("now shown", "file") is not None
    sink.remove_category("file")
    sink.set_level("trace")
    assert sink.trace("deep", "script").level == "trace"


def test_ring_buffer_keeps_recent_entries():
    sink = LogSink(buffer_size=3)
    for i in range(5):
        sink.info(f"message {i}")
    entries = sink.entries()
    assert [e.message for e in entries] == ["message 2", "message 3", "message 4"]
    assert [e.seq for e in entries] == [3, 4, 5]
    assert [e.message for e in sink.entries(limit=1)] == ["message 4"]
    assert sink.entries(category="other") == []
    sink.clear()
    assert sink.entries() == []
