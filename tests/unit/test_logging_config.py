"""
Tests for the context id logging filter.
"""

import contextvars
import logging
from shared.logging_config import ContextIdFilter, set_correlation_id, set_execution_id, set_node_id


def make_record(**extra):
    record = logging.LogRecord("flow", logging.INFO, __file__, 1, "msg", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def filtered(**extra):
    record = make_record(**extra)
    assert ContextIdFilter().filter(record)
    return record


def test_filter_fills_ids_from_context():
    def in_context():
        set_correlation_id("corr-1")
        set_execution_id("exec-1")
        set_node_id("fetch")
        return filtered()

    record = contextvars.copy_context().run(in_context)

    assert (record.correlation_id, record.execution_id, record.node_id) == ("corr-1", "exec-1", "fetch")


def test_explicit_extra_wins_over_context():
    def in_context():
        set_node_id("fetch")
        return filtered(node_id="reply")

    record = contextvars.copy_context().run(in_context)

    assert record.node_id == "reply"


def test_missing_ids_are_blank():
    record = contextvars.Context().run(filtered)

    assert (record.correlation_id, record.execution_id, record.node_id) == ("", "", "")
