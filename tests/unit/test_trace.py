"""
Unit tests for trace entries and history trimming.
"""

import pytest

from smartrepo.config import TraceStrategy
from smartrepo.trace import AT_KEY, OP_KEY, TraceBuilder, TraceOp, TracePush, trim_history


class TestTraceEntry:
    """Tests for TraceBuilder.entry."""

    def test_entry_has_fixed_fields(self):
        builder = TraceBuilder(TraceStrategy.LATEST, context={"actor": "user:1"})
        entry = builder.entry(TraceOp.CREATE, at=1000)
        assert entry == {"actor": "user:1", "_op": "create", "_at": 1000}

    def test_merge_object_included(self):
        builder = TraceBuilder(TraceStrategy.LATEST, context={"actor": "user:1"})
        entry = builder.entry(TraceOp.UPDATE, at=5, merge_trace={"reason": "fix typo"})
        assert entry["reason"] == "fix typo"
        assert entry[OP_KEY] == "update"

    def test_fixed_fields_win_over_merge(self):
        """Merge data never overwrites _op, _at or the trace context."""
        builder = TraceBuilder(TraceStrategy.LATEST, context={"actor": "user:1"})
        entry = builder.entry(
            TraceOp.DELETE,
            at=7,
            merge_trace={"_op": "forged", "_at": 0, "actor": "user:evil"},
        )
        assert entry[OP_KEY] == "delete"
        assert entry[AT_KEY] == 7
        assert entry["actor"] == "user:1"

    def test_merge_object_not_mutated(self):
        merge = {"reason": "x"}
        TraceBuilder(TraceStrategy.LATEST).entry(TraceOp.UPDATE, at=1, merge_trace=merge)
        assert merge == {"reason": "x"}


class TestTraceHistory:
    """Tests for history values per strategy."""

    def test_latest_initial_is_entry(self):
        builder = TraceBuilder(TraceStrategy.LATEST)
        entry = builder.entry(TraceOp.CREATE, at=1)
        assert builder.initial(entry) == entry

    def test_list_strategies_start_with_one_entry(self):
        for strategy, limit in ((TraceStrategy.BOUNDED, 3), (TraceStrategy.UNBOUNDED, None)):
            builder = TraceBuilder(strategy, limit=limit)
            entry = builder.entry(TraceOp.CREATE, at=1)
            assert builder.initial(entry) == [entry]

    def test_bounded_append_evicts_oldest(self):
        builder = TraceBuilder(TraceStrategy.BOUNDED, limit=3)
        history = [builder.entry(TraceOp.CREATE, at=1)]
        for at in range(2, 8):
            history = builder.push(builder.entry(TraceOp.UPDATE, at=at)).apply(history)

        assert len(history) == 3
        assert [e[AT_KEY] for e in history] == [5, 6, 7]

    def test_bounded_limit_one_keeps_newest(self):
        builder = TraceBuilder(TraceStrategy.BOUNDED, limit=1)
        newest = builder.entry(TraceOp.UPDATE, at=2)
        assert builder.push(newest).apply([builder.entry(TraceOp.CREATE, at=1)]) == [newest]

    def test_unbounded_keeps_everything(self):
        builder = TraceBuilder(TraceStrategy.UNBOUNDED)
        history = []
        for at in range(50):
            history = builder.push(builder.entry(TraceOp.UPDATE, at=at)).apply(history)
        assert len(history) == 50
        assert history[0][AT_KEY] == 0

    def test_limit_ignored_for_non_bounded(self):
        assert TraceBuilder(TraceStrategy.UNBOUNDED, limit=2).limit is None


class TestTrimming:
    """Tests for trim_history and TracePush."""

    @pytest.mark.parametrize(
        "length,limit,expected",
        [(0, 3, []), (2, 3, [0, 1]), (3, 3, [0, 1, 2]), (5, 3, [2, 3, 4]), (5, None, [0, 1, 2, 3, 4])],
    )
    def test_trim(self, length, limit, expected):
        history = [{"n": i} for i in range(length)]
        assert [e["n"] for e in trim_history(history, limit)] == expected

    def test_push_onto_missing_history(self):
        push = TracePush(entries=({"n": 1},), keep_last=2)
        assert push.apply(None) == [{"n": 1}]

    def test_push_replaces_non_list_history(self):
        push = TracePush(entries=({"n": 2},), keep_last=None)
        assert push.apply({"n": 1}) == [{"n": 2}]
