"""Tests for the per-turn context window manager."""

from unittest.mock import MagicMock

import pytest

from windowkeeper.context import (
    TRUNCATION_NOTICE,
    ContextWindowInfo,
    ContextWindowManager,
    DeletionRange,
    EditLedger,
    Message,
    TruncationPlanner,
    TruncationPolicy,
    UsageSnapshot,
    estimate_view_tokens,
)
from windowkeeper.errors import ContextOverflowError, PersistenceError
from windowkeeper.storage import MemoryLedgerStore

# allowed_size == 800
WINDOW = ContextWindowInfo(capacity=1000, reserved_output_tokens=100, safety_buffer=100)
OVER = UsageSnapshot(input_tokens=850, output_tokens=50)
UNDER = UsageSnapshot(input_tokens=300, output_tokens=50)


@pytest.fixture
def store() -> MemoryLedgerStore:
    return MemoryLedgerStore()


@pytest.fixture
def manager(store: MemoryLedgerStore) -> ContextWindowManager:
    return ContextWindowManager(
        store=store,
        planner=TruncationPlanner(policy=TruncationPolicy.HALF),
    )


class TestPrepareTurn:
    def test_no_usage_returns_full_history(self, manager, make_history):
        session = manager.open_session("s1", make_history(10))

        result = manager.prepare_turn(session, WINDOW, None)

        assert result.view == list(session.history)
        assert result.deletion_range is None
        assert result.reduction_applied is False
        assert result.needs_reduction is False
        assert result.overflow is False

    def test_under_budget_optimizes_duplicates(self, manager, make_history):
        session = manager.open_session("s1", make_history(10, reads={3: "a.py", 9: "a.py"}))

        result = manager.prepare_turn(session, WINDOW, UNDER)

        assert result.reduction_applied is True
        assert result.optimized_blocks == 1
        assert result.deletion_range is None
        assert "superseded" in result.view[3].blocks[1].body
        assert result.view[9].blocks[1] == session.history[9].blocks[1]

    def test_optimizer_can_be_limited_to_over_budget(self, store, make_history):
        manager = ContextWindowManager(store=store, always_optimize=False)
        session = manager.open_session("s1", make_history(10, reads={3: "a.py", 9: "a.py"}))

        result = manager.prepare_turn(session, WINDOW, UNDER)

        assert result.reduction_applied is False
        assert session.ledger.is_empty
        assert store.load("s1") is None

    def test_truncates_when_over_budget(self, manager, make_history):
        session = manager.open_session("s1", make_history(10))

        result = manager.prepare_turn(session, WINDOW, OVER)

        assert result.needs_reduction is True
        assert result.reduction_applied is True
        assert result.deletion_range == DeletionRange(2, 12)
        assert len(result.view) == 10
        assert result.view[1].blocks[0].text.endswith(TRUNCATION_NOTICE)

    def test_repeated_pressure_extends_range(self, manager, make_history):
        session = manager.open_session("s1", make_history(10))

        manager.prepare_turn(session, WINDOW, OVER)
        result = manager.prepare_turn(session, WINDOW, OVER)

        assert result.deletion_range == DeletionRange(2, 16)
        assert len(result.view) == 6

    def test_optimization_alone_can_suffice(self, manager, make_history):
        history = make_history(10, reads={3: "a.py", 9: "a.py"}, body_size=4000)
        session = manager.open_session("s1", history)

        result = manager.prepare_turn(session, WINDOW, OVER)

        assert result.reduction_applied is True
        assert result.optimized_blocks == 1
        assert result.deletion_range is None
        assert len(result.view) == 20

    def test_converges_under_sustained_pressure(self, manager, make_history):
        session = manager.open_session("s1", make_history(10))
        ends = []
        for _ in range(10):
            result = manager.prepare_turn(session, WINDOW, OVER)
            if result.overflow:
                break
            ends.append(result.deletion_range.end)

        assert ends == [12, 16, 18]
        assert result.overflow is True

    def test_truncation_keeps_elided_content_visible(self, manager, make_history):
        history = make_history(4, reads={0: "a.py", 4: "a.py"}, body_size=40)
        session = manager.open_session("s1", history)

        result = manager.prepare_turn(session, WINDOW, OVER)

        assert result.deletion_range == DeletionRange(2, 6)
        assert result.view[0].blocks[1].body == history[0].blocks[1].body

    def test_latest_pair_always_in_view(self, manager, make_history):
        history = make_history(4)
        session = manager.open_session("s1", history)

        for _ in range(4):
            result = manager.prepare_turn(session, WINDOW, OVER)

        assert result.overflow is True
        assert result.view[-2:] == list(history)[-2:]

    def test_view_converges_below_allowed_size(self, store, make_history):
        """Usage tracking the view size shrinks the view until it fits."""
        history = make_history(40, reads={i: f"f{i}.py" for i in range(1, 80, 2)}, body_size=200)
        manager = ContextWindowManager(store=store)
        session = manager.open_session("s1", history)

        usage = UsageSnapshot(input_tokens=estimate_view_tokens(list(history)))
        for _ in range(10):
            result = manager.prepare_turn(session, WINDOW, usage)
            assert not result.overflow
            usage = UsageSnapshot(input_tokens=estimate_view_tokens(result.view))
            if usage.total < WINDOW.allowed_size:
                break

        assert usage.total < WINDOW.allowed_size
        assert result.view[0] == history[0]
        assert result.view[-1] == history[-1]

    def test_overflow_flag_and_raise(self, manager, make_history):
        session = manager.open_session("s1", make_history(2))

        result = manager.prepare_turn(session, WINDOW, OVER)

        assert result.overflow is True
        assert result.reduction_applied is False
        assert len(result.view) == 4
        with pytest.raises(ContextOverflowError):
            result.raise_for_overflow()

    def test_no_overflow_does_not_raise(self, manager, make_history):
        session = manager.open_session("s1", make_history(3))
        manager.prepare_turn(session, WINDOW, None).raise_for_overflow()

    def test_history_never_mutated(self, manager, make_history):
        history = make_history(10, reads={3: "a.py", 9: "a.py"})
        original = list(history)
        session = manager.open_session("s1", history)

        manager.prepare_turn(session, WINDOW, OVER)

        assert list(history) == original


class TestPersistence:
    def test_saves_before_returning(self, manager, store, make_history):
        session = manager.open_session("s1", make_history(10))

        manager.prepare_turn(session, WINDOW, OVER)

        saved = store.load("s1")
        assert saved == session.ledger
        assert saved.revision == 1
        assert saved.deletion_range == DeletionRange(2, 12)

    def test_unchanged_ledger_not_saved_again(self, make_history):
        store = MagicMock()
        store.load.return_value = None
        manager = ContextWindowManager(store=store)
        session = manager.open_session("s1", make_history(5))

        manager.prepare_turn(session, WINDOW, None)
        manager.prepare_turn(session, WINDOW, None)

        # First turn advances the optimizer watermark, the second changes nothing
        assert store.save.call_count == 1
        assert session.ledger.revision == 1

    def test_resume_reproduces_view(self, store, make_history):
        # Small bodies: superseding them saves nothing, so truncation kicks in too
        history = make_history(10, reads={3: "a.py", 9: "a.py"}, body_size=40)
        planner = TruncationPlanner(policy=TruncationPolicy.HALF)

        first = ContextWindowManager(store=store, planner=planner)
        session = first.open_session("s1", history)
        before_restart = first.prepare_turn(session, WINDOW, OVER).view

        second = ContextWindowManager(store=store, planner=planner)
        resumed = second.open_session("s1", history)
        after_restart = second.prepare_turn(resumed, WINDOW, None).view

        assert resumed.ledger.deletion_range == DeletionRange(2, 12)
        assert after_restart == before_restart

    def test_save_failure_becomes_warning(self, make_history):
        store = MagicMock()
        store.load.return_value = None
        store.save.side_effect = PersistenceError("disk full", session_id="s1")
        manager = ContextWindowManager(store=store, planner=TruncationPlanner(policy="half"))
        session = manager.open_session("s1", make_history(10))

        result = manager.prepare_turn(session, WINDOW, OVER)

        assert result.warnings == ["disk full"]
        assert result.deletion_range == DeletionRange(2, 12)
        assert len(result.view) == 10

    def test_load_failure_starts_empty(self, make_history):
        store = MagicMock()
        store.load.side_effect = PersistenceError("corrupt record", session_id="s1")
        manager = ContextWindowManager(store=store)

        session = manager.open_session("s1", make_history(5))

        assert session.ledger == EditLedger()
        result = manager.prepare_turn(session, WINDOW, None)
        assert result.warnings == ["corrupt record"]
        # Reported once
        assert manager.prepare_turn(session, WINDOW, None).warnings == []


class TestStatus:
    def test_get_status(self, manager, make_history):
        session = manager.open_session("s1", make_history(10))
        manager.prepare_turn(session, WINDOW, OVER)

        status = manager.get_status(session)

        assert status["session_id"] == "s1"
        assert status["history_messages"] == 20
        assert status["view_messages"] == 10
        assert status["elided_messages"] == 10
        assert status["deletion_range"] == {"start": 2, "end": 12}
        assert status["updates"] == 1
        assert status["watermark"] == 20
        assert status["revision"] == 1
        assert status["token_estimate"] > 0

    def test_default_store_is_in_memory(self):
        assert isinstance(ContextWindowManager().store, MemoryLedgerStore)

    def test_appending_history_between_turns(self, manager, make_history):
        session = manager.open_session("s1", make_history(10))
        manager.prepare_turn(session, WINDOW, OVER)

        session.history.append(Message.text("user", "next question"))
        result = manager.prepare_turn(session, WINDOW, UNDER)

        assert result.deletion_range == DeletionRange(2, 12)
        assert result.view[-1].blocks[0].text == "next question"
