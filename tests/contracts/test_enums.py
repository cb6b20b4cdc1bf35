"""Tests for contracts enums."""

import pytest


class TestNodeKind:
    """NodeKind values are the ``kind`` discriminators in scenario files."""

    def test_has_all_kinds(self) -> None:
        from tokensim.contracts import NodeKind

        assert {k.value for k in NodeKind} == {
            "source",
            "queue",
            "process",
            "fsm",
            "enhanced_fsm",
            "sink",
            "module",
        }

    def test_compares_as_string(self) -> None:
        """(str, Enum) lets configs store the kind as a plain string."""
        from tokensim.contracts import NodeKind

        assert NodeKind.SOURCE == "source"
        assert NodeKind("enhanced_fsm") is NodeKind.ENHANCED_FSM


class TestPhases:
    """Built-in machine states per node kind."""

    @pytest.mark.parametrize(
        ("phase_name", "expected"),
        [
            ("SourcePhase", {"source_idle", "source_generating", "source_emitting"}),
            (
                "QueuePhase",
                {"queue_idle", "queue_accumulating", "queue_processing", "queue_emitting"},
            ),
            ("ProcessPhase", {"process_idle", "process_emitting"}),
            ("SinkPhase", {"sink_idle", "sink_processing"}),
        ],
    )
    def test_phase_values(self, phase_name: str, expected: set[str]) -> None:
        import tokensim.contracts as contracts

        phase = getattr(contracts, phase_name)
        assert {p.value for p in phase} == expected

    def test_phase_equals_stored_state_string(self) -> None:
        """current_state is stored as str; phases compare equal to it."""
        from tokensim.contracts import QueuePhase

        assert "queue_idle" == QueuePhase.IDLE
        assert "queue_idle" in (QueuePhase.IDLE, QueuePhase.ACCUMULATING)


class TestAggregationMethod:
    def test_methods(self) -> None:
        from tokensim.contracts import AggregationMethod

        assert [m.value for m in AggregationMethod] == ["sum", "average", "count", "first", "last"]

    def test_unknown_method_rejected(self) -> None:
        from tokensim.contracts import AggregationMethod

        with pytest.raises(ValueError):
            AggregationMethod("median")


class TestFsmEnums:
    def test_trigger_kinds(self) -> None:
        from tokensim.contracts import TriggerKind

        assert {t.value for t in TriggerKind} == {"token_received", "condition", "timer"}

    def test_action_kinds(self) -> None:
        from tokensim.contracts import ActionKind

        assert {a.value for a in ActionKind} == {
            "emit",
            "log",
            "set_variable",
            "increment",
            "decrement",
        }


class TestLedgerAction:
    def test_error_action_exists(self) -> None:
        """Isolated failures are recorded with action 'error'."""
        from tokensim.contracts import LedgerAction

        assert LedgerAction.ERROR.value == "error"

    def test_values_are_unique(self) -> None:
        from tokensim.contracts import LedgerAction

        values = [a.value for a in LedgerAction]
        assert len(values) == len(set(values))
