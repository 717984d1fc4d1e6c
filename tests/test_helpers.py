"""Tests for entitystate.helpers."""

import pytest

from entitystate.helpers import build_states, build_transitions, create_state, log_action_execution
from entitystate.types import STATE_NEW, ExecutionContext, Identifier, State, StateType


# ── create_state ───────────────────────────────────────────────────────────────

class TestCreateState:
    def test_returns_state(self):
        assert isinstance(create_state("a"), State)

    def test_defaults(self):
        s = create_state("a")
        assert s.kind is StateType.NORMAL
        assert s.entry_action is None
        assert s.exit_action is None
        assert s.description is None

    def test_custom_values(self):
        s = create_state("a", "initial", entry_action="in", exit_action="out", description="d")
        assert s.is_initial()
        assert s.entry_action == "in"
        assert s.exit_action == "out"
        assert s.description == "d"


# ── build_states ───────────────────────────────────────────────────────────────

class TestBuildStates:
    def test_returns_all_states(self):
        states = build_states({"new": {"type": "initial"}, "done": {"type": "final"}})
        assert set(states) == {"new", "done"}
        assert states["new"].is_initial()
        assert states["done"].is_final()

    def test_missing_type_is_normal(self):
        assert build_states({"x": {}})["x"].is_normal()

    def test_none_config_allowed(self):
        assert build_states({"x": None})["x"].is_normal()

    def test_state_named_new_defaults_to_initial(self):
        states = build_states({STATE_NEW: {}, "other": {}})
        assert states[STATE_NEW].is_initial()
        assert states["other"].is_normal()

    def test_explicit_type_wins_over_new_default(self):
        assert build_states({STATE_NEW: {"type": "normal"}})[STATE_NEW].is_normal()

    def test_invalid_type_raises(self):
        with pytest.raises(ValueError, match="state type"):
            build_states({"x": {"type": "bogus"}})

    def test_actions_applied(self):
        s = build_states({"x": {"entry": "e", "exit": "x", "entry_callable": "c"}})["x"]
        assert s.entry_action == "e"
        assert s.exit_action == "x"
        assert s.entry_callable == "c"

    def test_empty_configs_returns_empty_dict(self):
        assert build_states({}) == {}


# ── build_transitions ──────────────────────────────────────────────────────────

class TestBuildTransitions:
    def test_states_shared_by_reference(self):
        states = build_states({"a": {"type": "initial"}, "b": {}, "c": {"type": "final"}})
        ab, bc = build_transitions(states, [{"from": "a", "to": "b"}, {"from": "b", "to": "c"}])
        assert ab.to_state is bc.from_state

    def test_optional_fields(self):
        states = build_states({"a": {}, "b": {}})
        (t,) = build_transitions(states, [
            {"from": "a", "to": "b", "event": "go", "rule": "true", "priority": 2},
        ])
        assert t.event == "go"
        assert t.rule == "true"
        assert t.priority == 2

    def test_unknown_state_raises(self):
        with pytest.raises(ValueError, match="unknown 'to' state"):
            build_transitions(build_states({"a": {}}), [{"from": "a", "to": "zzz"}])


# ── log_action_execution ───────────────────────────────────────────────────────

class TestLogActionExecution:
    """Verifies the decorator passes through return values correctly."""

    def _ctx(self):
        (t,) = build_transitions(build_states({"a": {}, "b": {}}), [{"from": "a", "to": "b"}])
        return ExecutionContext(Identifier("m", "1"), t)

    def test_true_passthrough(self):
        @log_action_execution
        def guard(ctx):
            return True

        assert guard(self._ctx()) is True

    def test_false_passthrough(self):
        @log_action_execution
        def command(ctx):
            return False

        assert command(self._ctx()) is False

    def test_preserves_function_name(self):
        @log_action_execution
        def notify(ctx):
            return None

        assert notify.__name__ == "notify"
