"""Tests for entitystate.persistence — adapter contract and backends."""

import json
import sqlite3
import threading

import pytest

from entitystate.exceptions import ConnectFailure, DefinitionError, OperationFailure, StateConflict
from entitystate.machine import MachineBuilder
from entitystate.persistence import MemoryAdapter, SqliteAdapter, SqliteConfig
from entitystate.persistence.schema import create_statements
from entitystate.types import (
    STATE_UNKNOWN,
    FailureRecord,
    Identifier,
    SetStateResult,
    State,
    StateType,
    Transition,
)

ID = Identifier("m", "1")


def _transition() -> Transition:
    return Transition(State("a", StateType.INITIAL), State("b"), event="ab")


def _failure() -> FailureRecord:
    return FailureRecord.from_exception(RuntimeError("boom"), _transition(), "command")


@pytest.fixture(params=["memory", "sqlite"])
def adapter(request, tmp_path):
    if request.param == "memory":
        yield MemoryAdapter()
    else:
        adapter = SqliteAdapter(SqliteConfig(str(tmp_path / "state.db"), create_schema=True))
        yield adapter
        adapter.close()


# ── Contract shared by every adapter ───────────────────────────────────────────

class TestAdapterContract:
    def test_unknown_identifier(self, adapter):
        assert adapter.get_state(ID) == STATE_UNKNOWN
        assert adapter.is_persisted(ID) is False

    def test_add_then_get(self, adapter):
        assert adapter.add(ID, "a") is True
        assert adapter.get_state(ID) == "a"
        assert adapter.is_persisted(ID) is True

    def test_add_is_idempotent(self, adapter):
        adapter.add(ID, "a")
        assert adapter.add(ID, "b") is False
        assert adapter.get_state(ID) == "a"
        assert [h.state for h in adapter.get_history(ID)] == ["a"]

    def test_set_state_creates_then_updates(self, adapter):
        assert adapter.set_state(ID, "a") is SetStateResult.CREATED
        assert adapter.set_state(ID, "b") is SetStateResult.UPDATED
        assert adapter.get_state(ID) == "b"

    def test_set_state_appends_history(self, adapter):
        adapter.set_state(ID, "a")
        adapter.set_state(ID, "b")
        history = adapter.get_history(ID)
        assert [h.state for h in history] == ["a", "b"]
        assert all(h.identifier == ID for h in history)
        assert not any(h.is_exception for h in history)

    def test_compare_and_set(self, adapter):
        adapter.add(ID, "a")
        assert adapter.set_state(ID, "b", expected="a") is SetStateResult.UPDATED
        assert adapter.get_state(ID) == "b"

    def test_compare_and_set_conflict(self, adapter):
        adapter.add(ID, "a")
        with pytest.raises(StateConflict) as info:
            adapter.set_state(ID, "c", expected="b")
        assert info.value.actual == "a"
        assert adapter.get_state(ID) == "a"

    def test_conflicting_write_still_audited(self, adapter):
        adapter.add(ID, "a")
        with pytest.raises(StateConflict):
            adapter.set_state(ID, "c", expected="b")
        assert [h.state for h in adapter.get_history(ID)] == ["a", "c"]

    def test_record_failed_transition(self, adapter):
        adapter.add(ID, "a")
        assert adapter.record_failed_transition(ID, _transition(), _failure()) is True
        record = adapter.get_history(ID)[-1]
        assert record.is_exception is True
        assert record.state == "a"
        message = json.loads(record.message)
        assert message["kind"] == "RuntimeError"
        assert message["state"] == "a"
        assert message["transition"] == "a_to_b"

    def test_record_failed_transition_skips_unknown(self, adapter):
        assert adapter.record_failed_transition(ID, _transition(), _failure()) is False
        assert adapter.get_history(ID) == []
        assert adapter.is_persisted(ID) is False

    def test_history_is_per_identifier(self, adapter):
        other = Identifier("m", "2")
        adapter.add(ID, "a")
        adapter.add(other, "a")
        adapter.set_state(other, "b")
        assert [h.state for h in adapter.get_history(ID)] == ["a"]

    def test_context_manager(self, adapter):
        with adapter as same:
            assert same is adapter

    def test_failure_recording_holds_adapter_lock(self, adapter):
        adapter.add(ID, "a")
        checking = threading.Event()
        release = threading.Event()
        original = adapter.is_persisted

        def slow_is_persisted(identifier):
            checking.set()
            release.wait(timeout=5)
            return original(identifier)

        adapter.is_persisted = slow_is_persisted
        recorder = threading.Thread(
            target=adapter.record_failed_transition, args=(ID, _transition(), _failure())
        )
        recorder.start()
        assert checking.wait(timeout=5)
        adapter.is_persisted = original

        writer = threading.Thread(target=adapter.set_state, args=(ID, "b"))
        writer.start()
        # The writer must wait for the recorder to finish.
        writer.join(timeout=0.2)
        release.set()
        recorder.join(timeout=5)
        writer.join(timeout=5)

        failures = [h for h in adapter.get_history(ID) if h.is_exception]
        assert [h.state for h in failures] == ["a"]
        assert json.loads(failures[0].message)["state"] == "a"
        assert adapter.get_state(ID) == "b"


# ── MemoryAdapter specifics ────────────────────────────────────────────────────

class TestMemoryAdapter:
    def test_entity_ids_filtered_by_state(self):
        adapter = MemoryAdapter()
        adapter.add(Identifier("m", "1"), "a")
        adapter.add(Identifier("m", "2"), "b")
        adapter.add(Identifier("other", "3"), "a")
        assert sorted(adapter.get_entity_ids("m")) == ["1", "2"]
        assert adapter.get_entity_ids("m", "b") == ["2"]

    def test_changed_at_updates(self):
        adapter = MemoryAdapter()
        adapter.add(ID, "a")
        first = adapter.get_changed_at(ID)
        adapter.set_state(ID, "b")
        assert adapter.get_changed_at(ID) >= first

    def test_clear(self):
        adapter = MemoryAdapter()
        adapter.add(ID, "a")
        adapter.clear()
        assert adapter.get_state(ID) == STATE_UNKNOWN
        assert adapter.get_history(ID) == []


# ── SqliteAdapter specifics ────────────────────────────────────────────────────

class TestSqliteConfig:
    def test_defaults(self):
        config = SqliteConfig("x.db")
        assert config.prefix == ""
        assert config.timeout == 5.0
        assert config.create_schema is False

    def test_empty_database_raises(self):
        with pytest.raises(ValueError, match="database"):
            SqliteConfig("")

    def test_bad_prefix_raises(self):
        with pytest.raises(ValueError, match="prefix"):
            SqliteConfig("x.db", prefix="drop table;")

    def test_zero_timeout_raises(self):
        with pytest.raises(ValueError, match="timeout"):
            SqliteConfig("x.db", timeout=0)


class TestSqliteAdapter:
    def _adapter(self, tmp_path, **kwargs) -> SqliteAdapter:
        return SqliteAdapter(SqliteConfig(str(tmp_path / "state.db"), create_schema=True, **kwargs))

    def test_connection_is_lazy_and_cached(self, tmp_path):
        adapter = self._adapter(tmp_path)
        assert adapter._connection is None
        first = adapter.get_connection()
        assert adapter.get_connection() is first
        adapter.close()
        assert adapter._connection is None

    def test_string_config(self):
        adapter = SqliteAdapter(":memory:")
        assert adapter.config.database == ":memory:"

    def test_connect_failure(self, tmp_path):
        adapter = SqliteAdapter(SqliteConfig(str(tmp_path / "missing" / "dir" / "state.db")))
        with pytest.raises(ConnectFailure, match="error opening sqlite database"):
            adapter.get_state(ID)

    def test_missing_tables_is_operation_failure(self, tmp_path):
        adapter = SqliteAdapter(SqliteConfig(str(tmp_path / "empty.db")))
        with pytest.raises(OperationFailure, match="query for getting current state"):
            adapter.get_state(ID)

    def test_prefix_applied(self, tmp_path):
        adapter = self._adapter(tmp_path, prefix="app_")
        adapter.add(ID, "a")
        rows = adapter.get_connection().execute(
            "SELECT state FROM app_statemachine_entities"
        ).fetchall()
        assert [r["state"] for r in rows] == ["a"]

    def test_state_survives_reconnect(self, tmp_path):
        adapter = self._adapter(tmp_path)
        adapter.add(ID, "a")
        adapter.close()
        reopened = self._adapter(tmp_path)
        assert reopened.get_state(ID) == "a"
        assert len(reopened.get_history(ID)) == 1

    def test_exception_flag_stored_as_integer(self, tmp_path):
        adapter = self._adapter(tmp_path)
        adapter.add(ID, "a")
        adapter.record_failed_transition(ID, _transition(), _failure())
        flags = [
            row["exception"]
            for row in adapter.get_connection().execute(
                "SELECT exception FROM statemachine_history ORDER BY id"
            )
        ]
        assert flags == [0, 1]

    def test_entity_ids_only_for_declared_states(self, tmp_path):
        adapter = self._adapter(tmp_path)
        builder = MachineBuilder("m")
        builder.add_transition(_transition())
        adapter.store_definition(builder.build())
        adapter.add(Identifier("m", "1"), "a")
        adapter.add(Identifier("m", "2"), "b")
        adapter.add(Identifier("m", "3"), "undeclared")
        assert adapter.get_entity_ids("m") == ["1", "2"]
        assert adapter.get_entity_ids("m", "b") == ["2"]

    def test_store_definition_rejects_object_references(self, tmp_path):
        adapter = self._adapter(tmp_path)
        builder = MachineBuilder("m")
        builder.add_transition(
            Transition(State("a", "initial"), State("b"), command=lambda ctx: None)
        )
        with pytest.raises(DefinitionError, match="string action references"):
            adapter.store_definition(builder.build())

    def test_schema_statements_use_prefix(self):
        statements = create_statements("x_")
        assert all("x_statemachine_" in s for s in statements)

    def test_schema_usable_on_plain_connection(self):
        connection = sqlite3.connect(":memory:")
        for statement in create_statements():
            connection.execute(statement)
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {
            "statemachine_entities",
            "statemachine_history",
            "statemachine_states",
            "statemachine_transitions",
        } <= tables
