"""
SQLite persistence adapter and loader.

This adapter does double duty as a Loader: the machine's own states and
transitions can be stored in the same database as its runtime state.
The two roles are separate interfaces; pair a document Loader with this
adapter, or this loader with another adapter, as needed.

Concurrency:
    - One connection per adapter, opened lazily and cached until ``close()``.
    - All statements on that connection are serialized by an adapter lock.
    - ``set_state(..., expected=...)`` runs ``UPDATE ... WHERE state = ?``;
      a lost race surfaces as StateConflict, never as a silent overwrite.
      This holds across processes sharing the database file.

Usage:
    from entitystate.persistence import SqliteAdapter, SqliteConfig

    with SqliteAdapter(SqliteConfig("app.db", create_schema=True)) as adapter:
        adapter.add(Identifier("order", "42"), "new")
"""

import logging
import re
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from entitystate.exceptions import ConnectFailure, DefinitionError, OperationFailure, StateConflict
from entitystate.persistence.base import Adapter
from entitystate.persistence.schema import create_statements, table_name
from entitystate.types import (
    STATE_UNKNOWN,
    HistoryRecord,
    Identifier,
    SetStateResult,
    State,
    Transition,
    utcnow,
)

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(r"^[A-Za-z0-9_]*$")


@dataclass(frozen=True)
class SqliteConfig:
    """
    Connection settings for SqliteAdapter.

    Args:
        database: Path to the database file, or ``":memory:"``.
        prefix: Optional table name prefix (letters, digits, underscore).
        timeout: Seconds to wait on a locked database.
        create_schema: Create missing tables when the connection opens.

    Raises:
        ValueError: On an empty database, bad prefix or timeout <= 0.
    """

    database: str
    prefix: str = ""
    timeout: float = 5.0
    create_schema: bool = False

    def __post_init__(self):
        if not self.database:
            raise ValueError("database must be a non-empty path or ':memory:'")
        if not _PREFIX_RE.match(self.prefix):
            raise ValueError(f"prefix may only hold letters, digits and '_', got {self.prefix!r}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")


class SqliteAdapter(Adapter):
    """Adapter (and Loader) backed by a SQLite database."""

    def __init__(self, config: SqliteConfig):
        if isinstance(config, str):
            config = SqliteConfig(config)
        self.config = config
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def prefix(self) -> str:
        return self.config.prefix

    def get_connection(self) -> sqlite3.Connection:
        """
        Return the cached connection, opening it on first use.

        Raises:
            ConnectFailure: If the database cannot be opened.
        """
        with self._lock:
            if self._connection is None:
                try:
                    connection = sqlite3.connect(
                        self.config.database,
                        timeout=self.config.timeout,
                        check_same_thread=False,
                    )
                    connection.row_factory = sqlite3.Row
                    self.setup_connection(connection)
                except sqlite3.Error as e:
                    raise ConnectFailure(
                        f"error opening sqlite database [{self.config.database}], message: [{e}]"
                    ) from e
                self._connection = connection
                logger.debug(f"Opened sqlite connection to {self.config.database}")
            return self._connection

    def setup_connection(self, connection: sqlite3.Connection) -> None:
        """
        Hook run once per new connection.

        Override to set pragmas; the default creates the schema when
        ``config.create_schema`` is set.
        """
        if self.config.create_schema:
            self._create_schema(connection)

    def create_schema(self) -> None:
        """Create the tables if they do not exist yet."""
        with self._lock:
            self._create_schema(self.get_connection())

    def _create_schema(self, connection: sqlite3.Connection) -> None:
        with connection:
            for statement in create_statements(self.prefix):
                connection.execute(statement)
        logger.info(f"Schema ready in {self.config.database} (prefix '{self.prefix}')")

    def lock(self):
        return self._lock

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.debug(f"Closed sqlite connection to {self.config.database}")

    def _execute(self, operation: str, query: str, params=()) -> List[sqlite3.Row]:
        """Run one query under the adapter lock, wrapping storage errors."""
        with self._lock:
            connection = self.get_connection()
            try:
                return connection.execute(query, params).fetchall()
            except sqlite3.Error as e:
                raise OperationFailure(str(e), operation=operation) from e

    def _write(self, operation: str, query: str, params=()) -> int:
        """Run and commit one statement. Returns the affected row count."""
        with self._lock:
            connection = self.get_connection()
            try:
                with connection:
                    return connection.execute(query, params).rowcount
            except sqlite3.Error as e:
                raise OperationFailure(str(e), operation=operation) from e

    def _table(self, table: str) -> str:
        return table_name(self.prefix, table)

    # ------------------------------------------------------------------
    # Adapter hooks
    # ------------------------------------------------------------------

    def process_get_state(self, identifier: Identifier) -> str:
        rows = self._execute(
            "query for getting current state",
            f"SELECT state FROM {self._table('entities')} WHERE machine = ? AND entity_id = ?",
            (identifier.machine, identifier.entity_id),
        )
        if not rows:
            return STATE_UNKNOWN
        return rows[0]["state"]

    def process_set_state(
        self, identifier: Identifier, state: str, expected: Optional[str] = None
    ) -> SetStateResult:
        with self._lock:
            # History first: every attempted write is part of the audit trail.
            self.add_history(identifier, state)
            if expected is not None:
                self._compare_and_set(identifier, state, expected)
                return SetStateResult.UPDATED
            if self.is_persisted(identifier):
                self._update_state(identifier, state)
                return SetStateResult.UPDATED
            self._insert_state(identifier, state)
            return SetStateResult.CREATED

    def is_persisted(self, identifier: Identifier) -> bool:
        rows = self._execute(
            "query for getting persistence info",
            f"SELECT entity_id FROM {self._table('entities')} WHERE machine = ? AND entity_id = ?",
            (identifier.machine, identifier.entity_id),
        )
        return bool(rows) and rows[0]["entity_id"] == identifier.entity_id

    def add(self, identifier: Identifier, state: str) -> bool:
        with self._lock:
            if self.is_persisted(identifier):
                return False
            self.add_history(identifier, state)
            self._insert_state(identifier, state)
        logger.debug(f"{identifier}: added in state '{state}'")
        return True

    def add_history(
        self,
        identifier: Identifier,
        state: str,
        message: Optional[str] = None,
        is_exception: bool = False,
    ) -> None:
        self._write(
            "query for adding history",
            f"INSERT INTO {self._table('history')} "
            "(machine, entity_id, state, message, changetime, exception) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                identifier.machine,
                identifier.entity_id,
                state,
                message,
                self._timestamp(),
                1 if is_exception else 0,
            ),
        )

    def get_entity_ids(self, machine: str, state: Optional[str] = None) -> List[str]:
        # Only entities in a state declared in the states table are listed.
        query = (
            f"SELECT se.entity_id FROM {self._table('entities')} AS se "
            f"JOIN {self._table('states')} AS ss "
            "ON (se.state = ss.state AND se.machine = ss.machine) "
            "WHERE se.machine = ?"
        )
        params = [machine]
        if state is not None:
            query += " AND se.state = ?"
            params.append(state)
        query += " ORDER BY se.entity_id"
        rows = self._execute("query for getting entity ids", query, params)
        return [row["entity_id"] for row in rows]

    def get_history(self, identifier: Identifier) -> List[HistoryRecord]:
        rows = self._execute(
            "query for getting history",
            f"SELECT state, message, changetime, exception FROM {self._table('history')} "
            "WHERE machine = ? AND entity_id = ? ORDER BY id",
            (identifier.machine, identifier.entity_id),
        )
        return [
            HistoryRecord(
                identifier,
                row["state"],
                message=row["message"],
                occurred_at=datetime.fromisoformat(row["changetime"]),
                is_exception=bool(row["exception"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Entity record writes
    # ------------------------------------------------------------------

    def _insert_state(self, identifier: Identifier, state: str) -> None:
        self._write(
            "query for inserting state",
            f"INSERT INTO {self._table('entities')} (machine, entity_id, state, changetime) "
            "VALUES (?, ?, ?, ?)",
            (identifier.machine, identifier.entity_id, state, self._timestamp()),
        )

    def _update_state(self, identifier: Identifier, state: str) -> None:
        self._write(
            "query for updating state",
            f"UPDATE {self._table('entities')} SET state = ?, changetime = ? "
            "WHERE machine = ? AND entity_id = ?",
            (state, self._timestamp(), identifier.machine, identifier.entity_id),
        )

    def _compare_and_set(self, identifier: Identifier, state: str, expected: str) -> None:
        updated = self._write(
            "query for compare-and-set of state",
            f"UPDATE {self._table('entities')} SET state = ?, changetime = ? "
            "WHERE machine = ? AND entity_id = ? AND state = ?",
            (state, self._timestamp(), identifier.machine, identifier.entity_id, expected),
        )
        if updated == 0:
            actual = self.process_get_state(identifier)
            raise StateConflict(identifier, expected, None if actual == STATE_UNKNOWN else actual)

    @staticmethod
    def _timestamp() -> str:
        return utcnow().isoformat()

    # ------------------------------------------------------------------
    # Loader
    # ------------------------------------------------------------------

    def load(self, builder) -> int:
        """
        Load the machine named ``builder.name`` from the definition tables.

        Returns:
            Number of transitions added to the builder.
        """
        from entitystate.loader.array import ArrayLoader

        transitions = self.get_loader_data(builder.name)
        return ArrayLoader(transitions, source=str(self)).load(builder)

    def get_transitions(self, machine: str) -> List[sqlite3.Row]:
        """Ordered transition rows, joined with both endpoint states."""
        query = f"""
            SELECT st.machine,
                   st.state_from AS state_from, st.state_to AS state_to,
                   st.rule, st.command,
                   st.guard_callable, st.transition_callable,
                   ss_to.type AS state_to_type,
                   ss_to.exit_command AS state_to_exit_command,
                   ss_to.entry_command AS state_to_entry_command,
                   ss_to.exit_callable AS state_to_exit_callable,
                   ss_to.entry_callable AS state_to_entry_callable,
                   ss.type AS state_from_type,
                   ss.exit_command AS state_from_exit_command,
                   ss.entry_command AS state_from_entry_command,
                   ss.exit_callable AS state_from_exit_callable,
                   ss.entry_callable AS state_from_entry_callable,
                   st.priority,
                   ss.description AS state_from_description,
                   ss_to.description AS state_to_description,
                   st.description AS transition_description,
                   st.event
            FROM {self._table('transitions')} AS st
            LEFT JOIN {self._table('states')} AS ss
                ON (st.state_from = ss.state AND st.machine = ss.machine)
            LEFT JOIN {self._table('states')} AS ss_to
                ON (st.state_to = ss_to.state AND st.machine = ss_to.machine)
            WHERE st.machine = ?
            ORDER BY st.state_from ASC, st.priority ASC, st.state_to ASC
        """
        return self._execute("query for getting transitions", query, (machine,))

    def get_loader_data(self, machine: str) -> List[Transition]:
        """Build Transitions from the stored rows, one State per name."""
        states: Dict[str, State] = {}

        def state_for(row, prefix: str) -> State:
            name = row[prefix]
            if name not in states:
                states[name] = State(
                    name,
                    row[f"{prefix}_type"],
                    entry_action=row[f"{prefix}_entry_command"],
                    exit_action=row[f"{prefix}_exit_command"],
                    entry_callable=row[f"{prefix}_entry_callable"],
                    exit_callable=row[f"{prefix}_exit_callable"],
                    description=row[f"{prefix}_description"],
                )
            return states[name]

        output = []
        for row in self.get_transitions(machine):
            output.append(
                Transition(
                    state_for(row, "state_from"),
                    state_for(row, "state_to"),
                    event=row["event"],
                    rule=row["rule"],
                    command=row["command"],
                    guard_callable=row["guard_callable"],
                    transition_callable=row["transition_callable"],
                    priority=row["priority"],
                    description=row["transition_description"],
                )
            )
        return output

    def store_definition(self, definition) -> int:
        """
        Write a machine definition into the definition tables.

        Existing rows for the machine are replaced in one database
        transaction. Only string action references can be stored.

        Returns:
            Number of transitions written.

        Raises:
            DefinitionError: If an action reference is not a string.
        """
        states = [
            (
                definition.name,
                s.name,
                s.kind.value,
                _stored_reference(s.entry_action, s.name),
                _stored_reference(s.exit_action, s.name),
                _stored_reference(s.entry_callable, s.name),
                _stored_reference(s.exit_callable, s.name),
                s.description,
            )
            for s in definition.states
        ]
        transitions = [
            (
                definition.name,
                t.from_state.name,
                t.to_state.name,
                t.event,
                _stored_reference(t.rule, t.name),
                _stored_reference(t.command, t.name),
                _stored_reference(t.guard_callable, t.name),
                _stored_reference(t.transition_callable, t.name),
                t.priority,
                t.description,
            )
            for t in definition.transitions
        ]

        with self._lock:
            connection = self.get_connection()
            try:
                with connection:
                    connection.execute(
                        f"DELETE FROM {self._table('transitions')} WHERE machine = ?",
                        (definition.name,),
                    )
                    connection.execute(
                        f"DELETE FROM {self._table('states')} WHERE machine = ?",
                        (definition.name,),
                    )
                    connection.executemany(
                        f"INSERT INTO {self._table('states')} "
                        "(machine, state, type, entry_command, exit_command, "
                        "entry_callable, exit_callable, description) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                        states,
                    )
                    connection.executemany(
                        f"INSERT INTO {self._table('transitions')} "
                        "(machine, state_from, state_to, event, rule, command, "
                        "guard_callable, transition_callable, priority, description) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        transitions,
                    )
            except sqlite3.Error as e:
                raise OperationFailure(str(e), operation="storing machine definition") from e

        logger.info(f"Stored machine '{definition.name}': {len(transitions)} transitions")
        return len(transitions)

    def __str__(self) -> str:
        return f"<SqliteAdapter {self.config.database}>"


def _stored_reference(reference, owner: str) -> Optional[str]:
    if reference is None or isinstance(reference, str):
        return reference or None
    raise DefinitionError(f"{owner}: only string action references can be stored, got {reference!r}")
