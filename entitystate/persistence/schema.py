"""
SQL schema for the SQLite adapter.

Table names take an optional prefix so several applications can share a
database. The same layout works on other SQL backends as long as the
table names, fields and constraints are kept.
"""

from typing import List


_DDL = (
    """
    CREATE TABLE IF NOT EXISTS {prefix}statemachine_entities (
        machine     TEXT NOT NULL,
        entity_id   TEXT NOT NULL,
        state       TEXT NOT NULL,
        changetime  TEXT NOT NULL,
        PRIMARY KEY (machine, entity_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {prefix}statemachine_history (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        machine     TEXT NOT NULL,
        entity_id   TEXT NOT NULL,
        state       TEXT NOT NULL,
        message     TEXT,
        changetime  TEXT NOT NULL,
        exception   INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS {prefix}statemachine_history_entity
        ON {prefix}statemachine_history (machine, entity_id)
    """,
    """
    CREATE TABLE IF NOT EXISTS {prefix}statemachine_states (
        machine         TEXT NOT NULL,
        state           TEXT NOT NULL,
        type            TEXT NOT NULL DEFAULT 'normal'
                        CHECK (type IN ('initial', 'normal', 'final')),
        entry_command   TEXT,
        exit_command    TEXT,
        entry_callable  TEXT,
        exit_callable   TEXT,
        description     TEXT,
        PRIMARY KEY (machine, state)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {prefix}statemachine_transitions (
        machine     TEXT NOT NULL,
        state_from  TEXT NOT NULL,
        state_to    TEXT NOT NULL,
        event       TEXT,
        rule        TEXT,
        command     TEXT,
        guard_callable      TEXT,
        transition_callable TEXT,
        priority    INTEGER NOT NULL DEFAULT 0,
        description TEXT
    )
    """,
)


def table_name(prefix: str, table: str) -> str:
    return f"{prefix}statemachine_{table}"


def create_statements(prefix: str = "") -> List[str]:
    """DDL statements for all tables, with ``prefix`` applied."""
    return [ddl.format(prefix=prefix).strip() for ddl in _DDL]
