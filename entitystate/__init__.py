"""
entitystate
~~~~~~~~~~~

Persistent finite-state-machine runtime for long-lived business entities.

Quick start:
    from entitystate import Identifier, MachineBuilder, TransitionEngine
    from entitystate.loader import JSONLoader
    from entitystate.persistence import MemoryAdapter

    builder = MachineBuilder("order")
    JSONLoader.from_file("machines.json").load(builder)
    engine = TransitionEngine(builder.build(), MemoryAdapter())

    order = Identifier("order", "42")
    engine.add(order)
    engine.apply(order, "pay")
"""

from entitystate.commands import CallableCommand, Command, CompositeCommand, NullCommand
from entitystate.engine import TransitionEngine
from entitystate.exceptions import (
    ActionFailed,
    BadLoaderData,
    ConnectFailure,
    DefinitionError,
    EntityStateError,
    OperationFailure,
    PersistenceFailure,
    StateConflict,
    TransitionFailed,
    UnknownEntity,
    UnresolvedReference,
)
from entitystate.helpers import (
    build_states,
    build_transitions,
    create_state,
    log_action_execution,
)
from entitystate.machine import MachineBuilder, MachineDefinition
from entitystate.references import ActionResolver
from entitystate.rules import AllRules, CallableRule, FalseRule, Rule, TrueRule
from entitystate.types import (
    STATE_NEW,
    STATE_UNKNOWN,
    ExecutionContext,
    FailureRecord,
    HistoryRecord,
    Identifier,
    SetStateResult,
    State,
    StateType,
    Transition,
    TransitionOutcome,
    TransitionResult,
)

__all__ = [
    "TransitionEngine",
    "MachineBuilder",
    "MachineDefinition",
    "ActionResolver",
    "Identifier",
    "State",
    "StateType",
    "Transition",
    "ExecutionContext",
    "TransitionOutcome",
    "TransitionResult",
    "SetStateResult",
    "HistoryRecord",
    "FailureRecord",
    "STATE_UNKNOWN",
    "STATE_NEW",
    "Rule",
    "TrueRule",
    "FalseRule",
    "CallableRule",
    "AllRules",
    "Command",
    "NullCommand",
    "CallableCommand",
    "CompositeCommand",
    "EntityStateError",
    "UnknownEntity",
    "TransitionFailed",
    "ActionFailed",
    "PersistenceFailure",
    "ConnectFailure",
    "OperationFailure",
    "StateConflict",
    "BadLoaderData",
    "UnresolvedReference",
    "DefinitionError",
    "create_state",
    "build_states",
    "build_transitions",
    "log_action_execution",
]
