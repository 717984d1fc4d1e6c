"""
Entity state data types and structures.

Defines the core value types used by the transition engine:
- Identifier: (machine, entity_id) key for one machine instance
- StateType / State: named nodes of a machine graph
- Transition: guarded, executable edge between two states
- ExecutionContext: runtime context passed to rules, commands and hooks
- TransitionResult: outcome of a single ``apply`` call
- HistoryRecord / FailureRecord: audit trail entries
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

# Returned by adapters for identifiers that were never persisted.
STATE_UNKNOWN = "unknown"

# Conventional name for an initial state.
STATE_NEW = "new"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Identifier:
    """
    Identifies one instance of a machine.

    Args:
        machine: Name of the machine definition.
        entity_id: Id of the business entity (order, document, account...).

    Raises:
        ValueError: If either part is empty.
    """

    machine: str
    entity_id: str

    def __post_init__(self):
        if not self.machine:
            raise ValueError("machine must be a non-empty string")
        if self.entity_id is None or str(self.entity_id) == "":
            raise ValueError("entity_id must be a non-empty string")
        # Entity ids frequently arrive as integers from the calling domain.
        object.__setattr__(self, "entity_id", str(self.entity_id))

    def __str__(self) -> str:
        return f"{self.machine}:{self.entity_id}"


class StateType(Enum):
    """Kind of a state within a machine."""

    INITIAL = "initial"
    NORMAL = "normal"
    FINAL = "final"

    @classmethod
    def parse(cls, value) -> "StateType":
        """Accept a StateType, its value, or None (meaning ``normal``)."""
        if isinstance(value, cls):
            return value
        if value is None or value == "":
            return cls.NORMAL
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Invalid state type {value!r}, expected one of "
                f"{[t.value for t in cls]}"
            ) from None


@dataclass(frozen=True, eq=False)
class State:
    """
    A named node of a machine.

    States are shared by reference across every transition that mentions
    them; a MachineBuilder hands out one instance per name.

    Args:
        name: Unique name within the machine.
        kind: initial, normal or final.
        entry_action: Reference to a command run when the state is entered.
        exit_action: Reference to a command run when the state is left.
        entry_callable: Additional callable reference run on entry.
        exit_callable: Additional callable reference run on exit.
        description: Free text.
    """

    name: str
    kind: StateType = StateType.NORMAL
    entry_action: Any = None
    exit_action: Any = None
    entry_callable: Any = None
    exit_callable: Any = None
    description: Optional[str] = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("State name must be a non-empty string")
        object.__setattr__(self, "kind", StateType.parse(self.kind))

    def __eq__(self, other):
        if not isinstance(other, State):
            return NotImplemented
        return self.name == other.name and self.kind == other.kind

    def __hash__(self):
        return hash((self.name, self.kind))

    def is_initial(self) -> bool:
        return self.kind is StateType.INITIAL

    def is_normal(self) -> bool:
        return self.kind is StateType.NORMAL

    def is_final(self) -> bool:
        return self.kind is StateType.FINAL

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, eq=False)
class Transition:
    """
    A guarded, executable edge between two states.

    Args:
        from_state: The state this transition originates from.
        to_state: The state this transition leads to.
        event: Optional event name. When the caller supplies an event only
               transitions with exactly that event are candidates.
        rule: Optional guard reference; absence means "always true".
        command: Optional command reference run during the transition.
        guard_callable: Optional extra guard reference, and-ed with ``rule``.
        transition_callable: Optional extra command reference, run after
                             ``command``.
        priority: Lower values are tried first.
        description: Free text.
        order: Declaration index, assigned by MachineBuilder.
    """

    from_state: State
    to_state: State
    event: Optional[str] = None
    rule: Any = None
    command: Any = None
    guard_callable: Any = None
    transition_callable: Any = None
    priority: int = 0
    description: Optional[str] = None
    order: int = 0

    def __post_init__(self):
        if self.event == "":
            object.__setattr__(self, "event", None)
        object.__setattr__(self, "priority", int(self.priority or 0))

    @property
    def name(self) -> str:
        return f"{self.from_state.name}_to_{self.to_state.name}"

    @property
    def key(self) -> tuple:
        """Uniqueness key within a machine."""
        return (self.from_state.name, self.to_state.name, self.event)

    @property
    def sort_key(self) -> tuple:
        return (self.priority, self.order)

    def is_triggered_by(self, event: Optional[str]) -> bool:
        """
        Check whether this transition is a candidate for ``event``.

        Without an event every transition is a candidate; with one, only
        transitions carrying exactly that event are.
        """
        return event is None or self.event == event

    def __str__(self) -> str:
        if self.event:
            return f"{self.name} [{self.event}]"
        return self.name


@dataclass
class ExecutionContext:
    """
    Runtime context passed to every rule, command and state hook.

    Args:
        identifier: The machine instance being transitioned.
        transition: The transition being evaluated or executed.
        event: The event supplied by the caller, if any.
        payload: Arbitrary caller data for rules and commands.
        start_time: Epoch time when the ``apply`` call began.
    """

    identifier: Identifier
    transition: Transition
    event: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)

    @property
    def from_state(self) -> State:
        return self.transition.from_state

    @property
    def to_state(self) -> State:
        return self.transition.to_state

    @property
    def elapsed_time(self) -> float:
        """Seconds elapsed since the ``apply`` call began."""
        return time.time() - self.start_time


class TransitionOutcome(Enum):
    """Result kind of an ``apply`` call."""

    TRANSITIONED = "transitioned"
    NOOP = "noop"


@dataclass(frozen=True)
class TransitionResult:
    """
    Outcome of a successful ``apply`` call.

    A NOOP result is still a success: nothing applied.
    """

    outcome: TransitionOutcome
    identifier: Identifier
    from_state: Optional[State] = None
    to_state: Optional[State] = None
    transition: Optional[Transition] = None
    event: Optional[str] = None

    @classmethod
    def noop(cls, identifier: Identifier, state: Optional[State] = None,
             event: Optional[str] = None) -> "TransitionResult":
        return cls(TransitionOutcome.NOOP, identifier, from_state=state, event=event)

    @classmethod
    def moved(cls, identifier: Identifier, transition: Transition,
              event: Optional[str] = None) -> "TransitionResult":
        return cls(
            TransitionOutcome.TRANSITIONED,
            identifier,
            from_state=transition.from_state,
            to_state=transition.to_state,
            transition=transition,
            event=event,
        )

    @property
    def transitioned(self) -> bool:
        return self.outcome is TransitionOutcome.TRANSITIONED

    @property
    def is_noop(self) -> bool:
        return self.outcome is TransitionOutcome.NOOP


class SetStateResult(Enum):
    """What ``Adapter.set_state`` did with the entity record."""

    CREATED = "created"
    UPDATED = "updated"


@dataclass(frozen=True)
class HistoryRecord:
    """
    One append-only audit entry.

    Written for every materialized state change and for every failed
    transition (``is_exception=True``).
    """

    identifier: Identifier
    state: str
    message: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)
    is_exception: bool = False

    def to_dict(self) -> dict:
        """Serialise to a plain dictionary."""
        return {
            "machine": self.identifier.machine,
            "entity_id": self.identifier.entity_id,
            "state": self.state,
            "message": self.message,
            "occurred_at": self.occurred_at.isoformat(),
            "is_exception": self.is_exception,
        }


@dataclass(frozen=True)
class FailureRecord:
    """
    Structured description of a failed transition attempt.

    Args:
        kind: Name of the failure (usually the exception class name).
        message: Human-readable failure message.
        transition: Name of the attempted transition.
        stage: Stage that failed: guard, exit, command or entry.
        state: State of the entity at the time of failure, when known.
        event: Event supplied by the caller, if any.
        occurred_at: When the failure was captured.
    """

    kind: str
    message: str
    transition: str
    stage: str
    state: Optional[str] = None
    event: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_exception(cls, exc: BaseException, transition: Transition, stage: str,
                       event: Optional[str] = None) -> "FailureRecord":
        return cls(
            kind=type(exc).__name__,
            message=str(exc),
            transition=transition.name,
            stage=stage,
            state=transition.from_state.name,
            event=event,
        )

    def with_state(self, state: Optional[str]) -> "FailureRecord":
        """Return a copy carrying the state observed by the recorder."""
        return FailureRecord(
            kind=self.kind,
            message=self.message,
            transition=self.transition,
            stage=self.stage,
            state=state,
            event=self.event,
            occurred_at=self.occurred_at,
        )

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "transition": self.transition,
            "stage": self.stage,
            "state": self.state,
            "event": self.event,
            "occurred_at": self.occurred_at.isoformat(),
        }

    def to_json(self) -> str:
        """JSON text stored as the history message (searchable in SQL)."""
        return json.dumps(self.to_dict(), sort_keys=True)


def freeze_payload(payload: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy caller payload so actions cannot mutate the caller's mapping."""
    return dict(payload) if payload else {}
