"""
Machine definitions — the immutable graph of states and transitions.

Features:
- MachineBuilder collects transitions from one or more Loaders
- One State instance per name (interning table), shared by every
  transition that mentions the state
- Atomic batch addition: a batch is either added completely or not at all
- Duplicate transitions (same from, to and event) are skipped
- MachineDefinition is read-only and safe to share across threads
- O(out-degree) candidate lookup, pre-sorted by (priority, declaration order)

Usage:
    from entitystate.machine import MachineBuilder
    from entitystate.types import State, StateType, Transition

    builder = MachineBuilder("order")
    new = State("new", StateType.INITIAL)
    paid = State("paid")
    done = State("done", StateType.FINAL)
    builder.add_transitions([
        Transition(new, paid, event="pay"),
        Transition(paid, done, event="ship", command="myapp.commands:ship"),
    ])
    definition = builder.build()
"""

import dataclasses
import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional, Tuple

from entitystate.exceptions import DefinitionError
from entitystate.types import State, Transition

logger = logging.getLogger(__name__)


class MachineBuilder:
    """
    Mutable collector for a machine's states and transitions.

    Loaders populate a builder; ``build()`` produces the frozen
    MachineDefinition used by the TransitionEngine.
    """

    def __init__(self, name: str, description: Optional[str] = None):
        if not name:
            raise ValueError("machine name must be a non-empty string")
        self.name = name
        self.description = description
        self._states: Dict[str, State] = {}
        self._transitions: List[Transition] = []
        self._keys: set = set()

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def intern(self, state: State) -> State:
        """
        Return the builder's instance for ``state.name``.

        The first State registered under a name wins; later States with the
        same name resolve to it.
        """
        existing = self._states.get(state.name)
        if existing is not None:
            if existing is not state and existing.kind is not state.kind:
                logger.debug(
                    f"{self.name}: state '{state.name}' already declared as "
                    f"{existing.kind.value}, ignoring {state.kind.value}"
                )
            return existing
        self._states[state.name] = state
        return state

    def add_state(self, state: State) -> State:
        """Declare a state, returning the interned instance."""
        return self.intern(state)

    def get_state(self, name: str) -> Optional[State]:
        return self._states.get(name)

    @property
    def states(self) -> Tuple[State, ...]:
        return tuple(self._states.values())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def add_transition(self, transition: Transition) -> bool:
        """Add one transition. Returns False if it was a duplicate."""
        return self.add_transitions([transition]) == 1

    def add_transitions(self, transitions: Iterable[Transition]) -> int:
        """
        Add a batch of transitions atomically.

        Every item is checked before anything is added, so an invalid batch
        leaves the builder untouched.

        Returns:
            Number of transitions actually added (duplicates are skipped).

        Raises:
            DefinitionError: If an item is not a Transition.
        """
        batch = list(transitions)
        for t in batch:
            if not isinstance(t, Transition):
                raise DefinitionError(f"{self.name}: expected a Transition, got {t!r}")

        added = 0
        for t in batch:
            if t.key in self._keys:
                logger.warning(f"{self.name}: skipping duplicate transition {t}")
                continue
            from_state = self.intern(t.from_state)
            to_state = self.intern(t.to_state)
            self._transitions.append(
                dataclasses.replace(
                    t,
                    from_state=from_state,
                    to_state=to_state,
                    order=len(self._transitions),
                )
            )
            self._keys.add(t.key)
            added += 1
        return added

    @property
    def transitions(self) -> Tuple[Transition, ...]:
        return tuple(self._transitions)

    def __len__(self) -> int:
        return len(self._transitions)

    def build(self) -> "MachineDefinition":
        """Freeze the collected graph into a MachineDefinition."""
        return MachineDefinition(
            self.name,
            states=self._states.values(),
            transitions=self._transitions,
            description=self.description,
        )


class MachineDefinition:
    """
    Read-only graph of states and transitions for a named machine.

    Built once (normally via MachineBuilder) and shared by every instance
    of the machine. Nothing on this class mutates after ``__init__``.
    """

    def __init__(
        self,
        name: str,
        states: Iterable[State],
        transitions: Iterable[Transition],
        description: Optional[str] = None,
    ):
        self.name = name
        self.description = description
        self._states: Dict[str, State] = {s.name: s for s in states}
        self._transitions: Tuple[Transition, ...] = tuple(transitions)

        # Build O(out-degree) lookup map, candidates pre-sorted
        grouped: Dict[str, List[Transition]] = {}
        for t in self._transitions:
            self._states.setdefault(t.from_state.name, t.from_state)
            self._states.setdefault(t.to_state.name, t.to_state)
            grouped.setdefault(t.from_state.name, []).append(t)
        self._transition_map = MappingProxyType(
            {name: tuple(sorted(ts, key=lambda t: t.sort_key)) for name, ts in grouped.items()}
        )
        self._states = MappingProxyType(self._states)

        self._validate()

        logger.info(
            f"Machine '{self.name}' built — "
            f"{len(self._states)} states, "
            f"{len(self._transitions)} transitions"
        )

    def _validate(self) -> None:
        """Check structural well-formedness. Raises DefinitionError on problems."""
        for t in self._transitions:
            if self._states[t.from_state.name] is not t.from_state:
                raise DefinitionError(
                    f"{self.name}: transition {t} does not share state '{t.from_state.name}'"
                )
            if self._states[t.to_state.name] is not t.to_state:
                raise DefinitionError(
                    f"{self.name}: transition {t} does not share state '{t.to_state.name}'"
                )

        # Not errors: a machine without a final state just never terminates.
        if self._transitions and not any(s.is_initial() for s in self._states.values()):
            logger.warning(f"Machine '{self.name}' has no initial state")
        if self._transitions and not any(s.is_final() for s in self._states.values()):
            logger.warning(f"Machine '{self.name}' has no final state")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def states(self) -> Tuple[State, ...]:
        return tuple(self._states.values())

    @property
    def transitions(self) -> Tuple[Transition, ...]:
        """All transitions in declaration order."""
        return self._transitions

    def __len__(self) -> int:
        return len(self._transitions)

    def has_state(self, name: str) -> bool:
        return name in self._states

    def get_state(self, name: str) -> Optional[State]:
        return self._states.get(name)

    def get_initial_state(self) -> Optional[State]:
        """Return the first declared initial state, or None."""
        for state in self._states.values():
            if state.is_initial():
                return state
        return None

    def get_final_states(self) -> Tuple[State, ...]:
        return tuple(s for s in self._states.values() if s.is_final())

    def get_transition(self, name: str, event: Optional[str] = None) -> Optional[Transition]:
        """
        Look a transition up by ``<from>_to_<to>`` name.

        When several transitions share a name, ``event`` disambiguates; with
        no event the first declared one is returned.
        """
        matches = [t for t in self._transitions if t.name == name]
        if event is not None:
            matches = [t for t in matches if t.event == event]
        return matches[0] if matches else None

    def get_transitions_from(self, state_name: str) -> Tuple[Transition, ...]:
        """All transitions leaving ``state_name``, in selection order."""
        return self._transition_map.get(state_name, ())

    def get_candidates(self, state_name: str, event: Optional[str] = None) -> List[Transition]:
        """
        Candidate transitions for a state and optional event.

        Ordered by ascending priority, then declaration order. With no
        event every outgoing transition is a candidate.
        """
        return [t for t in self.get_transitions_from(state_name) if t.is_triggered_by(event)]

    def get_events(self) -> Tuple[str, ...]:
        """Distinct event names, in declaration order."""
        seen: Dict[str, None] = {}
        for t in self._transitions:
            if t.event:
                seen.setdefault(t.event, None)
        return tuple(seen)

    def __repr__(self):
        return f"MachineDefinition({self.name!r}, transitions={len(self._transitions)})"
