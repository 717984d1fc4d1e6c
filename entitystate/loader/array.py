"""
Loader for in-memory transition data.

Accepts Transition objects or flat mapping rows shaped like the joined
definition tables::

    {
        "state_from": "new", "state_from_type": "initial",
        "state_to": "paid",  "state_to_type": "normal",
        "event": "pay", "rule": "myapp.rules.CanPay", "priority": 0,
    }

Optional row keys: ``state_{from,to}_{entry,exit}_command``,
``state_{from,to}_{entry,exit}_callable``, ``state_{from,to}_description``,
``command``, ``guard_callable``, ``transition_callable`` and
``transition_description`` (or ``description``).
"""

import dataclasses
import logging
from typing import Any, Dict, Iterable, List, Mapping, Union

from entitystate.exceptions import BadLoaderData
from entitystate.types import State, Transition

logger = logging.getLogger(__name__)

Row = Union[Transition, Mapping[str, Any]]


class ArrayLoader:
    """Loads a machine from a sequence of Transitions or mapping rows."""

    def __init__(self, transitions: Iterable[Row], source: str = "array"):
        self._rows = list(transitions)
        self.source = source

    def load(self, builder) -> int:
        # One State per name for the duration of this load.
        states: Dict[str, State] = {}
        transitions: List[Transition] = []

        for index, row in enumerate(self._rows):
            try:
                transitions.append(self._to_transition(row, states))
            except (KeyError, TypeError, ValueError) as e:
                raise BadLoaderData(self.source, f"row {index} is invalid: {e}") from e

        count = builder.add_transitions(transitions)
        logger.info(f"{self}: loaded {count} transitions into '{builder.name}'")
        return count

    def get_transitions(self) -> List[Row]:
        return list(self._rows)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _intern(state: State, states: Dict[str, State]) -> State:
        return states.setdefault(state.name, state)

    def _to_transition(self, row: Row, states: Dict[str, State]) -> Transition:
        if isinstance(row, Transition):
            return dataclasses.replace(
                row,
                from_state=self._intern(row.from_state, states),
                to_state=self._intern(row.to_state, states),
            )
        if not isinstance(row, Mapping):
            raise TypeError(f"expected a Transition or a mapping, got {type(row).__name__}")

        from_state = self._state_from_row(row, "state_from", states)
        to_state = self._state_from_row(row, "state_to", states)
        return Transition(
            from_state,
            to_state,
            event=row.get("event"),
            rule=row.get("rule"),
            command=row.get("command"),
            guard_callable=row.get("guard_callable"),
            transition_callable=row.get("transition_callable"),
            priority=row.get("priority") or 0,
            description=row.get("transition_description", row.get("description")),
        )

    def _state_from_row(self, row: Mapping[str, Any], prefix: str, states: Dict[str, State]) -> State:
        name = row[prefix]
        if name in states:
            return states[name]
        state = State(
            name,
            row.get(f"{prefix}_type"),
            entry_action=row.get(f"{prefix}_entry_command"),
            exit_action=row.get(f"{prefix}_exit_command"),
            entry_callable=row.get(f"{prefix}_entry_callable"),
            exit_callable=row.get(f"{prefix}_exit_callable"),
            description=row.get(f"{prefix}_description"),
        )
        return self._intern(state, states)

    def __str__(self) -> str:
        return f"<ArrayLoader {self.source}>"
