"""
Helper utilities for building machine definitions.

Provides convenience functions and a decorator that reduce boilerplate
when defining states, transitions and actions in code.
"""

import logging
from functools import wraps
from typing import Any, Dict, Iterable, List, Mapping, Optional

from entitystate.types import STATE_NEW, ExecutionContext, State, StateType, Transition

logger = logging.getLogger(__name__)


def create_state(
    name: str,
    kind="normal",
    entry_action: Any = None,
    exit_action: Any = None,
    description: Optional[str] = None,
) -> State:
    """
    Create a State with sensible defaults.

    Args:
        name: Unique state name within the machine.
        kind: ``"initial"``, ``"normal"`` (default), ``"final"`` or a StateType.
        entry_action: Command reference run on entry.
        exit_action: Command reference run on exit.
        description: Free text.

    Example:
        paid = create_state("paid", entry_action="myapp.commands:notify")
    """
    return State(
        name,
        StateType.parse(kind),
        entry_action=entry_action,
        exit_action=exit_action,
        description=description,
    )


def build_states(configs: Mapping[str, dict]) -> Dict[str, State]:
    """
    Build a name -> State map from a compact configuration.

    Each state maps to a plain dict instead of a verbose State() call.

    Args:
        configs: Mapping of state name -> config dict. Supported keys:
            - ``type`` (str, optional): initial/normal/final. Defaults to
              "initial" for a state named ``STATE_NEW`` ("new"), else "normal".
            - ``entry`` / ``exit`` (optional): Action references.
            - ``entry_callable`` / ``exit_callable`` (optional).
            - ``description`` (str, optional).

    Raises:
        ValueError: If a ``type`` is not a valid state type.

    Example:
        states = build_states({
            "new":  {"type": "initial"},
            "paid": {"entry": "myapp.commands:notify"},
            "done": {"type": "final"},
        })
    """
    result = {}
    for name, config in configs.items():
        config = config or {}
        kind = config.get("type")
        if kind is None and name == STATE_NEW:
            kind = StateType.INITIAL
        result[name] = State(
            name,
            StateType.parse(kind),
            entry_action=config.get("entry"),
            exit_action=config.get("exit"),
            entry_callable=config.get("entry_callable"),
            exit_callable=config.get("exit_callable"),
            description=config.get("description"),
        )
    return result


def build_transitions(states: Mapping[str, State], rows: Iterable[dict]) -> List[Transition]:
    """
    Build Transitions between already-built states.

    Each row needs ``from`` and ``to`` state names; ``event``, ``rule``,
    ``command``, ``priority`` and ``description`` are optional.

    Raises:
        ValueError: If a row names a state missing from ``states``.

    Example:
        transitions = build_transitions(states, [
            {"from": "new", "to": "paid", "event": "pay"},
            {"from": "paid", "to": "done", "event": "ship", "priority": 1},
        ])
    """
    transitions = []
    for row in rows:
        for key in ("from", "to"):
            if row.get(key) not in states:
                raise ValueError(f"Transition row {row!r}: unknown '{key}' state {row.get(key)!r}")
        transitions.append(
            Transition(
                states[row["from"]],
                states[row["to"]],
                event=row.get("event"),
                rule=row.get("rule"),
                command=row.get("command"),
                priority=row.get("priority", 0),
                description=row.get("description"),
            )
        )
    return transitions


def log_action_execution(func):
    """
    Decorator that adds automatic entry/exit logging to rule and command functions.

    Logs the transition and the return value at DEBUG level without
    requiring manual logger calls inside every action.

    Usage:
        @log_action_execution
        def notify(context: ExecutionContext):
            ...
    """

    @wraps(func)
    def wrapper(context: ExecutionContext):
        name = func.__name__
        logger.debug(f"{name}: {context.identifier} {context.transition} starting...")
        result = func(context)
        if result is False:
            logger.debug(f"{name}: returned False")
        else:
            logger.debug(f"{name}: complete")
        return result

    return wrapper
