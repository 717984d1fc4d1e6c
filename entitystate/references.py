"""
Resolution of action references.

Definitions loaded from documents or database rows name their rules,
commands and state hooks by string. ActionResolver turns such references
into Rule / Command objects:

- ``None`` or ``""``           -> no action
- an object with ``evaluate`` / ``execute`` -> used as is
- a class                     -> instantiated without arguments
- a plain callable            -> wrapped in CallableRule / CallableCommand
- a registered name           -> the registered target, resolved again
- ``"pkg.module.Name"`` or ``"pkg.module:name"`` -> imported, resolved again
"""

import importlib
import logging
import threading
from typing import Any, Dict, Optional

from entitystate.commands import CallableCommand, Command, NullCommand
from entitystate.exceptions import UnresolvedReference
from entitystate.rules import CallableRule, FalseRule, Rule, TrueRule

logger = logging.getLogger(__name__)

BUILTIN_REFERENCES: Dict[str, Any] = {
    "true": TrueRule,
    "false": FalseRule,
    "null": NullCommand,
}


def import_reference(reference: str) -> Any:
    """
    Import the object named by a dotted path.

    Both ``package.module.Name`` and ``package.module:attr.path`` are
    accepted.

    Raises:
        UnresolvedReference: If the module or attribute does not exist.
    """
    if ":" in reference:
        module_name, _, attr_path = reference.partition(":")
    else:
        module_name, _, attr_path = reference.rpartition(".")
    if not module_name or not attr_path:
        raise UnresolvedReference(reference, "not a registered name or dotted import path")

    try:
        target = importlib.import_module(module_name)
    except ImportError as e:
        raise UnresolvedReference(reference, f"cannot import module {module_name!r}: {e}") from e

    for attr in attr_path.split("."):
        try:
            target = getattr(target, attr)
        except AttributeError:
            raise UnresolvedReference(
                reference, f"module {module_name!r} has no attribute {attr_path!r}"
            ) from None
    return target


class ActionResolver:
    """
    Turns action references into Rule and Command objects.

    Resolved string references are cached per resolver, so a stateful
    command class is instantiated once per resolver, not per transition.
    """

    def __init__(self, registry: Optional[Dict[str, Any]] = None):
        self._registry: Dict[str, Any] = dict(BUILTIN_REFERENCES)
        if registry:
            self._registry.update(registry)
        self._cache: Dict[tuple, Any] = {}
        self._lock = threading.Lock()

    def register(self, name: str, target: Any) -> None:
        """Register ``target`` under ``name`` for use in definitions."""
        if not name:
            raise ValueError("reference name must be a non-empty string")
        with self._lock:
            self._registry[name] = target
            self._cache = {k: v for k, v in self._cache.items() if k[1] != name}
        logger.debug(f"Registered action reference '{name}'")

    def is_registered(self, name: str) -> bool:
        return name in self._registry

    def resolve_rule(self, reference: Any) -> Optional[Rule]:
        """Resolve a guard reference. Returns None for "no rule"."""
        return self._resolve(reference, "rule")

    def resolve_command(self, reference: Any) -> Optional[Command]:
        """Resolve a command or hook reference. Returns None for "no command"."""
        return self._resolve(reference, "command")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, reference: Any, kind: str):
        if reference is None or reference == "":
            return None
        if not isinstance(reference, str):
            return self._adapt(reference, kind, reference)

        cache_key = (kind, reference)
        with self._lock:
            if cache_key in self._cache:
                return self._cache[cache_key]
            target = self._registry.get(reference)

        if target is None:
            target = import_reference(reference)
        elif isinstance(target, str):
            target = import_reference(target)
        resolved = self._adapt(target, kind, reference)

        with self._lock:
            self._cache.setdefault(cache_key, resolved)
            return self._cache[cache_key]

    def _adapt(self, target: Any, kind: str, reference: Any):
        method = "evaluate" if kind == "rule" else "execute"

        if isinstance(target, type):
            try:
                target = target()
            except Exception as e:
                raise UnresolvedReference(reference, f"cannot instantiate {target.__name__}: {e}") from e

        if callable(getattr(target, method, None)):
            return target
        if callable(target):
            return CallableRule(target) if kind == "rule" else CallableCommand(target)
        raise UnresolvedReference(reference, f"{target!r} has no {method}() and is not callable")
