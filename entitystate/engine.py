"""
TransitionEngine — selects and executes transitions for machine instances.

Protocol of ``apply(identifier, event)``:
    1. Read the current state from the persistence adapter
       (UnknownEntity if the entity was never added).
    2. Final state -> NoOp.
    3. Candidates: transitions leaving the state, filtered to those whose
       event equals the given event when one is given, ordered by
       priority, then declaration order.
    4. First candidate whose guard is true is selected; no match -> NoOp.
    5. exit hooks of the old state -> command -> entry hooks of the new
       state. Any failure stops the sequence, is recorded through the
       adapter and raised as TransitionFailed.
    6. The new state is written with a compare-and-set against the state
       read in step 1, which also appends a history record.

Concurrency:
    The engine holds no mutable state and no locks. Calls for different
    identifiers are independent. Concurrent calls for the same identifier
    are protected by the adapter's compare-and-set: the loser of a race
    gets StateConflict instead of silently overwriting the winner. Actions
    of the loser have already run by then; callers needing strict
    once-only side effects must serialize per identifier themselves.

Usage:
    engine = TransitionEngine(definition, MemoryAdapter())
    engine.add(Identifier("order", "42"))
    result = engine.apply(Identifier("order", "42"), "pay")
    if result.transitioned:
        ...
"""

import logging
import time
from typing import Any, Iterable, List, Mapping, NoReturn, Optional

from entitystate.exceptions import (
    ActionFailed,
    DefinitionError,
    PersistenceFailure,
    TransitionFailed,
    UnknownEntity,
)
from entitystate.machine import MachineDefinition
from entitystate.persistence.base import Adapter
from entitystate.references import ActionResolver
from entitystate.types import (
    STATE_UNKNOWN,
    ExecutionContext,
    FailureRecord,
    Identifier,
    State,
    Transition,
    TransitionResult,
    freeze_payload,
)

logger = logging.getLogger(__name__)

STAGE_GUARD = "guard"
STAGE_EXIT = "exit"
STAGE_COMMAND = "command"
STAGE_ENTRY = "entry"


class TransitionEngine:
    """
    Applies transitions of one MachineDefinition to its instances.

    Attributes:
        MAX_STATES_PER_RUN: Safety cap on transitions per ``run()`` call to
                            prevent infinite loops (default: 100).
    """

    MAX_STATES_PER_RUN: int = 100

    def __init__(
        self,
        definition: MachineDefinition,
        adapter: Adapter,
        resolver: Optional[ActionResolver] = None,
    ):
        self.definition = definition
        self.adapter = adapter
        self.resolver = resolver or ActionResolver()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def apply(
        self,
        identifier: Identifier,
        event: Optional[str] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> TransitionResult:
        """
        Apply at most one transition to ``identifier``.

        Args:
            identifier: The machine instance.
            event: Optional event name used to filter candidates.
            payload: Optional caller data exposed to rules and commands.

        Returns:
            A transitioned result, or a NoOp result when the state is final
            or no candidate's guard holds.

        Raises:
            UnknownEntity: No state is persisted for ``identifier``.
            TransitionFailed: A guard, hook or command failed.
            PersistenceFailure: The adapter failed (StateConflict on a lost
                                compare-and-set race).
        """
        state = self._current_state(identifier)

        if state.is_final():
            logger.debug(f"{identifier}: '{state.name}' is final, nothing to apply")
            return TransitionResult.noop(identifier, state, event)

        start = time.time()
        data = freeze_payload(payload)
        for transition in self.definition.get_candidates(state.name, event):
            context = ExecutionContext(identifier, transition, event, data, start)
            if self._guard(transition, context):
                return self._execute(transition, context)

        logger.debug(f"{identifier}: no applicable transition from '{state.name}' (event={event})")
        return TransitionResult.noop(identifier, state, event)

    def add(self, identifier: Identifier) -> bool:
        """
        Store ``identifier`` in the machine's initial state.

        No entry action runs. Returns False if the entity already exists.

        Raises:
            DefinitionError: The machine has no initial state.
        """
        self._check_machine(identifier)
        initial = self.definition.get_initial_state()
        if initial is None:
            raise DefinitionError(f"Machine '{self.definition.name}' has no initial state")
        added = self.adapter.add(identifier, initial.name)
        if added:
            logger.info(f"{identifier}: added in initial state '{initial.name}'")
        return added

    def run(
        self, identifier: Identifier, payload: Optional[Mapping[str, Any]] = None
    ) -> List[TransitionResult]:
        """
        Call ``apply`` without an event until nothing applies.

        Every outgoing transition is a candidate on each step, evented or
        not; guards decide which one is taken.

        Stops at a final state, at the first NoOp, or after
        MAX_STATES_PER_RUN transitions.

        Returns:
            The successful (transitioned) results, in order.
        """
        results = []
        while len(results) < self.MAX_STATES_PER_RUN:
            result = self.apply(identifier, payload=payload)
            if result.is_noop:
                logger.info(f"{identifier}: no further transitions — run complete")
                break
            results.append(result)

        if len(results) >= self.MAX_STATES_PER_RUN:
            logger.error(f"{identifier}: safety limit reached ({self.MAX_STATES_PER_RUN} transitions) — stopping")
        return results

    def get_current_state(self, identifier: Identifier) -> Optional[State]:
        """The current State of ``identifier``, or None if it was never added."""
        self._check_machine(identifier)
        name = self.adapter.get_state(identifier)
        if name == STATE_UNKNOWN:
            return None
        return self.definition.get_state(name)

    def get_available_transitions(
        self, identifier: Identifier, event: Optional[str] = None
    ) -> List[Transition]:
        """Candidate transitions from the current state, guards not evaluated."""
        state = self._current_state(identifier)
        if state.is_final():
            return []
        return self.definition.get_candidates(state.name, event)

    def can_apply(
        self,
        identifier: Identifier,
        event: Optional[str] = None,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """
        Check whether ``apply`` would select a transition.

        Only guards are evaluated; nothing is executed or recorded. A guard
        that raises counts as false here.
        """
        data = freeze_payload(payload)
        for transition in self.get_available_transitions(identifier, event):
            context = ExecutionContext(identifier, transition, event, data)
            try:
                if self._evaluate_guards(transition, context):
                    return True
            except Exception as e:
                logger.debug(f"{identifier}: guard of {transition} raised {e!r}, treating as false")
        return False

    # ------------------------------------------------------------------
    # Selection and execution
    # ------------------------------------------------------------------

    def _current_state(self, identifier: Identifier) -> State:
        self._check_machine(identifier)
        name = self.adapter.get_state(identifier)
        if name == STATE_UNKNOWN:
            raise UnknownEntity(identifier)
        state = self.definition.get_state(name)
        if state is None:
            raise DefinitionError(
                f"{identifier} is in state '{name}' which machine "
                f"'{self.definition.name}' does not define"
            )
        return state

    def _check_machine(self, identifier: Identifier) -> None:
        if identifier.machine != self.definition.name:
            raise ValueError(
                f"{identifier} does not belong to machine '{self.definition.name}'"
            )

    def _evaluate_guards(self, transition: Transition, context: ExecutionContext) -> bool:
        for reference in (transition.rule, transition.guard_callable):
            rule = self.resolver.resolve_rule(reference)
            if rule is not None and not rule.evaluate(context):
                return False
        return True

    def _guard(self, transition: Transition, context: ExecutionContext) -> bool:
        try:
            allowed = self._evaluate_guards(transition, context)
        except Exception as e:
            self._fail(transition, context, STAGE_GUARD, e)
        logger.debug(f"{context.identifier}: guard of {transition} -> {allowed}")
        return allowed

    def _execute(self, transition: Transition, context: ExecutionContext) -> TransitionResult:
        from_state, to_state = transition.from_state, transition.to_state

        self._run_stage(STAGE_EXIT, (from_state.exit_action, from_state.exit_callable), context)
        self._run_stage(STAGE_COMMAND, (transition.command, transition.transition_callable), context)
        self._run_stage(STAGE_ENTRY, (to_state.entry_action, to_state.entry_callable), context)

        self.adapter.set_state(context.identifier, to_state.name, expected=from_state.name)
        logger.info(
            f"{context.identifier}: transition {from_state.name} → {to_state.name}"
            f" ({context.elapsed_time:.3f}s)"
        )
        return TransitionResult.moved(context.identifier, transition, context.event)

    def _run_stage(self, stage: str, references: Iterable[Any], context: ExecutionContext) -> None:
        try:
            for reference in references:
                command = self.resolver.resolve_command(reference)
                if command is None:
                    continue
                if command.execute(context) is False:
                    raise ActionFailed(command, stage)
        except Exception as e:
            self._fail(context.transition, context, stage, e)

    def _fail(
        self, transition: Transition, context: ExecutionContext, stage: str, cause: Exception
    ) -> NoReturn:
        """Record a failed transition (best effort) and raise TransitionFailed."""
        identifier = context.identifier
        failure = FailureRecord.from_exception(cause, transition, stage, context.event)
        logger.error(
            f"{identifier}: transition {transition} failed during {stage}: {cause}",
            exc_info=cause,
        )
        try:
            self.adapter.record_failed_transition(identifier, transition, failure)
        except PersistenceFailure as e:
            logger.warning(f"{identifier}: could not record failed transition {transition}: {e}")
        raise TransitionFailed(identifier, transition, stage, failure, cause) from cause
