"""
Error taxonomy for the entity state runtime.

Every error derives from EntityStateError and carries a stable integer
``code`` so callers and stored audit messages can classify failures
without string matching.
"""

from typing import Optional


class EntityStateError(Exception):
    """Base class for all errors raised by entitystate."""

    code: int = 0


class UnknownEntity(EntityStateError):
    """``apply`` was called for an identifier with no persisted state."""

    code = 1

    def __init__(self, identifier):
        super().__init__(
            f"No state found for {identifier}. Did you add it to the persistence layer?"
        )
        self.identifier = identifier


class TransitionFailed(EntityStateError):
    """
    A guard, command or state hook failed while applying a transition.

    Attributes:
        identifier: The machine instance being transitioned.
        transition: The attempted Transition.
        stage: Which stage failed: guard, exit, command or entry.
        failure: The FailureRecord handed to the adapter.
        cause: The original exception (also chained as ``__cause__``).
    """

    code = 2

    def __init__(self, identifier, transition, stage: str, failure, cause: BaseException):
        super().__init__(
            f"Transition {transition.name} failed for {identifier} "
            f"during {stage}: {failure.kind}: {failure.message}"
        )
        self.identifier = identifier
        self.transition = transition
        self.stage = stage
        self.failure = failure
        self.cause = cause


class PersistenceFailure(EntityStateError):
    """
    Storage connection or query execution error.

    Attributes:
        operation: The query or phase that was in progress.
    """

    code = 3

    def __init__(self, message: str, operation: Optional[str] = None):
        if operation:
            message = f"{operation} failed: [{message}]"
        super().__init__(message)
        self.operation = operation


class ConnectFailure(PersistenceFailure):
    """The storage connection could not be established."""

    code = 4


class OperationFailure(PersistenceFailure):
    """A query or storage operation failed on an established connection."""

    code = 5


class StateConflict(OperationFailure):
    """A compare-and-set write found a different state than expected."""

    code = 6

    def __init__(self, identifier, expected: str, actual: Optional[str]):
        super().__init__(
            f"state of {identifier} is {actual!r}, expected {expected!r}",
            operation="compare-and-set of current state",
        )
        self.identifier = identifier
        self.expected = expected
        self.actual = actual


class BadLoaderData(EntityStateError):
    """
    Malformed or missing source data during a load.

    Attributes:
        source: Description of the offending source (path, loader name).
        reason: What was wrong with it.
    """

    code = 7

    def __init__(self, source: str, reason: str):
        super().__init__(f"bad loader data from {source}: {reason}")
        self.source = source
        self.reason = reason


class UnresolvedReference(EntityStateError):
    """An action reference could not be turned into a rule or command."""

    code = 8

    def __init__(self, reference, reason: str):
        super().__init__(f"Cannot resolve action reference {reference!r}: {reason}")
        self.reference = reference
        self.reason = reason


class DefinitionError(EntityStateError, ValueError):
    """A machine definition is structurally invalid."""

    code = 9


class ActionFailed(EntityStateError):
    """A command or state hook reported failure by returning False."""

    code = 10

    def __init__(self, action, stage: str):
        super().__init__(f"{action!r} returned False during {stage}")
        self.action = action
        self.stage = stage
