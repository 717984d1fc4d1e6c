"""
Persistence adapter contract.

Adapter is a template: the public operations (``get_state``,
``set_state``, ``record_failed_transition``) hold the behaviour every
backend shares, and call small hooks that each backend implements
against its own storage.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import nullcontext
from typing import ContextManager, List, Optional

from entitystate.exceptions import StateConflict
from entitystate.types import (
    STATE_UNKNOWN,
    FailureRecord,
    HistoryRecord,
    Identifier,
    SetStateResult,
    Transition,
)

logger = logging.getLogger(__name__)


class Adapter(ABC):
    """
    Base class for persistence adapters.

    Guarantees provided to the engine:
        - ``get_state`` returns STATE_UNKNOWN for never-persisted identifiers
          and raises PersistenceFailure for storage faults.
        - ``set_state`` appends a history record for every call, then
          inserts or updates the entity record.
        - ``set_state(..., expected=...)`` is an atomic compare-and-set;
          StateConflict is raised when the stored state differs.
    """

    # ------------------------------------------------------------------
    # Abstract hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def process_get_state(self, identifier: Identifier) -> str:
        """Return the stored state name, or STATE_UNKNOWN if absent."""

    @abstractmethod
    def process_set_state(
        self, identifier: Identifier, state: str, expected: Optional[str] = None
    ) -> SetStateResult:
        """Insert or update the entity record (compare-and-set if ``expected``)."""

    @abstractmethod
    def is_persisted(self, identifier: Identifier) -> bool:
        """Is there an entity record for ``identifier``?"""

    @abstractmethod
    def add(self, identifier: Identifier, state: str) -> bool:
        """Create the entity record once. Returns False if it already exists."""

    @abstractmethod
    def add_history(
        self,
        identifier: Identifier,
        state: str,
        message: Optional[str] = None,
        is_exception: bool = False,
    ) -> None:
        """Append one history record."""

    @abstractmethod
    def get_entity_ids(self, machine: str, state: Optional[str] = None) -> List[str]:
        """Entity ids of a machine, optionally only those in ``state``."""

    @abstractmethod
    def get_history(self, identifier: Identifier) -> List[HistoryRecord]:
        """All history records of ``identifier`` in insertion order."""

    # ------------------------------------------------------------------
    # Template methods
    # ------------------------------------------------------------------

    def get_state(self, identifier: Identifier) -> str:
        """
        Current state name of ``identifier``.

        Returns:
            The state name, or STATE_UNKNOWN when no record exists.
        """
        return self.process_get_state(identifier)

    def set_state(
        self, identifier: Identifier, state: str, expected: Optional[str] = None
    ) -> SetStateResult:
        """
        Store ``state`` as the current state of ``identifier``.

        Args:
            identifier: The machine instance.
            state: The new state name.
            expected: If given, only write when the stored state equals this
                      value (atomic compare-and-set).

        Returns:
            SetStateResult.CREATED or SetStateResult.UPDATED.

        Raises:
            StateConflict: The stored state differs from ``expected``.
            PersistenceFailure: On storage faults.
        """
        result = self.process_set_state(identifier, state, expected)
        logger.debug(f"{identifier}: state '{state}' {result.value}")
        return result

    def record_failed_transition(
        self, identifier: Identifier, transition: Transition, failure: FailureRecord
    ) -> bool:
        """
        Append a history record flagged as an exception.

        Only done when the identifier is already persisted: a failure for an
        unknown entity cannot be correlated to a prior state and is skipped.

        The existence check, the state read and the history write run under
        ``lock()`` so the recorded state is the one current at write time.

        Returns:
            True if a record was written.
        """
        with self.lock():
            if not self.is_persisted(identifier):
                logger.debug(f"{identifier}: not persisted, failed {transition.name} not recorded")
                return False
            state = self.get_state(identifier)
            self.add_history(identifier, state, failure.with_state(state).to_json(), is_exception=True)
        return True

    def lock(self) -> ContextManager:
        """
        Context manager serializing multi-step operations on this adapter.

        Adapters guarding their storage with a re-entrant lock return it
        here; the default does not lock.
        """
        return nullcontext()

    def close(self) -> None:
        """Release any resources held by the adapter."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def __str__(self) -> str:
        return f"<{self.__class__.__name__}>"


def check_expected(identifier: Identifier, current: str, expected: Optional[str]) -> None:
    """Raise StateConflict when a compare-and-set precondition fails."""
    if expected is not None and current != expected:
        raise StateConflict(identifier, expected, None if current == STATE_UNKNOWN else current)

