"""
In-process persistence adapter.

Keeps entity records and history in dictionaries guarded by a re-entrant
lock, so compare-and-set writes are atomic across threads of one process.
Nothing survives the process; use it for tests and short-lived workers.
"""

import logging
import threading
from typing import Dict, List, Optional, Tuple

from entitystate.persistence.base import Adapter, check_expected
from entitystate.types import (
    STATE_UNKNOWN,
    HistoryRecord,
    Identifier,
    SetStateResult,
    utcnow,
)

logger = logging.getLogger(__name__)


class MemoryAdapter(Adapter):
    """Dictionary-backed adapter. Thread-safe per instance."""

    def __init__(self):
        self._lock = threading.RLock()
        # identifier -> (state, changed_at)
        self._entities: Dict[Identifier, Tuple[str, object]] = {}
        self._history: List[HistoryRecord] = []

    def process_get_state(self, identifier: Identifier) -> str:
        with self._lock:
            record = self._entities.get(identifier)
        return record[0] if record else STATE_UNKNOWN

    def process_set_state(
        self, identifier: Identifier, state: str, expected: Optional[str] = None
    ) -> SetStateResult:
        with self._lock:
            self.add_history(identifier, state)
            current = self.process_get_state(identifier)
            check_expected(identifier, current, expected)
            created = identifier not in self._entities
            self._entities[identifier] = (state, utcnow())
        return SetStateResult.CREATED if created else SetStateResult.UPDATED

    def is_persisted(self, identifier: Identifier) -> bool:
        with self._lock:
            return identifier in self._entities

    def add(self, identifier: Identifier, state: str) -> bool:
        with self._lock:
            if identifier in self._entities:
                return False
            self.add_history(identifier, state)
            self._entities[identifier] = (state, utcnow())
        logger.debug(f"{identifier}: added in state '{state}'")
        return True

    def add_history(
        self,
        identifier: Identifier,
        state: str,
        message: Optional[str] = None,
        is_exception: bool = False,
    ) -> None:
        with self._lock:
            self._history.append(
                HistoryRecord(identifier, state, message=message, is_exception=is_exception)
            )

    def get_entity_ids(self, machine: str, state: Optional[str] = None) -> List[str]:
        with self._lock:
            return [
                identifier.entity_id
                for identifier, (current, _) in self._entities.items()
                if identifier.machine == machine and (state is None or current == state)
            ]

    def get_history(self, identifier: Identifier) -> List[HistoryRecord]:
        with self._lock:
            return [h for h in self._history if h.identifier == identifier]

    def lock(self):
        return self._lock

    def get_changed_at(self, identifier: Identifier):
        """Timestamp of the last write to ``identifier``'s record, or None."""
        with self._lock:
            record = self._entities.get(identifier)
        return record[1] if record else None

    def clear(self) -> None:
        """Drop all records."""
        with self._lock:
            self._entities.clear()
            self._history.clear()
