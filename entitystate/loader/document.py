"""
Structured machine-definition documents.

The pydantic models below are the schema every document-based loader
validates against before touching a MachineBuilder. DocumentLoader holds
the parse / validate / select / convert pipeline; subclasses only supply
the text format.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from entitystate.exceptions import BadLoaderData
from entitystate.loader.array import ArrayLoader
from entitystate.types import State, Transition

logger = logging.getLogger(__name__)


class StateModel(BaseModel):
    """One entry of a machine's ``states`` sequence."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., min_length=1, description="Unique state name within the machine")
    type: Literal["initial", "normal", "final"] = Field(
        default="normal", description="Kind of the state"
    )
    entry_command: Optional[str] = Field(default=None, description="Command run on entry")
    exit_command: Optional[str] = Field(default=None, description="Command run on exit")
    entry_callable: Optional[str] = Field(default=None, description="Callable run on entry")
    exit_callable: Optional[str] = Field(default=None, description="Callable run on exit")
    description: Optional[str] = None


class TransitionModel(BaseModel):
    """One entry of a machine's ``transitions`` sequence."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    state_from: str = Field(..., min_length=1)
    state_to: str = Field(..., min_length=1)
    event: Optional[str] = None
    rule: Optional[str] = Field(default=None, description="Guard rule reference")
    command: Optional[str] = Field(default=None, description="Command reference")
    guard_callable: Optional[str] = None
    transition_callable: Optional[str] = None
    priority: int = 0
    description: Optional[str] = None


class MachineModel(BaseModel):
    """A complete machine: states plus transitions."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., min_length=1)
    factory: Optional[str] = None
    description: Optional[str] = None
    states: List[StateModel] = Field(default_factory=list)
    transitions: List[TransitionModel] = Field(default_factory=list)


class DocumentModel(BaseModel):
    """Top level of a machine-definition document."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    machines: List[MachineModel]

    def get_machine(self, name: str) -> Optional[MachineModel]:
        for machine in self.machines:
            if machine.name == name:
                return machine
        return None


def document_json_schema() -> Dict[str, Any]:
    """JSON Schema describing a machine-definition document."""
    schema = DocumentModel.model_json_schema()
    return {"$schema": "https://json-schema.org/draft/2020-12/schema", **schema}


class DocumentLoader(ABC):
    """
    Base for loaders reading a serialized machine-definition document.

    Subclasses implement ``parse(text)``; everything else is shared.
    """

    format_name = "document"

    def __init__(self, text: str, source: Optional[str] = None):
        self._text = text
        self.source = source or f"<{self.format_name} string>"

    @classmethod
    def from_file(cls, path: Union[str, Path]):
        """
        Create a loader from a file on disk.

        Raises:
            BadLoaderData: If the file does not exist or cannot be read.
        """
        path = Path(path)
        if not path.is_file():
            raise BadLoaderData(str(path), f"file {path} does not exist")
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise BadLoaderData(str(path), f"could not read file: {e}") from e
        return cls(text, source=str(path))

    @abstractmethod
    def parse(self, text: str) -> Any:
        """Decode ``text`` into plain Python data."""

    def get_text(self) -> str:
        return self._text

    def get_document(self) -> DocumentModel:
        """
        Parse and validate the whole document.

        Raises:
            BadLoaderData: On parse errors, a missing ``machines`` section or
                           a schema mismatch.
        """
        try:
            data = self.parse(self._text)
        except BadLoaderData:
            raise
        except Exception as e:
            raise BadLoaderData(self.source, f"could not decode {self.format_name}: {e}") from e

        if not isinstance(data, dict) or "machines" not in data:
            raise BadLoaderData(self.source, "no machine data found")

        try:
            return DocumentModel.model_validate(data)
        except ValidationError as e:
            raise BadLoaderData(self.source, f"schema mismatch: {e}") from e

    def get_transitions(self, machine: MachineModel) -> List[Transition]:
        """Convert one machine section into Transitions sharing their States."""
        states: Dict[str, State] = {}
        for s in machine.states:
            if s.name in states:
                continue
            states[s.name] = State(
                s.name,
                s.type,
                entry_action=s.entry_command,
                exit_action=s.exit_command,
                entry_callable=s.entry_callable,
                exit_callable=s.exit_callable,
                description=s.description,
            )

        transitions = []
        for t in machine.transitions:
            for endpoint in (t.state_from, t.state_to):
                if endpoint not in states:
                    raise BadLoaderData(
                        self.source,
                        f"transition {t.state_from}_to_{t.state_to} of machine "
                        f"'{machine.name}' refers to undeclared state '{endpoint}'",
                    )
            transitions.append(
                Transition(
                    states[t.state_from],
                    states[t.state_to],
                    event=t.event,
                    rule=t.rule,
                    command=t.command,
                    guard_callable=t.guard_callable,
                    transition_callable=t.transition_callable,
                    priority=t.priority,
                    description=t.description,
                )
            )
        return transitions

    def load(self, builder) -> int:
        document = self.get_document()
        machine = document.get_machine(builder.name)
        if machine is None:
            raise BadLoaderData(self.source, f"no machine data found for '{builder.name}'")
        transitions = self.get_transitions(machine)
        count = ArrayLoader(transitions, source=self.source).load(builder)
        if builder.description is None:
            builder.description = machine.description
        return count

    def get_schema(self) -> str:
        """The document JSON Schema as text."""
        return json.dumps(document_json_schema(), indent=2, sort_keys=True)

    def __str__(self) -> str:
        return f"<{self.__class__.__name__} {self.source}>"
