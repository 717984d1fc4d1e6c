"""
Commands: side-effecting actions run during a transition.

A command is anything with an ``execute(context)`` method. It fails by
raising, or by returning exactly ``False``; any other return value is a
success.
"""

from typing import Callable, Protocol, Sequence, runtime_checkable

from entitystate.types import ExecutionContext


@runtime_checkable
class Command(Protocol):
    def execute(self, context: ExecutionContext) -> object:
        ...


class NullCommand:
    """Does nothing. Useful as a placeholder in definitions."""

    def execute(self, context: ExecutionContext) -> None:
        return None

    def __repr__(self):
        return "NullCommand()"


class CallableCommand:
    """Adapt a plain function to the Command capability."""

    def __init__(self, func: Callable[[ExecutionContext], object]):
        self.func = func

    def execute(self, context: ExecutionContext) -> object:
        return self.func(context)

    def __repr__(self):
        return f"CallableCommand({getattr(self.func, '__qualname__', self.func)!r})"


class CompositeCommand:
    """
    Run several commands in order.

    Stops at, and reports, the first failing command.
    """

    def __init__(self, commands: Sequence[Command]):
        self.commands = list(commands)

    def execute(self, context: ExecutionContext) -> bool:
        for command in self.commands:
            if command.execute(context) is False:
                return False
        return True

    def __repr__(self):
        return f"CompositeCommand({self.commands!r})"
